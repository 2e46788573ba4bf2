import argparse
from pathlib import Path

import numpy as np

from mesh2mcstructure.preprocess.voxelize import EMPTY
from mesh2mcstructure.structure import decode_structure


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--input", type=Path, required=True, help="*.mcstructure")
    args = ap.parse_args()

    s = decode_structure(args.input.read_bytes())

    nx, ny, nz = s.size
    print(f"format_version {s.format_version}, size {nx}x{ny}x{nz}, origin {s.world_origin}")
    for i, block in enumerate(s.palette.blocks):
        n = int(np.count_nonzero(s.primary == i))
        print(f"  [{i}] {block.name} v{block.version} states={dict(block.states)}: {n} blocks")
    print(f"empty cells: {int(np.count_nonzero(s.primary == EMPTY))}")
    print(f"secondary layer blocks: {int(np.count_nonzero(s.secondary != EMPTY))}")


if __name__ == "__main__":
    main()
