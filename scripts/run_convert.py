import argparse
from pathlib import Path

import numpy as np
import trimesh

from mesh2mcstructure.preprocess import load_mesh, save_structure, voxelize
from mesh2mcstructure.preprocess.spatial import ACCELERATORS, DEFAULT_ACCELERATOR
from mesh2mcstructure.preprocess.voxelize import DEFAULT_MAX_DIM
from mesh2mcstructure.structure import Palette, encode_structure
from mesh2mcstructure.structure.mcstructure import DEFAULT_BLOCK_ID
from mesh2mcstructure.utils import structure_filename


def main():
    parser = argparse.ArgumentParser(
        description="Convert a mesh into a Bedrock .mcstructure file"
    )

    parser.add_argument("--input", type=Path, required=True)
    parser.add_argument("--out-dir", type=Path, default=Path("outputs"))
    parser.add_argument("--max-dim", type=int, default=DEFAULT_MAX_DIM)
    parser.add_argument("--block-id", type=str, default=DEFAULT_BLOCK_ID)
    parser.add_argument("--accelerator", choices=ACCELERATORS, default=DEFAULT_ACCELERATOR)
    parser.add_argument("--workers", type=int, default=1)
    parser.add_argument(
        "--export-voxels",
        action="store_true",
        help="Export occupied cell centers as an OBJ point cloud",
    )

    args = parser.parse_args()
    block_id = args.block_id.strip()
    if not block_id:
        parser.error("--block-id must not be empty")

    input_path = args.input.resolve()
    out_dir = args.out_dir.resolve()
    debug_dir = out_dir / "debug"

    out_path = out_dir / structure_filename(input_path)
    voxels_path = debug_dir / f"voxels_{input_path.stem}.obj"

    loaded = load_mesh(input_path, force="scene")
    mesh = loaded.as_single_mesh()

    spec, grid = voxelize(
        mesh,
        args.max_dim,
        accelerator=args.accelerator,
        workers=args.workers,
    )

    data = encode_structure(spec, grid, Palette.single(block_id))
    save_structure(out_path, data)

    if args.export_voxels:
        solid = grid.to_solid(spec.dims)
        centers = spec.origin + (np.argwhere(solid) + 0.5) * spec.cell_size
        debug_dir.mkdir(parents=True, exist_ok=True)
        trimesh.points.PointCloud(centers).export(voxels_path)

    print(f"Done: {spec.dims}, {grid.occupied_count} blocks of {block_id}")
    print(f"Structure saved to: {out_path}")
    if args.export_voxels:
        print(f"Voxels saved to: {voxels_path}")


if __name__ == "__main__":
    main()
