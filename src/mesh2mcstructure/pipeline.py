from __future__ import annotations
from pathlib import Path
from typing import Callable, Optional, Union

import logging

import trimesh

from .errors import InvalidArgument
from .preprocess.io import load_mesh, save_structure
from .preprocess.spatial import DEFAULT_ACCELERATOR, Accelerator
from .preprocess.voxelize import DEFAULT_MAX_DIM, voxelize
from .structure.mcstructure import DEFAULT_BLOCK_ID, Palette, encode_structure
from .utils import structure_filename

logger = logging.getLogger(__name__)


def _check_block_id(block_id) -> str:
    if not isinstance(block_id, str) or not block_id.strip():
        raise InvalidArgument(f"block_id must be a non-empty string, got {block_id!r}")
    return block_id.strip()


def mesh_to_mcstructure(
    mesh: Optional[trimesh.Trimesh],
    max_dim: int = DEFAULT_MAX_DIM,
    block_id: str = DEFAULT_BLOCK_ID,
    *,
    accelerator: Accelerator = DEFAULT_ACCELERATOR,
    workers: int = 1,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> bytes:
    """
    Voxelize ``mesh`` and encode it as ``.mcstructure`` bytes.

    Every occupied cell becomes ``block_id``. Arguments are checked before
    any work starts; nothing partial is returned on error.
    """
    block_id = _check_block_id(block_id)
    spec, grid = voxelize(
        mesh,
        max_dim,
        accelerator=accelerator,
        workers=workers,
        should_cancel=should_cancel,
    )
    return encode_structure(spec, grid, Palette.single(block_id))


def convert_file(
    input_path: Union[str, Path],
    out_dir: Optional[Union[str, Path]] = None,
    **options,
) -> Path:
    """Load a model file, convert it, and write ``<name>.mcstructure`` into ``out_dir``."""
    input_path = Path(input_path)
    out_dir = Path(out_dir) if out_dir is not None else input_path.parent

    mesh = load_mesh(input_path, force="scene").as_single_mesh()
    data = mesh_to_mcstructure(mesh, **options)

    out_path = save_structure(out_dir / structure_filename(input_path), data)
    logger.info("Wrote %s (%d bytes)", out_path, len(data))
    return out_path
