from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import logging
import operator

import numpy as np
import trimesh

from ..errors import DegenerateMesh, InvalidArgument, VoxelizationCancelled
from .spatial import DEFAULT_ACCELERATOR, Accelerator, RayQuery

logger = logging.getLogger(__name__)

DEFAULT_MAX_DIM = 64
EMPTY = -1

# slack for cell centers lying exactly on a crossing
PARITY_EPS = 1e-6

# rays start and stop this far outside the bounding box along X
RAY_MARGIN = 1.0


@dataclass
class GridSpec:
    dims: Tuple[int, int, int]  # (nx, ny, nz)
    cell_size: float            # model-space edge length of one cell
    origin: np.ndarray          # (3,) min corner of cell (0, 0, 0)

    @property
    def count(self) -> int:
        nx, ny, nz = self.dims
        return nx * ny * nz

    def flat_index(self, x: int, y: int, z: int) -> int:
        """X varies fastest, then Y, then Z."""
        nx, ny, _ = self.dims
        return x + nx * (y + ny * z)

    def cell_centers(self, axis: int) -> np.ndarray:
        n = self.dims[axis]
        return self.origin[axis] + (np.arange(n) + 0.5) * self.cell_size


@dataclass
class OccupancyGrid:
    """
    Palette indices per cell, flattened in GridSpec.flat_index order.

    ``secondary`` is the format's second block layer (waterlogging and
    similar); voxelization never fills it.
    """
    primary: np.ndarray    # (count,) int32
    secondary: np.ndarray  # (count,) int32

    def __post_init__(self):
        self.primary = np.asarray(self.primary, dtype=np.int32).reshape(-1)
        self.secondary = np.asarray(self.secondary, dtype=np.int32).reshape(-1)
        if self.primary.shape != self.secondary.shape:
            raise InvalidArgument(
                f"Layer sizes differ: {self.primary.shape} vs {self.secondary.shape}"
            )

    @classmethod
    def empty(cls, count: int) -> "OccupancyGrid":
        return cls(
            primary=np.full(count, EMPTY, dtype=np.int32),
            secondary=np.full(count, EMPTY, dtype=np.int32),
        )

    @classmethod
    def from_solid(
        cls,
        solid: np.ndarray,
        *,
        secondary_solid: Optional[np.ndarray] = None,
        palette_index: int = 0,
    ) -> "OccupancyGrid":
        """Build from (nx, ny, nz) bool masks; Fortran order gives X-fastest flattening."""
        solid = np.asarray(solid, dtype=bool)
        grid = cls.empty(solid.size)
        grid.primary[solid.reshape(-1, order="F")] = palette_index
        if secondary_solid is not None:
            secondary_solid = np.asarray(secondary_solid, dtype=bool)
            if secondary_solid.shape != solid.shape:
                raise InvalidArgument("secondary_solid must match solid's shape")
            grid.secondary[secondary_solid.reshape(-1, order="F")] = palette_index
        return grid

    @property
    def occupied_count(self) -> int:
        return int(np.count_nonzero(self.primary != EMPTY))

    def to_solid(self, dims: Tuple[int, int, int]) -> np.ndarray:
        """(nx, ny, nz) bool mask of the primary layer."""
        return (self.primary != EMPTY).reshape(dims, order="F")


def fallback_mesh() -> trimesh.Trimesh:
    """1x1x1 cube centred on the origin, used when there is nothing to voxelize."""
    return trimesh.creation.box(extents=(1.0, 1.0, 1.0))


def _check_positive_int(value, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidArgument(f"{name} must be a positive integer, got {value!r}")
    try:
        out = operator.index(value)
    except TypeError:
        raise InvalidArgument(f"{name} must be a positive integer, got {value!r}") from None
    if out <= 0:
        raise InvalidArgument(f"{name} must be a positive integer, got {value!r}")
    return out


def compute_grid_spec(bounds: np.ndarray, max_dim: int) -> GridSpec:
    """
    Size a cubic-cell grid so the longest bbox axis spans ``max_dim`` cells.

    cell_size = max_extent / max_dim, and each axis gets
    ceil(extent / cell_size) cells (at least one).
    """
    max_dim = _check_positive_int(max_dim, "max_dim")
    bmin, bmax = np.asarray(bounds, dtype=np.float64)
    extent = bmax - bmin
    max_extent = float(np.max(extent))
    if not np.isfinite(max_extent) or max_extent <= 0:
        raise DegenerateMesh(f"Mesh has degenerate bounds (extent={extent.tolist()})")

    cell_size = max_extent / max_dim
    # extent * max_dim / max_extent is exact on the longest axis, unlike extent / cell_size
    ratio = extent * max_dim / max_extent
    dims = np.maximum(np.ceil(ratio - 1e-9).astype(int), 1)

    return GridSpec(
        dims=(int(dims[0]), int(dims[1]), int(dims[2])),
        cell_size=float(cell_size),
        origin=bmin.copy(),
    )


def voxelize(
    mesh: Optional[trimesh.Trimesh],
    max_dim: int = DEFAULT_MAX_DIM,
    *,
    accelerator: Accelerator = DEFAULT_ACCELERATOR,
    workers: int = 1,
    should_cancel: Optional[Callable[[], bool]] = None,
    batch_size: int = 4096,
) -> Tuple[GridSpec, OccupancyGrid]:
    """
    Fill a grid with the cells whose centers lie inside ``mesh``.

    Inside/outside is the even-odd rule along +X: a ray starts left of the
    bounding box at each (y, z) column, and a cell is inside when an odd
    number of crossings lie at or left of its center. The mesh must be
    closed along every sampled ray; open surfaces are not repaired.

    Parameters
    ----------
    mesh : trimesh.Trimesh | None
        read only. None or a mesh without faces voxelizes ``fallback_mesh()``.
    max_dim : int
        cell count along the longest bounding box axis
    accelerator : "rtree" | "embree" | "brute_force"
        ray intersection strategy, see ``RayQuery``
    workers : int
        threads sharing the ray batches; output does not depend on it
    should_cancel : callable | None
        polled before each batch; returning True raises VoxelizationCancelled
    batch_size : int
        rays (grid columns) per query

    Returns
    -------
    (GridSpec, OccupancyGrid) with palette index 0 in occupied cells.
    """
    max_dim = _check_positive_int(max_dim, "max_dim")
    workers = _check_positive_int(workers, "workers")
    batch_size = _check_positive_int(batch_size, "batch_size")

    if mesh is None or len(mesh.faces) == 0:
        logger.warning("Mesh has no triangles, voxelizing a unit cube instead")
        mesh = fallback_mesh()

    bounds = np.asarray(mesh.bounds, dtype=np.float64)
    spec = compute_grid_spec(bounds, max_dim)
    nx, ny, nz = spec.dims
    logger.debug("Grid %dx%dx%d, cell size %g", nx, ny, nz, spec.cell_size)

    query = RayQuery(mesh, accelerator=accelerator)

    cx = spec.cell_centers(0)
    cy = spec.cell_centers(1)
    cz = spec.cell_centers(2)

    # one ray per (y, z) column, y fastest to match the flat index order
    zz, yy = np.meshgrid(cz, cy, indexing="ij")
    n_cols = ny * nz
    origins = np.column_stack([
        np.full(n_cols, bounds[0, 0] - RAY_MARGIN),
        yy.reshape(-1),
        zz.reshape(-1),
    ])
    direction = np.array([1.0, 0.0, 0.0])
    # distance of each cell center from the ray origin
    center_dist = cx - origins[0, 0] + PARITY_EPS

    batches = [(s, min(s + batch_size, n_cols)) for s in range(0, n_cols, batch_size)]

    def run_batch(span: Tuple[int, int]) -> np.ndarray:
        if should_cancel is not None and should_cancel():
            raise VoxelizationCancelled("Voxelization cancelled")
        start, stop = span
        columns: List[np.ndarray] = query.crossings(origins[start:stop], direction)
        inside = np.empty((stop - start, nx), dtype=bool)
        for i, dist in enumerate(columns):
            count = np.searchsorted(dist, center_dist, side="right")
            inside[i] = (count % 2) == 1
        logger.debug("Columns %d-%d of %d done", start, stop, n_cols)
        return inside

    if workers == 1 or len(batches) == 1:
        results = [run_batch(b) for b in batches]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(run_batch, batches))

    # rows are columns in (z, y) order with y fastest, each row spans x
    inside = np.concatenate(results, axis=0) if results else np.zeros((0, nx), dtype=bool)
    grid = OccupancyGrid.empty(spec.count)
    grid.primary[inside.reshape(-1)] = 0

    logger.info("Voxelized %d of %d cells", grid.occupied_count, spec.count)
    return spec, grid
