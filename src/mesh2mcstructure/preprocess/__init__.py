from .io import load_mesh, save_structure
from .spatial import RayQuery
from .voxelize import GridSpec, OccupancyGrid, compute_grid_spec, voxelize

__all__ = [
    "load_mesh",
    "save_structure",
    "RayQuery",
    "GridSpec",
    "OccupancyGrid",
    "compute_grid_spec",
    "voxelize",
]
