from .errors import (
    ConversionError,
    DegenerateMesh,
    InvalidArgument,
    InvalidPalette,
    NBTDecodeError,
    VoxelizationCancelled,
)
from .pipeline import convert_file, mesh_to_mcstructure

__all__ = [
    "ConversionError",
    "DegenerateMesh",
    "InvalidArgument",
    "InvalidPalette",
    "NBTDecodeError",
    "VoxelizationCancelled",
    "convert_file",
    "mesh_to_mcstructure",
]
