from __future__ import annotations


class ConversionError(Exception):
    """Base class for every failure raised while converting a mesh."""


class InvalidArgument(ConversionError, ValueError):
    """A caller supplied a value outside its allowed range (max_dim, block id, ...)."""


class DegenerateMesh(ConversionError, ValueError):
    """The mesh has zero spatial extent, so no cell size can be derived."""


class InvalidPalette(ConversionError, ValueError):
    """A block index in the occupancy grid has no palette entry."""


class NBTDecodeError(ConversionError, ValueError):
    """Bytes could not be parsed as the expected NBT tree."""


class VoxelizationCancelled(ConversionError):
    """The caller asked to stop an in-progress voxelization."""
