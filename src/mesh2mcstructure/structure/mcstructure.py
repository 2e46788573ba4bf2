"""
Bedrock ``.mcstructure`` documents.

An mcstructure file is one unnamed NBT compound, little endian and
uncompressed:

    format_version          Int        1
    size                    List[Int]  [nx, ny, nz]
    structure_world_origin  List[Int]  [0, 0, 0]
    structure               Compound
        block_indices       List[List[Int]]  primary and secondary layers
        entities            List[Compound]   always empty here
        palette             Compound
            default         Compound
                block_palette        List[Compound]  {name, states, version}
                block_position_data  Compound        always empty here

Block index layers use X-fastest, then Y, then Z order and -1 for "no block".
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Mapping, Tuple

import logging

import numpy as np

from ..errors import InvalidArgument, InvalidPalette, NBTDecodeError
from ..preprocess.voxelize import EMPTY, GridSpec, OccupancyGrid
from .nbt import Byte, Compound, Int, IntList, List, String, Tag, TagId, read_nbt, write_nbt

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
# block state schema revision the palette entries declare
BLOCK_STATE_VERSION = 17959425
DEFAULT_BLOCK_ID = "minecraft:stone"
FILE_SUFFIX = ".mcstructure"


@dataclass(frozen=True)
class BlockState:
    name: str
    states: Mapping[str, Any] = field(default_factory=dict)
    version: int = BLOCK_STATE_VERSION


@dataclass(frozen=True)
class Palette:
    blocks: Tuple[BlockState, ...]

    @classmethod
    def single(cls, block_id: str) -> "Palette":
        return cls(blocks=(BlockState(name=block_id),))

    def __len__(self) -> int:
        return len(self.blocks)


@dataclass
class DecodedStructure:
    format_version: int
    size: Tuple[int, int, int]
    world_origin: Tuple[int, int, int]
    primary: np.ndarray
    secondary: np.ndarray
    palette: Palette


def _state_tag(value: Any) -> Tag:
    if isinstance(value, bool):
        return Byte(int(value))
    if isinstance(value, (int, np.integer)):
        return Int(int(value))
    if isinstance(value, str):
        return String(value)
    raise InvalidArgument(f"Unsupported block state value: {value!r}")


def _state_value(tag: Tag) -> Any:
    if isinstance(tag, Byte):
        return bool(tag.value)
    if isinstance(tag, (Int, String)):
        return tag.value
    raise NBTDecodeError(f"Unsupported block state tag: {tag!r}")


def _int_list(values) -> List:
    return List(TagId.INT, tuple(Int(int(v)) for v in values))


def validate_palette(grid_spec: GridSpec, grid: OccupancyGrid, palette: Palette) -> None:
    """Raise before anything is written if the grid and palette disagree."""
    for layer_name, layer in (("primary", grid.primary), ("secondary", grid.secondary)):
        if layer.shape[0] != grid_spec.count:
            raise InvalidArgument(
                f"{layer_name} layer has {layer.shape[0]} cells, grid needs {grid_spec.count}"
            )
        used = layer[layer != EMPTY]
        bad = used[(used < 0) | (used >= len(palette))]
        if bad.size:
            raise InvalidPalette(
                f"{layer_name} layer references palette index {int(bad[0])}, "
                f"palette has {len(palette)} entries"
            )


def build_structure_document(grid_spec: GridSpec, grid: OccupancyGrid, palette: Palette) -> Compound:
    block_palette = List(TagId.COMPOUND, tuple(
        Compound({
            "name": String(block.name),
            "states": Compound({k: _state_tag(v) for k, v in block.states.items()}),
            "version": Int(block.version),
        })
        for block in palette.blocks
    ))

    return Compound({
        "format_version": Int(FORMAT_VERSION),
        "size": _int_list(grid_spec.dims),
        "structure_world_origin": _int_list((0, 0, 0)),
        "structure": Compound({
            "block_indices": List(TagId.LIST, (IntList(grid.primary), IntList(grid.secondary))),
            "entities": List(TagId.COMPOUND, ()),
            "palette": Compound({
                "default": Compound({
                    "block_palette": block_palette,
                    "block_position_data": Compound(),
                }),
            }),
        }),
    })


def encode_structure(grid_spec: GridSpec, grid: OccupancyGrid, palette: Palette) -> bytes:
    """Validate, build and serialize one structure. Equal inputs give equal bytes."""
    if not isinstance(grid_spec, GridSpec):
        raise InvalidArgument(f"Expected GridSpec, got {type(grid_spec).__name__}")
    validate_palette(grid_spec, grid, palette)
    data = write_nbt(build_structure_document(grid_spec, grid, palette), byteorder="little")
    logger.debug("Encoded %s structure into %d bytes", grid_spec.dims, len(data))
    return data


def _field(compound: Compound, key: str, kind):
    tag = compound.get(key)
    if not isinstance(tag, kind):
        raise NBTDecodeError(f"Field {key!r} missing or not a {kind.__name__}")
    return tag


def _int_triple(compound: Compound, key: str) -> Tuple[int, int, int]:
    tag = compound.get(key)
    if not isinstance(tag, IntList) or len(tag) != 3:
        raise NBTDecodeError(f"Field {key!r} must be a list of three Ints")
    x, y, z = (int(v) for v in tag.values)
    return x, y, z


def decode_structure(data: bytes) -> DecodedStructure:
    """Read back a structure written by ``encode_structure`` (or by the game)."""
    _, root = read_nbt(data, byteorder="little")

    version = _field(root, "format_version", Int).value
    size = _int_triple(root, "size")
    world_origin = _int_triple(root, "structure_world_origin")

    structure = _field(root, "structure", Compound)
    layers = structure.get("block_indices")
    if (
        not isinstance(layers, List)
        or len(layers) != 2
        or not all(isinstance(layer, IntList) for layer in layers)
    ):
        raise NBTDecodeError("block_indices must hold two Int lists")
    primary, secondary = (layer.values for layer in layers)

    default = _field(_field(structure, "palette", Compound), "default", Compound)
    entries = _field(default, "block_palette", List)
    blocks = []
    for entry in entries:
        if not isinstance(entry, Compound):
            raise NBTDecodeError("block_palette entries must be Compounds")
        states = _field(entry, "states", Compound)
        blocks.append(BlockState(
            name=_field(entry, "name", String).value,
            states={k: _state_value(v) for k, v in states.entries.items()},
            version=_field(entry, "version", Int).value,
        ))

    return DecodedStructure(
        format_version=version,
        size=size,
        world_origin=world_origin,
        primary=primary,
        secondary=secondary,
        palette=Palette(blocks=tuple(blocks)),
    )
