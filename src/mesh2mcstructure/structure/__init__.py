from .mcstructure import (
    BlockState,
    Palette,
    build_structure_document,
    decode_structure,
    encode_structure,
)

__all__ = [
    "BlockState",
    "Palette",
    "build_structure_document",
    "decode_structure",
    "encode_structure",
]
