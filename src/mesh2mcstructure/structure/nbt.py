"""
Named binary tag (NBT) trees and their binary encoding.

Only the uncompressed form is handled. Bedrock files are little endian,
Java files are big endian; both byte orders are supported.
"""
from __future__ import annotations

import io
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, Dict, Iterator, Tuple, Union

import numpy as np

from ..errors import InvalidArgument, NBTDecodeError


class TagId(IntEnum):
    END = 0
    BYTE = 1
    SHORT = 2
    INT = 3
    LONG = 4
    FLOAT = 5
    DOUBLE = 6
    STRING = 8
    LIST = 9
    COMPOUND = 10


_SCALAR_FORMATS = {
    TagId.BYTE: "b",
    TagId.SHORT: "h",
    TagId.INT: "i",
    TagId.LONG: "q",
    TagId.FLOAT: "f",
    TagId.DOUBLE: "d",
}


@dataclass(frozen=True)
class Byte:
    value: int
    tag_id: ClassVar[TagId] = TagId.BYTE


@dataclass(frozen=True)
class Short:
    value: int
    tag_id: ClassVar[TagId] = TagId.SHORT


@dataclass(frozen=True)
class Int:
    value: int
    tag_id: ClassVar[TagId] = TagId.INT


@dataclass(frozen=True)
class Long:
    value: int
    tag_id: ClassVar[TagId] = TagId.LONG


@dataclass(frozen=True)
class Float:
    value: float
    tag_id: ClassVar[TagId] = TagId.FLOAT


@dataclass(frozen=True)
class Double:
    value: float
    tag_id: ClassVar[TagId] = TagId.DOUBLE


@dataclass(frozen=True)
class String:
    value: str
    tag_id: ClassVar[TagId] = TagId.STRING


@dataclass(frozen=True)
class List:
    """Homogeneous list; every item must carry ``element_type``."""
    element_type: TagId
    items: Tuple["Tag", ...] = ()
    tag_id: ClassVar[TagId] = TagId.LIST

    def __post_init__(self):
        object.__setattr__(self, "element_type", TagId(self.element_type))
        object.__setattr__(self, "items", tuple(self.items))
        for item in self.items:
            if getattr(item, "tag_id", None) != self.element_type:
                raise InvalidArgument(
                    f"List of {self.element_type.name} cannot hold {item!r}"
                )

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator["Tag"]:
        return iter(self.items)


@dataclass(eq=False)
class IntList:
    """
    A list of Int tags held as one int32 array.

    Block index layers run to millions of entries, so they are packed in a
    single buffer write instead of one tag object per entry.
    """
    values: np.ndarray
    element_type: ClassVar[TagId] = TagId.INT
    tag_id: ClassVar[TagId] = TagId.LIST

    def __post_init__(self):
        arr = np.asarray(self.values)
        if arr.ndim != 1:
            raise InvalidArgument(f"IntList needs a 1-D array, got shape {arr.shape}")
        if arr.size and not np.issubdtype(arr.dtype, np.integer):
            raise InvalidArgument(f"IntList needs integer values, got {arr.dtype}")
        info = np.iinfo(np.int32)
        if arr.size and (arr.min() < info.min or arr.max() > info.max):
            raise InvalidArgument("IntList values must fit in int32")
        self.values = arr.astype(np.int32)

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def __eq__(self, other):
        if not isinstance(other, IntList):
            return NotImplemented
        return np.array_equal(self.values, other.values)


@dataclass
class Compound:
    """Named children. Insertion order is the order they are written in."""
    entries: Dict[str, "Tag"] = field(default_factory=dict)
    tag_id: ClassVar[TagId] = TagId.COMPOUND

    def __getitem__(self, key: str) -> "Tag":
        return self.entries[key]

    def __contains__(self, key: str) -> bool:
        return key in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, key: str, default=None):
        return self.entries.get(key, default)


Tag = Union[Byte, Short, Int, Long, Float, Double, String, List, IntList, Compound]


def _struct_prefix(byteorder: str) -> str:
    if byteorder == "little":
        return "<"
    if byteorder == "big":
        return ">"
    raise InvalidArgument(f"Unknown byteorder: {byteorder!r}")


class _Writer:
    def __init__(self, byteorder: str):
        self._prefix = _struct_prefix(byteorder)
        self._buf = io.BytesIO()

    def getvalue(self) -> bytes:
        return self._buf.getvalue()

    def pack(self, fmt: str, *values) -> None:
        try:
            self._buf.write(struct.pack(self._prefix + fmt, *values))
        except struct.error as exc:
            raise InvalidArgument(f"Value out of range for NBT field: {values!r}") from exc

    def write_string(self, text: str) -> None:
        data = text.encode("utf-8")
        if len(data) > 0xFFFF:
            raise InvalidArgument("NBT strings are limited to 65535 bytes")
        self.pack("H", len(data))
        self._buf.write(data)

    def write_payload(self, tag: Tag) -> None:
        tid = tag.tag_id
        if isinstance(tag, IntList):
            self.pack("bi", TagId.INT, len(tag))
            self._buf.write(tag.values.astype(self._prefix + "i4").tobytes())
        elif tid in _SCALAR_FORMATS:
            self.pack(_SCALAR_FORMATS[tid], tag.value)
        elif tid == TagId.STRING:
            self.write_string(tag.value)
        elif tid == TagId.LIST:
            self.pack("bi", tag.element_type, len(tag.items))
            for item in tag.items:
                self.write_payload(item)
        elif tid == TagId.COMPOUND:
            for name, child in tag.entries.items():
                self.pack("b", child.tag_id)
                self.write_string(name)
                self.write_payload(child)
            self.pack("b", TagId.END)
        else:
            raise InvalidArgument(f"Cannot serialize tag {tag!r}")


def write_nbt(root: Compound, *, name: str = "", byteorder: str = "little") -> bytes:
    """
    Serialize ``root`` as a complete, uncompressed NBT document.

    Layout: root tag id, length-prefixed name, compound payload. Output is a
    pure function of the tree, so equal trees give identical bytes.
    """
    if not isinstance(root, Compound):
        raise InvalidArgument("NBT root must be a Compound")
    w = _Writer(byteorder)
    w.pack("b", TagId.COMPOUND)
    w.write_string(name)
    w.write_payload(root)
    return w.getvalue()


# deepest list/compound nesting read_nbt accepts
MAX_DEPTH = 512


_SCALAR_TYPES = {
    TagId.BYTE: Byte,
    TagId.SHORT: Short,
    TagId.INT: Int,
    TagId.LONG: Long,
    TagId.FLOAT: Float,
    TagId.DOUBLE: Double,
}


class _Reader:
    def __init__(self, data: bytes, byteorder: str):
        self._prefix = _struct_prefix(byteorder)
        self._data = bytes(data)
        self._pos = 0

    @property
    def exhausted(self) -> bool:
        return self._pos >= len(self._data)

    def take(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise NBTDecodeError(f"Unexpected end of data at offset {self._pos}")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def unpack(self, fmt: str) -> tuple:
        s = struct.Struct(self._prefix + fmt)
        return s.unpack(self.take(s.size))

    def tag_id(self, value: int) -> TagId:
        try:
            return TagId(value)
        except ValueError:
            raise NBTDecodeError(f"Unsupported tag id {value} at offset {self._pos}") from None

    def read_string(self) -> str:
        (n,) = self.unpack("H")
        raw = self.take(n)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise NBTDecodeError(f"Invalid UTF-8 in string at offset {self._pos - n}") from exc

    def read_payload(self, tid: TagId, depth: int = 0) -> Tag:
        if depth > MAX_DEPTH:
            raise NBTDecodeError(f"Nesting deeper than {MAX_DEPTH} at offset {self._pos}")
        if tid in _SCALAR_FORMATS:
            return _SCALAR_TYPES[tid](self.unpack(_SCALAR_FORMATS[tid])[0])
        if tid == TagId.STRING:
            return String(self.read_string())
        if tid == TagId.LIST:
            raw_type, n = self.unpack("bi")
            etype = self.tag_id(raw_type)
            if n < 0:
                raise NBTDecodeError(f"Negative list length {n}")
            if etype == TagId.INT:
                raw = self.take(4 * n)
                return IntList(np.frombuffer(raw, dtype=self._prefix + "i4"))
            if etype == TagId.END and n > 0:
                raise NBTDecodeError("Non-empty list of TAG_End")
            items = []
            for _ in range(n):
                items.append(self.read_payload(etype, depth + 1))
            return List(etype, tuple(items))
        if tid == TagId.COMPOUND:
            entries: Dict[str, Tag] = {}
            while True:
                child = self.tag_id(self.unpack("b")[0])
                if child == TagId.END:
                    break
                key = self.read_string()
                entries[key] = self.read_payload(child, depth + 1)
            return Compound(entries)
        raise NBTDecodeError(f"Unexpected {tid.name} payload")


def read_nbt(data: bytes, *, byteorder: str = "little") -> Tuple[str, Compound]:
    """Parse a complete NBT document into ``(root_name, root_compound)``."""
    r = _Reader(data, byteorder)
    tid = r.tag_id(r.unpack("b")[0])
    if tid != TagId.COMPOUND:
        raise NBTDecodeError(f"Root tag must be a Compound, got {tid.name}")
    name = r.read_string()
    root = r.read_payload(tid)
    if not r.exhausted:
        raise NBTDecodeError("Trailing bytes after root compound")
    return name, root
