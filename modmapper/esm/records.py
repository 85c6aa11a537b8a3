"""Record, Subrecord and Group dataclasses for plugin parsing."""
from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass, field
from typing import Optional, Union

from modmapper.esm.constants import (
    FLAG_COMPRESSED,
    FLAG_LOCALIZED,
    FLAG_PERSISTENT,
    REC_GRUP,
    SUB_EDID,
    SUB_XXXX,
)

# Struct formats (little-endian)
HEADER_FMT = struct.Struct("<4sIIIIHH")   # type(4) + size(4) + flags(4) + formid(4) + vc(4) + ver(2) + unk(2)
GRUP_FMT = struct.Struct("<4sI4siII")     # 'GRUP'(4) + size(4) + label(4) + grouptype(4) + stamp(4) + unk(4)
SUB_HEADER = struct.Struct("<4sH")        # type(4) + size(2)
UINT32 = struct.Struct("<I")

ENCODING = "cp1252"


def encode_zstring(value: str) -> bytes:
    """Encode a string the way plugins store it: cp1252 plus a null terminator."""
    return value.encode(ENCODING, errors="replace") + b"\x00"


@dataclass(slots=True)
class Subrecord:
    """A single subrecord within a record."""
    type: str          # 4-char type code (EDID, MAST, XCLC, etc.)
    data: bytes        # Raw subrecord data

    @property
    def size(self) -> int:
        return len(self.data)

    def as_string(self) -> str:
        """Decode as null-terminated string."""
        return self.data.split(b"\x00", 1)[0].decode(ENCODING, errors="replace")

    def as_uint32(self) -> int:
        return struct.unpack_from("<I", self.data)[0]

    def serialize(self) -> bytes:
        """Encode back to bytes, emitting an XXXX size override when needed."""
        tag = self.type.encode("ascii")
        if len(self.data) > 0xFFFF:
            return (SUB_HEADER.pack(SUB_XXXX.encode("ascii"), 4)
                    + UINT32.pack(len(self.data))
                    + SUB_HEADER.pack(tag, 0) + self.data)
        return SUB_HEADER.pack(tag, len(self.data)) + self.data


@dataclass(slots=True)
class Group:
    """A GRUP header, plus its children when building a plugin.

    The decoder only fills in the header fields; it never materialises
    children, it yields them.
    """
    label: bytes
    group_type: int
    size: int = 0
    offset: int = 0
    children: list[Union[Record, Group]] = field(default_factory=list)

    @property
    def label_uint(self) -> int:
        return UINT32.unpack(self.label)[0]

    def serialize(self) -> bytes:
        body = b"".join(child.serialize() for child in self.children)
        return GRUP_FMT.pack(REC_GRUP, GRUP_FMT.size + len(body), self.label,
                             self.group_type, 0, 0) + body

    @classmethod
    def top(cls, record_type: bytes, children: list) -> Group:
        return cls(label=record_type, group_type=0, children=children)

    @classmethod
    def with_form_id(cls, form_id: int, group_type: int, children: list) -> Group:
        return cls(label=UINT32.pack(form_id), group_type=group_type, children=children)


@dataclass(slots=True)
class Record:
    """A parsed plugin record with its subrecords."""
    type: str               # 4-char type code (TES4, WRLD, CELL, etc.)
    flags: int              # Record flags
    form_id: int            # Raw form id, master index in the top byte
    data_size: int = 0      # Declared size of record data (compressed size if compressed)
    vc_info: int = 0        # Version control info
    version: int = 0        # Form version
    subrecords: list[Subrecord] = field(default_factory=list)
    groups: tuple[Group, ...] = ()   # Enclosing groups, outermost first
    offset: int = 0

    @property
    def is_compressed(self) -> bool:
        return bool(self.flags & FLAG_COMPRESSED)

    @property
    def is_localized(self) -> bool:
        return bool(self.flags & FLAG_LOCALIZED)

    @property
    def is_persistent(self) -> bool:
        return bool(self.flags & FLAG_PERSISTENT)

    @property
    def form_id_hex(self) -> str:
        return f"0x{self.form_id:08X}"

    @property
    def editor_id(self) -> Optional[str]:
        sub = self.get_subrecord(SUB_EDID)
        return sub.as_string() if sub else None

    def get_subrecord(self, sub_type: str) -> Optional[Subrecord]:
        """Get first subrecord of given type."""
        for sub in self.subrecords:
            if sub.type == sub_type:
                return sub
        return None

    def get_subrecords(self, sub_type: str) -> list[Subrecord]:
        """Get all subrecords of given type."""
        return [sub for sub in self.subrecords if sub.type == sub_type]

    def serialize(self) -> bytes:
        """Encode the record, compressing the payload if the flag is set."""
        payload = b"".join(sub.serialize() for sub in self.subrecords)
        if self.is_compressed:
            payload = UINT32.pack(len(payload)) + zlib.compress(payload)
        return HEADER_FMT.pack(self.type.encode("ascii"), len(payload), self.flags,
                               self.form_id, self.vc_info, self.version, 0) + payload


@dataclass(slots=True)
class PluginHeader:
    """Decoded TES4 header metadata."""
    version: float
    num_records: int = 0
    next_object_id: int = 0
    author: Optional[str] = None
    description: Optional[str] = None
    masters: list[str] = field(default_factory=list)
    flags: int = 0

    @property
    def is_localized(self) -> bool:
        return bool(self.flags & FLAG_LOCALIZED)

    def to_record(self) -> Record:
        """Build the TES4 record that decodes back to this header."""
        subs = [Subrecord("HEDR", struct.pack("<fiI", self.version, self.num_records,
                                              self.next_object_id))]
        if self.author is not None:
            subs.append(Subrecord("CNAM", encode_zstring(self.author)))
        if self.description is not None:
            subs.append(Subrecord("SNAM", encode_zstring(self.description)))
        for master in self.masters:
            subs.append(Subrecord("MAST", encode_zstring(master)))
            subs.append(Subrecord("DATA", struct.pack("<Q", 0)))
        return Record(type="TES4", flags=self.flags, form_id=0, subrecords=subs)


@dataclass(slots=True)
class WorldRecord:
    """Decoded WRLD fields relevant to mapping."""
    form_id: int
    editor_id: str
    name: Optional[str] = None


@dataclass(slots=True)
class CellRecord:
    """Decoded CELL fields relevant to mapping."""
    form_id: int
    editor_id: Optional[str]
    world_form_id: Optional[int]   # Label of the enclosing world-children group
    x: Optional[int] = None
    y: Optional[int] = None
    is_interior: bool = False
    is_persistent: bool = False
