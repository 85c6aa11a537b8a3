"""Field decoders for the record types the mapper cares about.

TES4 (HEDR version/record count, CNAM author, SNAM description, MAST list),
WRLD (EDID, FULL) and CELL (EDID, DATA flags, XCLC grid, persistence flag).
Anything else in these records is left undecoded.
"""
from __future__ import annotations

from typing import Optional

from modmapper.errors import CorruptRecord
from modmapper.esm.constants import (
    CELL_FLAG_INTERIOR,
    EXTERIOR_GROUP_TYPES,
    GROUP_WORLD_CHILDREN,
    SUB_CNAM,
    SUB_DATA,
    SUB_EDID,
    SUB_FULL,
    SUB_HEDR,
    SUB_MAST,
    SUB_SNAM,
    SUB_XCLC,
)
from modmapper.esm.cursor import ByteReader
from modmapper.esm.records import CellRecord, PluginHeader, Record, WorldRecord


def decode_header(rec: Record) -> PluginHeader:
    """Decode a TES4 record into header metadata."""
    hedr = rec.get_subrecord(SUB_HEDR)
    if hedr is None:
        raise CorruptRecord("TES4 record has no HEDR subrecord", offset=rec.offset)
    cur = ByteReader(hedr.data)
    header = PluginHeader(
        version=cur.f32(),
        num_records=cur.i32(),
        next_object_id=cur.u32(),
        flags=rec.flags,
    )

    for sub in rec.subrecords:
        if sub.type == SUB_CNAM:
            header.author = sub.as_string()
        elif sub.type == SUB_SNAM:
            header.description = sub.as_string()
        elif sub.type == SUB_MAST:
            header.masters.append(sub.as_string())
    return header


def decode_world(rec: Record, localized: bool = False) -> WorldRecord:
    """Decode a WRLD record.

    ``localized`` is the plugin header's flag: such plugins store a
    string-table id in FULL, not text.
    """
    name = None
    full = rec.get_subrecord(SUB_FULL)
    if full is not None and not localized:
        name = full.as_string()
    return WorldRecord(form_id=rec.form_id, editor_id=rec.editor_id or "", name=name)


def enclosing_world(rec: Record) -> Optional[int]:
    """Raw form id of the world whose children group holds this record."""
    for group in reversed(rec.groups):
        if group.group_type == GROUP_WORLD_CHILDREN:
            return group.label_uint
    return None


def decode_cell(rec: Record) -> CellRecord:
    """Decode a CELL record, using its group stack to find the owning world."""
    flags = 0
    data = rec.get_subrecord(SUB_DATA)
    if data is not None and data.size >= 1:
        cur = ByteReader(data.data)
        flags = cur.u16() if data.size >= 2 else cur.u8()
    is_interior = bool(flags & CELL_FLAG_INTERIOR)

    in_exterior_group = any(g.group_type in EXTERIOR_GROUP_TYPES for g in rec.groups)
    x = y = None
    xclc = rec.get_subrecord(SUB_XCLC)
    if xclc is not None and in_exterior_group and not is_interior:
        cur = ByteReader(xclc.data)
        x = cur.i32()
        y = cur.i32()

    edid = rec.get_subrecord(SUB_EDID)
    return CellRecord(
        form_id=rec.form_id,
        editor_id=edid.as_string() if edid else None,
        world_form_id=enclosing_world(rec),
        x=x,
        y=y,
        is_interior=is_interior,
        is_persistent=rec.is_persistent,
    )
