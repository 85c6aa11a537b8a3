"""Assemble small Skyrim-layout plugins in memory for tests."""
from __future__ import annotations

import struct
from typing import Optional, Sequence

from modmapper.esm.constants import (
    CELL_FLAG_INTERIOR,
    FLAG_COMPRESSED,
    GROUP_CELL_CHILDREN,
    GROUP_EXTERIOR_CELL_BLOCK,
    GROUP_EXTERIOR_CELL_SUBBLOCK,
    GROUP_INTERIOR_CELL_BLOCK,
    GROUP_INTERIOR_CELL_SUBBLOCK,
    GROUP_WORLD_CHILDREN,
)
from modmapper.esm.records import Group, PluginHeader, Record, Subrecord, encode_zstring


def tes4(masters: Sequence[str] = (), author: Optional[str] = "tester",
         description: Optional[str] = None, version: float = 1.7, num_records: int = 0,
         flags: int = 0) -> Record:
    return PluginHeader(version=version, num_records=num_records, next_object_id=0x800,
                        author=author, description=description, masters=list(masters),
                        flags=flags).to_record()


def world(form_id: int, editor_id: str, name: Optional[str] = None, flags: int = 0) -> Record:
    subs = [Subrecord("EDID", encode_zstring(editor_id))]
    if name is not None:
        subs.append(Subrecord("FULL", encode_zstring(name)))
    return Record(type="WRLD", flags=flags, form_id=form_id, subrecords=subs)


def cell(form_id: int, editor_id: Optional[str] = None, xy: Optional[tuple[int, int]] = None,
         interior: bool = False, flags: int = 0, compressed: bool = False) -> Record:
    subs = []
    if editor_id is not None:
        subs.append(Subrecord("EDID", encode_zstring(editor_id)))
    subs.append(Subrecord("DATA", struct.pack("<H", CELL_FLAG_INTERIOR if interior else 0)))
    if xy is not None:
        subs.append(Subrecord("XCLC", struct.pack("<iiI", xy[0], xy[1], 0)))
    if compressed:
        flags |= FLAG_COMPRESSED
    return Record(type="CELL", flags=flags, form_id=form_id, subrecords=subs)


def refr(form_id: int) -> Record:
    return Record(type="REFR", flags=0, form_id=form_id,
                  subrecords=[Subrecord("NAME", struct.pack("<I", 0x14))])


def cell_children(cell_form_id: int, refs: Sequence[Record]) -> Group:
    """Placed references under a cell; the reader never descends into these."""
    return Group.with_form_id(cell_form_id, GROUP_CELL_CHILDREN, list(refs))


def world_group(worlds: Sequence[tuple[Record, Sequence[Record]]]) -> Group:
    """Top WRLD group; each world's exterior cells go into one block/sub-block."""
    children: list = []
    for wrld, cells in worlds:
        children.append(wrld)
        if cells:
            sub_block = Group(label=struct.pack("<hh", 0, 0),
                              group_type=GROUP_EXTERIOR_CELL_SUBBLOCK, children=list(cells))
            block = Group(label=struct.pack("<hh", 0, 0),
                          group_type=GROUP_EXTERIOR_CELL_BLOCK, children=[sub_block])
            children.append(Group.with_form_id(wrld.form_id, GROUP_WORLD_CHILDREN, [block]))
    return Group.top(b"WRLD", children)


def world_children(world_form_id: int, cells: Sequence[Record]) -> Group:
    """World-children group for a world this plugin overrides but does not declare."""
    block = Group(label=struct.pack("<hh", 0, 0), group_type=GROUP_EXTERIOR_CELL_BLOCK,
                  children=list(cells))
    return Group.with_form_id(world_form_id, GROUP_WORLD_CHILDREN, [block])


def interior_group(cells: Sequence[Record]) -> Group:
    sub_block = Group(label=struct.pack("<i", 0), group_type=GROUP_INTERIOR_CELL_SUBBLOCK,
                      children=list(cells))
    block = Group(label=struct.pack("<i", 0), group_type=GROUP_INTERIOR_CELL_BLOCK,
                  children=[sub_block])
    return Group.top(b"CELL", [block])


def other_group(record_type: bytes, records: Sequence[Record]) -> Group:
    return Group.top(record_type, list(records))


def build_plugin(header: Record, *groups: Group) -> bytes:
    return header.serialize() + b"".join(g.serialize() for g in groups)
