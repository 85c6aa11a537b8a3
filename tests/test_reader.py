"""Tests for the plugin record decoder."""
from __future__ import annotations

import struct
import zlib

import pytest

from modmapper.errors import CorruptRecord, OutOfBounds, UnsupportedRecordLayout
from modmapper.esm.constants import FLAG_COMPRESSED, FLAG_LOCALIZED, FLAG_PERSISTENT
from modmapper.esm.decoders import decode_cell, decode_world
from modmapper.esm.reader import PluginReader
from modmapper.esm.records import GRUP_FMT, HEADER_FMT, Record, Subrecord

from plugin_builder import (
    build_plugin,
    cell,
    cell_children,
    interior_group,
    other_group,
    refr,
    tes4,
    world,
    world_group,
)


class TestHeader:
    def test_header_fields(self):
        data = build_plugin(tes4(["Skyrim.esm", "Update.esm"], author="Bethesda",
                                 description="A test", num_records=12))
        header = PluginReader(data).header()
        assert header.masters == ["Skyrim.esm", "Update.esm"]
        assert header.author == "Bethesda"
        assert header.description == "A test"
        assert header.num_records == 12
        assert header.next_object_id == 0x800
        assert header.version == pytest.approx(1.7)

    def test_header_only_plugin_has_no_records(self):
        reader = PluginReader(build_plugin(tes4()))
        assert reader.header().masters == []
        assert reader.parse_all() == []

    def test_header_reencodes_to_same_bytes(self):
        # f32 version only survives exactly after one trip through the decoder
        first = PluginReader(build_plugin(tes4(["Skyrim.esm"]))).header()
        again = PluginReader(first.to_record().serialize()).header()
        assert again == first

    def test_not_a_plugin(self):
        with pytest.raises(UnsupportedRecordLayout):
            PluginReader(b"BSA\x00" + b"\x00" * 40).header()

    def test_empty_file(self):
        with pytest.raises(UnsupportedRecordLayout):
            PluginReader(b"").header()

    def test_missing_hedr(self):
        data = Record(type="TES4", flags=0, form_id=0,
                      subrecords=[Subrecord("CNAM", b"me\x00")]).serialize()
        with pytest.raises(CorruptRecord, match="HEDR"):
            PluginReader(data).header()

    def test_truncated_header(self):
        data = build_plugin(tes4(["Skyrim.esm"]))
        with pytest.raises(CorruptRecord):
            PluginReader(data[:-3], name="cut.esp").header()


class TestGroups:
    def test_yields_worlds_and_cells_with_group_stack(self):
        data = build_plugin(
            tes4(),
            world_group([(world(0x01000D62, "MyWorld", "My World"),
                          [cell(0x01000D63, "MyWorld01", xy=(3, -2))])]),
        )
        records = PluginReader(data).parse_all()
        assert [r.type for r in records] == ["WRLD", "CELL"]

        wrld = decode_world(records[0])
        assert wrld.editor_id == "MyWorld"
        assert wrld.name == "My World"

        c = decode_cell(records[1])
        assert c.world_form_id == 0x01000D62
        assert (c.x, c.y) == (3, -2)
        assert c.editor_id == "MyWorld01"
        assert not c.is_interior

    def test_interior_cells_have_no_world_or_coordinates(self):
        data = build_plugin(tes4(), interior_group([cell(0x01000800, "Cellar", interior=True)]))
        (rec,) = PluginReader(data).parse_all()
        c = decode_cell(rec)
        assert c.world_form_id is None
        assert c.x is None and c.y is None
        assert c.is_interior

    def test_unrelated_top_groups_are_skipped(self):
        data = build_plugin(
            tes4(),
            other_group(b"WEAP", [Record(type="WEAP", flags=0, form_id=0x01000001,
                                         subrecords=[Subrecord("EDID", b"Sword\x00")])]),
            interior_group([cell(0x01000800, interior=True)]),
        )
        assert [r.type for r in PluginReader(data).parse_all()] == ["CELL"]

    def test_cell_children_are_skipped(self):
        interior = interior_group([cell(0x01000800, interior=True)])
        interior.children[0].children[0].children.append(
            cell_children(0x01000800, [refr(0x01000801), refr(0x01000802)]))
        records = PluginReader(build_plugin(tes4(), interior)).parse_all()
        assert [r.form_id for r in records] == [0x01000800]

    def test_top_level_record_outside_group(self):
        data = build_plugin(tes4()) + cell(0x01000800).serialize()
        with pytest.raises(UnsupportedRecordLayout):
            PluginReader(data).parse_all()

    def test_nonzero_top_group_type(self):
        data = build_plugin(tes4()) + GRUP_FMT.pack(b"GRUP", GRUP_FMT.size, b"\x00" * 4, 4, 0, 0)
        with pytest.raises(UnsupportedRecordLayout):
            PluginReader(data).parse_all()

    def test_group_overruns_file(self):
        group = interior_group([cell(0x01000800, interior=True)]).serialize()
        bad = GRUP_FMT.pack(b"GRUP", len(group) + 100, b"CELL", 0, 0, 0) + group[GRUP_FMT.size:]
        with pytest.raises(CorruptRecord, match="runs past"):
            PluginReader(build_plugin(tes4()) + bad, name="bad.esp").parse_all()

    def test_record_overruns_group(self):
        rec = cell(0x01000800, interior=True).serialize()
        rtype, size, *rest = HEADER_FMT.unpack_from(rec)
        bad_rec = HEADER_FMT.pack(rtype, size + 50, *rest) + rec[HEADER_FMT.size:]
        body = bad_rec
        group = GRUP_FMT.pack(b"GRUP", GRUP_FMT.size + len(body), b"CELL", 0, 0, 0) + body
        with pytest.raises(CorruptRecord):
            PluginReader(build_plugin(tes4()) + group).parse_all()

    def test_errors_name_the_plugin(self):
        data = build_plugin(tes4()) + cell(0x01000800).serialize()
        with pytest.raises(UnsupportedRecordLayout) as exc_info:
            PluginReader(data, name="Broken.esp").parse_all()
        assert exc_info.value.plugin == "Broken.esp"
        assert "Broken.esp" in str(exc_info.value)


class TestRecords:
    def test_compressed_record_is_inflated(self):
        data = build_plugin(
            tes4(),
            world_group([(world(0x01000D62, "W"),
                          [cell(0x01000D63, "Big", xy=(-1, 7), compressed=True)])]),
        )
        records = PluginReader(data).parse_all()
        c = decode_cell(records[1])
        assert records[1].is_compressed
        assert c.editor_id == "Big"
        assert (c.x, c.y) == (-1, 7)

    def test_bad_zlib_stream(self):
        payload = struct.pack("<I", 10) + b"definitely not zlib"
        rec = HEADER_FMT.pack(b"CELL", len(payload), FLAG_COMPRESSED, 0x01000800, 0, 44, 0) + payload
        group = GRUP_FMT.pack(b"GRUP", GRUP_FMT.size + len(rec), b"CELL", 0, 0, 0) + rec
        with pytest.raises(CorruptRecord, match="zlib"):
            PluginReader(build_plugin(tes4()) + group).parse_all()

    def test_decompressed_size_mismatch(self):
        inner = Subrecord("EDID", b"Cell\x00").serialize()
        payload = struct.pack("<I", len(inner) + 1) + zlib.compress(inner)
        rec = HEADER_FMT.pack(b"CELL", len(payload), FLAG_COMPRESSED, 0x01000800, 0, 44, 0) + payload
        group = GRUP_FMT.pack(b"GRUP", GRUP_FMT.size + len(rec), b"CELL", 0, 0, 0) + rec
        with pytest.raises(CorruptRecord, match="declared"):
            PluginReader(build_plugin(tes4()) + group).parse_all()

    def test_xxxx_size_override(self):
        big = b"\x01" * 0x10010
        rec = Record(type="CELL", flags=0, form_id=0x01000800,
                     subrecords=[Subrecord("EDID", b"Huge\x00"), Subrecord("XPWR", big),
                                 Subrecord("DATA", b"\x01\x00")])
        (parsed,) = PluginReader(build_plugin(tes4(), interior_group([rec]))).parse_all()
        assert [s.type for s in parsed.subrecords] == ["EDID", "XPWR", "DATA"]
        assert parsed.get_subrecord("XPWR").data == big
        assert decode_cell(parsed).is_interior

    def test_truncated_subrecord(self):
        payload = struct.pack("<4sH", b"EDID", 40) + b"short"
        rec = HEADER_FMT.pack(b"CELL", len(payload), 0, 0x01000800, 0, 44, 0) + payload
        group = GRUP_FMT.pack(b"GRUP", GRUP_FMT.size + len(rec), b"CELL", 0, 0, 0) + rec
        with pytest.raises(OutOfBounds):
            PluginReader(build_plugin(tes4()) + group).parse_all()

    def test_persistent_flag_comes_from_record_header(self):
        data = build_plugin(
            tes4(),
            world_group([(world(0x01000D62, "W"),
                          [cell(0x01000D63, xy=(0, 0), flags=FLAG_PERSISTENT)])]),
        )
        assert decode_cell(PluginReader(data).parse_all()[1]).is_persistent

    def test_localized_world_name_is_not_text(self):
        data = build_plugin(tes4(flags=FLAG_LOCALIZED), world_group([(world(0x01000D62, "W"), [])]))
        reader = PluginReader(data)
        rec = reader.parse_all()[0]
        rec.subrecords.append(Subrecord("FULL", struct.pack("<I", 1234)))
        assert reader.header().is_localized
        assert decode_world(rec, reader.header().is_localized).name is None
        assert decode_world(rec).name is not None
