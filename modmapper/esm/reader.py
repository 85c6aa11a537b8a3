"""Low-level parser for TES4-family plugin files (Skyrim record layout)."""
from __future__ import annotations

import logging
import zlib
from pathlib import Path
from typing import Iterator, Optional

from modmapper.errors import CorruptRecord, PluginError, UnsupportedRecordLayout
from modmapper.esm.constants import (
    DECODED_TOP_GROUPS,
    GROUP_TOP,
    HEADER_SIZE,
    REC_CELL,
    REC_GRUP,
    REC_TES4,
    REC_WRLD,
    SKIPPED_GROUP_TYPES,
    SUB_XXXX,
)
from modmapper.esm.cursor import ByteReader
from modmapper.esm.decoders import decode_header
from modmapper.esm.records import (
    GRUP_FMT,
    HEADER_FMT,
    SUB_HEADER,
    UINT32,
    Group,
    PluginHeader,
    Record,
    Subrecord,
)

logger = logging.getLogger(__name__)

_YIELDED_TYPES = frozenset({REC_WRLD, REC_CELL})


class PluginReader:
    """Parser for a single plugin held in memory.

    Only the TES4 header and the top-level WRLD and CELL groups are
    interpreted; every other group is skipped by its declared size.
    Records are yielded lazily along with the stack of groups enclosing
    them, so callers can tell which world a cell belongs to without any
    shared parser state.
    """

    def __init__(self, data: bytes, name: Optional[str] = None):
        self.data = data
        self.name = name
        self._header: Optional[PluginHeader] = None
        self._body_offset: Optional[int] = None

    @classmethod
    def from_path(cls, path: Path) -> PluginReader:
        return cls(path.read_bytes(), name=path.name)

    def header(self) -> PluginHeader:
        """Decode the TES4 header record."""
        if self._header is None:
            try:
                cur = ByteReader(self.data)
                if len(self.data) < 4 or cur.peek(4) != REC_TES4:
                    raise UnsupportedRecordLayout("expected TES4 record at offset 0", offset=0)
                record = self._read_record(cur, cur.end, (), decode=True)
                self._header = decode_header(record)
                self._body_offset = cur.tell()
            except PluginError as exc:
                raise self._tag(exc)
        return self._header

    def iter_records(self) -> Iterator[Record]:
        """Iterate over every WRLD and CELL record in the plugin."""
        self.header()
        cur = ByteReader(self.data, self._body_offset)
        try:
            while not cur.at_end:
                if cur.remaining < HEADER_SIZE or cur.peek(4) != REC_GRUP:
                    raise UnsupportedRecordLayout(
                        "expected a top-level GRUP", offset=cur.tell())
                group = self._read_group_header(cur, cur.end)
                group_end = group.offset + group.size
                if group.group_type != GROUP_TOP:
                    raise UnsupportedRecordLayout(
                        f"top-level group has type {group.group_type}", offset=group.offset)

                if group.label not in DECODED_TOP_GROUPS:
                    cur.seek(group_end)
                    continue

                yield from self._iter_group(cur, group_end, (group,))
                cur.seek(group_end)
        except PluginError as exc:
            raise self._tag(exc)

    def parse_all(self) -> list[Record]:
        return list(self.iter_records())

    def _tag(self, exc: PluginError) -> PluginError:
        if exc.plugin is None:
            exc.plugin = self.name
        return exc

    def _iter_group(self, cur: ByteReader, end: int,
                    groups: tuple[Group, ...]) -> Iterator[Record]:
        """Walk records within a group, recursing into sub-groups."""
        while cur.tell() < end:
            if end - cur.tell() < HEADER_SIZE:
                raise CorruptRecord(
                    f"{end - cur.tell()} trailing bytes in group", offset=cur.tell())

            if cur.peek(4) == REC_GRUP:
                group = self._read_group_header(cur, end)
                sub_end = group.offset + group.size
                # Placed references, navmeshes and dialogue never hold cells
                if group.group_type in SKIPPED_GROUP_TYPES:
                    cur.seek(sub_end)
                    continue
                yield from self._iter_group(cur, sub_end, groups + (group,))
                cur.seek(sub_end)
                continue

            record = self._read_record(cur, end, groups)
            if record is not None:
                yield record

    def _read_group_header(self, cur: ByteReader, end: int) -> Group:
        offset = cur.tell()
        _, size, label, group_type, _, _ = cur.unpack(GRUP_FMT)
        if size < GRUP_FMT.size:
            raise CorruptRecord(f"group size {size} smaller than its header", offset=offset)
        if offset + size > end:
            raise CorruptRecord(
                f"group of {size} bytes runs past its container end 0x{end:X}", offset=offset)
        return Group(label=label, group_type=group_type, size=size, offset=offset)

    def _read_record(self, cur: ByteReader, end: int, groups: tuple[Group, ...],
                     decode: bool = False) -> Optional[Record]:
        offset = cur.tell()
        rec_type, data_size, flags, form_id, vc_info, version, _ = cur.unpack(HEADER_FMT)
        if cur.tell() + data_size > end:
            raise CorruptRecord(
                f"{rec_type.decode('ascii', errors='replace')} record declares {data_size} bytes "
                f"but only {end - cur.tell()} remain", offset=offset)

        if not decode and rec_type not in _YIELDED_TYPES:
            cur.skip(data_size)
            return None

        record = Record(
            type=rec_type.decode("ascii", errors="replace"),
            flags=flags,
            form_id=form_id,
            data_size=data_size,
            vc_info=vc_info,
            version=version,
            groups=groups,
            offset=offset,
        )
        payload = cur.read(data_size)
        if record.is_compressed:
            payload = self._decompress(payload, offset)
        record.subrecords = self._parse_subrecords(payload)
        return record

    def _decompress(self, payload: bytes, offset: int) -> bytes:
        if len(payload) < 4:
            raise CorruptRecord("compressed record too short for its size prefix", offset=offset)
        expected = UINT32.unpack_from(payload)[0]
        try:
            inflated = zlib.decompress(payload[4:])
        except zlib.error as exc:
            raise CorruptRecord(f"zlib error: {exc}", offset=offset) from exc
        if len(inflated) != expected:
            raise CorruptRecord(
                f"decompressed {len(inflated)} bytes, header declared {expected}", offset=offset)
        return inflated

    def _parse_subrecords(self, data: bytes) -> list[Subrecord]:
        """Parse all subrecords from record data."""
        subrecords = []
        cur = ByteReader(data)
        size_override: Optional[int] = None

        while not cur.at_end:
            sub_type_bytes, sub_size = cur.unpack(SUB_HEADER)
            sub_type = sub_type_bytes.decode("ascii", errors="replace")

            if sub_type == SUB_XXXX:
                size_override = ByteReader(cur.read(sub_size)).u32()
                continue
            if size_override is not None:
                sub_size, size_override = size_override, None

            subrecords.append(Subrecord(type=sub_type, data=cur.read(sub_size)))

        return subrecords


def main():
    """Quick test: parse a plugin and print its header and record counts."""
    import sys
    from collections import Counter

    if len(sys.argv) < 2:
        print("Usage: python -m modmapper.esm.reader <path/to/plugin.esp>")
        sys.exit(1)

    path = Path(sys.argv[1])
    reader = PluginReader.from_path(path)
    header = reader.header()
    print(f"{path.name}: version {header.version:.2f}, author {header.author!r}")
    for i, master in enumerate(header.masters):
        print(f"  [{i:02X}] {master}")

    counts = Counter(r.type for r in reader.iter_records())
    for rtype, count in counts.most_common():
        print(f"{rtype:<8} {count:>8,}")


if __name__ == "__main__":
    main()
