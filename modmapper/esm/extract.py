"""Turn decoded WRLD/CELL records into normalized world and cell candidates."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Optional

from modmapper.errors import DanglingMasterReference
from modmapper.esm.decoders import decode_cell, decode_world
from modmapper.esm.masters import FormKey, MasterChain, fingerprint
from modmapper.esm.reader import PluginReader
from modmapper.esm.records import PluginHeader

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorldCandidate:
    """A world the plugin declares, with the editor id it gave it."""
    key: FormKey
    editor_id: str


@dataclass(slots=True)
class CellCandidate:
    """A cell the plugin declares or overrides.

    ``world`` is None for cells outside any world-children group
    (interior cells). ``editor_id`` is this plugin's name for the cell.
    """
    key: FormKey
    world: Optional[FormKey]
    x: Optional[int] = None
    y: Optional[int] = None
    is_persistent: bool = False
    editor_id: Optional[str] = None


@dataclass
class ExtractedPlugin:
    """Everything the storage layer needs from one plugin file."""
    name: str
    path: str
    fingerprint: int
    size: int
    header: PluginHeader
    worlds: list[WorldCandidate] = field(default_factory=list)
    cells: list[CellCandidate] = field(default_factory=list)
    skipped_records: int = 0

    @property
    def world_keys(self) -> list[FormKey]:
        """Declared worlds plus worlds only referenced by cells, in first-seen order."""
        keys = dict.fromkeys(w.key for w in self.worlds)
        for cell in self.cells:
            if cell.world is not None:
                keys.setdefault(cell.world)
        return list(keys)


def plugin_file_name(path: str) -> str:
    """Basename of an in-archive path, which may use either separator."""
    return PurePosixPath(path.replace("\\", "/")).name


def extract_plugin(data: bytes, path: str, name: Optional[str] = None) -> ExtractedPlugin:
    """Decode a plugin and resolve its worlds and cells.

    Raises PluginError subclasses for anything that makes the file
    unreadable. Records with dangling master references are skipped
    individually and counted in ``skipped_records``.
    """
    name = name or plugin_file_name(path)
    reader = PluginReader(data, name=name)
    header = reader.header()
    chain = MasterChain.build(name, header.masters)

    result = ExtractedPlugin(
        name=name,
        path=path,
        fingerprint=fingerprint(data),
        size=len(data),
        header=header,
    )

    for rec in reader.iter_records():
        try:
            if rec.type == "WRLD":
                world = decode_world(rec, header.is_localized)
                result.worlds.append(
                    WorldCandidate(key=chain.resolve(world.form_id), editor_id=world.editor_id))
            elif rec.type == "CELL":
                cell = decode_cell(rec)
                world_key = None
                if cell.world_form_id is not None:
                    world_key = chain.resolve(cell.world_form_id)
                result.cells.append(CellCandidate(
                    key=chain.resolve(cell.form_id),
                    world=world_key,
                    x=cell.x,
                    y=cell.y,
                    is_persistent=cell.is_persistent,
                    editor_id=cell.editor_id,
                ))
        except DanglingMasterReference as exc:
            logger.warning("Skipping %s %s: %s", rec.type, rec.form_id_hex, exc)
            result.skipped_records += 1

    logger.debug("%s: %d worlds, %d cells, %d skipped", name, len(result.worlds),
                 len(result.cells), result.skipped_records)
    return result
