"""Reconcile extracted plugins against storage via natural-key upserts."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from modmapper.db.models import File, Mod, utcnow
from modmapper.db.store import INSERTED, UNCHANGED, UPDATED, Store, Upserted
from modmapper.errors import PluginError, StorageError
from modmapper.esm.extract import ExtractedPlugin, extract_plugin
from modmapper.esm.masters import FormKey, fingerprint

logger = logging.getLogger(__name__)

PROCESSED = "processed"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class UpsertStats:
    """Per-entity tally of inserted / updated / unchanged rows."""
    counts: Counter = field(default_factory=Counter)

    def record(self, entity: str, result: Upserted) -> Upserted:
        self.counts[(entity, result.action)] += 1
        return result

    def get(self, entity: str, action: str) -> int:
        return self.counts[(entity, action)]

    @property
    def writes(self) -> int:
        return sum(n for (_, action), n in self.counts.items() if action != UNCHANGED)

    def merge(self, other: UpsertStats) -> None:
        self.counts.update(other.counts)

    def to_dict(self) -> dict[str, dict[str, int]]:
        result: dict[str, dict[str, int]] = {}
        for (entity, action), n in sorted(self.counts.items()):
            result.setdefault(entity, {INSERTED: 0, UPDATED: 0, UNCHANGED: 0})[action] = n
        return result


@dataclass
class PluginOutcome:
    """What happened to one plugin file."""
    path: str
    status: str
    plugin_id: Optional[int] = None
    reason: Optional[str] = None
    skipped_records: int = 0
    stats: UpsertStats = field(default_factory=UpsertStats)


class SyncEngine:
    """Write extracted worlds, cells and plugins into the store.

    Every row goes through an insert-or-update on its natural unique key,
    so concurrent writers and re-runs never create duplicates. A plugin
    whose fingerprint matches the stored one is skipped before decoding.
    """

    def __init__(self, store: Store):
        self.store = store

    def is_unchanged(self, file_id: int, path: str, plugin_hash: int) -> bool:
        return self.store.get_plugin_hash(file_id, path) == plugin_hash

    def apply_plugin(self, db_file: File, db_mod: Mod, path: str, data: bytes,
                     now: Optional[str] = None) -> PluginOutcome:
        """Fingerprint, decode, extract and commit one plugin."""
        if self.is_unchanged(db_file.id, path, fingerprint(data)):
            logger.info("Skipping unchanged plugin %s (file %d)", path, db_file.id)
            return PluginOutcome(path=path, status=SKIPPED)
        try:
            extracted = extract_plugin(data, path)
        except PluginError as exc:
            logger.warning("Failed to parse plugin %s (file %d): %s", path, db_file.id, exc)
            return PluginOutcome(path=path, status=FAILED, reason=str(exc))
        return self.commit_plugin(db_file, db_mod, extracted, now)

    def commit_plugin(self, db_file: File, db_mod: Mod, extracted: ExtractedPlugin,
                      now: Optional[str] = None) -> PluginOutcome:
        """Upsert a plugin and everything it references in one transaction."""
        now = now or utcnow()
        stats = UpsertStats()
        try:
            with self.store.transaction():
                plugin = stats.record("plugin", self.store.upsert_plugin(
                    db_file.id, db_mod.id, extracted, now, display_name=db_file.name))
                world_ids = self._upsert_worlds(extracted.world_keys, False, stats, now)

                for world in extracted.worlds:
                    stats.record("plugin_world", self.store.upsert_plugin_world(
                        plugin.id, world_ids[world.key], world.editor_id, now))

                for cell in extracted.cells:
                    world_id = world_ids[cell.world] if cell.world is not None else None
                    row = stats.record("cell", self.store.upsert_cell(cell, world_id, now=now))
                    stats.record("plugin_cell", self.store.upsert_plugin_cell(
                        plugin.id, row.id, db_file.id, db_mod.id, cell.editor_id, now))
        except StorageError as exc:
            logger.warning("Failed to store plugin %s (file %d): %s",
                           extracted.path, db_file.id, exc)
            return PluginOutcome(path=extracted.path, status=FAILED, reason=str(exc),
                                 skipped_records=extracted.skipped_records)

        logger.info("Stored plugin %s: %d worlds, %d cells, %d writes", extracted.path,
                    len(extracted.worlds), len(extracted.cells), stats.writes)
        return PluginOutcome(path=extracted.path, status=PROCESSED, plugin_id=plugin.id,
                             skipped_records=extracted.skipped_records, stats=stats)

    def _upsert_worlds(self, keys: list[FormKey], is_base_game: bool,
                       stats: UpsertStats, now: str) -> dict[FormKey, int]:
        world_ids = {}
        for key in keys:
            row = stats.record("world", self.store.upsert_world(key, is_base_game, now))
            world_ids[key] = row.id
        return world_ids

    def backfill_base_game(self, master_name: str, data: bytes,
                           now: Optional[str] = None) -> UpsertStats:
        """Seed worlds and cells from the game's own master file.

        Rows written here are flagged ``is_base_game`` and later mod-authored
        upserts leave them alone, so a mod that ships its own copy of the
        base master can never overwrite them.
        """
        now = now or utcnow()
        extracted = extract_plugin(data, master_name)
        stats = UpsertStats()
        with self.store.transaction():
            world_ids = self._upsert_worlds(extracted.world_keys, True, stats, now)
            for cell in extracted.cells:
                world_id = world_ids[cell.world] if cell.world is not None else None
                stats.record("cell", self.store.upsert_cell(
                    cell, world_id, is_base_game=True, now=now))
        logger.info("Upserted %d %s base worlds and %d base cells", len(world_ids),
                    master_name, len(extracted.cells))
        return stats
