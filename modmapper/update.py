"""Incremental update loop: decide which mods need refreshing and drive the pipeline."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from modmapper.config import DEFAULT_WORKERS
from modmapper.db.models import Game, Mod, as_utc, to_timestamp
from modmapper.db.store import Store
from modmapper.diff.engine import FAILED, SyncEngine, UpsertStats
from modmapper.diff.report import FileOutcome, RunSummary
from modmapper.errors import ArchiveError, ModmapperError, SourceError, StorageError
from modmapper.pipeline import DecodePool, PluginJob
from modmapper.sources import FileListing, ModListing, ModSource

logger = logging.getLogger(__name__)


class RunMode(str, Enum):
    INCREMENTAL = "incremental"   # only mods updated since their watermark
    FULL = "full"                 # every mod, after re-seeding the base game
    BACKFILL = "backfill"         # base game master only


class Updater:
    """Refresh mods from a source, one mod at a time.

    A mod's ``last_updated_files_at`` watermark only advances when every one
    of its files committed, so files that failed are picked up again on the
    next run.
    """

    def __init__(self, store: Store, source: Optional[ModSource], game_name: str,
                 nexus_game_id: int, base_master: Optional[Path] = None,
                 workers: int = DEFAULT_WORKERS):
        self.store = store
        self.source = source
        self.game_name = game_name
        self.nexus_game_id = nexus_game_id
        self.base_master = base_master
        self.engine = SyncEngine(store)
        self.pool = DecodePool(self.engine, workers)

    def run(self, mode: RunMode = RunMode.INCREMENTAL, since: Optional[datetime] = None,
            now: Optional[datetime] = None) -> RunSummary:
        """Run one update pass.

        ``since`` stands in for the watermark of mods that have none yet.
        ``now`` is the run start time; it stamps every write and becomes the
        new watermark of each fully refreshed mod.
        """
        mode = RunMode(mode)
        started = as_utc(now) if now else datetime.now(timezone.utc)
        ts = to_timestamp(started)
        summary = RunSummary(mode=mode.value, started_at=ts)
        logger.info("Starting %s run for %s", mode.value, self.game_name)

        with self.store.transaction():
            game = self.store.upsert_game(self.game_name, self.nexus_game_id, ts)

        if mode is RunMode.BACKFILL or (mode is RunMode.FULL and self.base_master is not None):
            summary.backfill = self.backfill(ts)

        if mode is not RunMode.BACKFILL:
            if self.source is None:
                raise ModmapperError("No mod source configured")
            for listing in self.source.list_mods(self.game_name):
                summary.mods_checked += 1
                try:
                    self._update_mod(game, listing, mode, since, ts, summary)
                except (SourceError, StorageError) as exc:
                    logger.warning("Failed to refresh mod %d: %s", listing.nexus_mod_id, exc)
                    summary.add_file(FileOutcome(nexus_mod_id=listing.nexus_mod_id,
                                                 nexus_file_id=0, name="(mod)", reason=str(exc)))

        summary.finished_at = to_timestamp(datetime.now(timezone.utc))
        logger.info("Run finished: %d processed, %d skipped, %d failed files",
                    len(summary.files_processed), len(summary.files_skipped),
                    len(summary.files_failed))
        return summary

    def backfill(self, ts: Optional[str] = None) -> UpsertStats:
        """Seed base-game worlds and cells from the configured master file."""
        if self.base_master is None:
            raise ModmapperError("No base game master configured for backfill")
        logger.info("Backfilling base game data from %s", self.base_master)
        try:
            data = self.base_master.read_bytes()
        except OSError as exc:
            raise ModmapperError(f"Cannot read base master {self.base_master}: {exc}") from exc
        return self.engine.backfill_base_game(self.base_master.name, data, ts)

    @staticmethod
    def needs_refresh(mode: RunMode, existing: Optional[Mod], listing: ModListing,
                      since: Optional[datetime] = None) -> bool:
        if mode is RunMode.FULL:
            return True
        watermark = existing.watermark if existing else None
        if watermark is None and since is not None:
            watermark = as_utc(since)
        if watermark is None or listing.last_update_at is None:
            return True
        return as_utc(listing.last_update_at) > watermark

    def _update_mod(self, game: Game, listing: ModListing, mode: RunMode,
                    since: Optional[datetime], ts: str, summary: RunSummary) -> None:
        existing = self.store.get_mod(game.id, listing.nexus_mod_id)
        if not self.needs_refresh(mode, existing, listing, since):
            logger.debug("Mod %d unchanged since last refresh", listing.nexus_mod_id)
            return

        logger.info("Refreshing mod %d (%s)", listing.nexus_mod_id, listing.name)
        summary.mods_refreshed += 1
        with self.store.transaction():
            mod_id = self.store.upsert_mod(game.id, listing, ts).id
        db_mod = self.store.get_mod_by_id(mod_id)

        outcomes = self._process_files(db_mod, ts)
        for outcome in outcomes:
            summary.add_file(outcome)

        if any(o.status == FAILED for o in outcomes):
            logger.warning("Not advancing watermark of mod %d: some files failed",
                           db_mod.nexus_mod_id)
            return
        with self.store.transaction():
            self.store.update_watermark(db_mod.id, ts)

    def _process_files(self, db_mod: Mod, ts: str) -> list[FileOutcome]:
        try:
            listings = list(self.source.list_files(self.game_name, db_mod.nexus_mod_id))
        except SourceError as exc:
            logger.warning("Failed to list files of mod %d: %s", db_mod.nexus_mod_id, exc)
            return [FileOutcome(nexus_mod_id=db_mod.nexus_mod_id, nexus_file_id=0,
                                name="(file list)", reason=str(exc))]

        outcomes: dict[int, FileOutcome] = {}
        jobs: list[PluginJob] = []
        for listing in listings:
            if not listing.is_current:
                logger.info("Skipping file %d (%s) with category %s", listing.nexus_file_id,
                            listing.file_name, listing.category)
                continue
            outcome, file_jobs = self._fetch_file(db_mod, listing, ts)
            outcomes[outcome.file_id] = outcome
            jobs.extend(file_jobs)

        for job, plugin_outcome in self.pool.run(jobs, ts):
            outcomes[job.file.id].plugins.append(plugin_outcome)
        return list(outcomes.values())

    def _fetch_file(self, db_mod: Mod, listing: FileListing,
                    ts: str) -> tuple[FileOutcome, list[PluginJob]]:
        with self.store.transaction():
            file_id = self.store.upsert_file(db_mod.id, listing, ts).id
        outcome = FileOutcome(nexus_mod_id=db_mod.nexus_mod_id,
                              nexus_file_id=listing.nexus_file_id,
                              name=listing.file_name, file_id=file_id)

        try:
            blobs = self.source.fetch_plugins(self.game_name, db_mod.nexus_mod_id,
                                              listing.nexus_file_id)
        except ArchiveError as exc:
            logger.warning("Unable to extract plugins from file %d: %s",
                           listing.nexus_file_id, exc)
            with self.store.transaction():
                self.store.update_file_flags(file_id, unable_to_extract_plugins=True, now=ts)
            outcome.reason = str(exc)
            return outcome, []
        except SourceError as exc:
            logger.warning("Failed to fetch file %d: %s", listing.nexus_file_id, exc)
            outcome.reason = str(exc)
            return outcome, []

        with self.store.transaction():
            self.store.mark_file_downloaded(file_id, ts)
            self.store.update_file_flags(file_id, has_plugin=bool(blobs),
                                         unable_to_extract_plugins=False, now=ts)
        if not blobs:
            logger.info("File %d contains no plugins", listing.nexus_file_id)
        db_file = self.store.get_file_by_id(file_id)
        return outcome, [PluginJob(file=db_file, mod=db_mod, blob=blob) for blob in blobs]
