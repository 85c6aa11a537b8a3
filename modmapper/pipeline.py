"""Decode plugins on a bounded thread pool and commit them one at a time."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Iterator, Optional

from modmapper.config import DEFAULT_WORKERS
from modmapper.db.models import File, Mod
from modmapper.diff.engine import FAILED, SKIPPED, PluginOutcome, SyncEngine
from modmapper.errors import PluginError
from modmapper.esm.extract import extract_plugin
from modmapper.esm.masters import fingerprint
from modmapper.sources import PluginBlob

logger = logging.getLogger(__name__)


@dataclass
class PluginJob:
    file: File
    mod: Mod
    blob: PluginBlob


class DecodePool:
    """Run decoding in parallel; keep every storage write on the caller's thread.

    Decoding and extraction are pure functions of a plugin's bytes, so they
    fan out across workers. The store connection is only ever used here,
    after each future completes.
    """

    def __init__(self, engine: SyncEngine, workers: int = DEFAULT_WORKERS):
        self.engine = engine
        self.workers = max(1, workers)

    def run(self, jobs: list[PluginJob], now: Optional[str] = None
            ) -> Iterator[tuple[PluginJob, PluginOutcome]]:
        pending = []
        for job in jobs:
            if self.engine.is_unchanged(job.file.id, job.blob.path, fingerprint(job.blob.data)):
                logger.info("Skipping unchanged plugin %s (file %d)", job.blob.path, job.file.id)
                yield job, PluginOutcome(path=job.blob.path, status=SKIPPED)
            else:
                pending.append(job)

        if not pending:
            return

        with ThreadPoolExecutor(max_workers=min(self.workers, len(pending))) as executor:
            futures = {
                executor.submit(extract_plugin, job.blob.data, job.blob.path): job
                for job in pending
            }
            for future in as_completed(futures):
                job = futures[future]
                try:
                    extracted = future.result()
                except PluginError as exc:
                    logger.warning("Failed to parse plugin %s (mod %d, file %d): %s",
                                   job.blob.path, job.mod.nexus_mod_id,
                                   job.file.nexus_file_id, exc)
                    yield job, PluginOutcome(path=job.blob.path, status=FAILED, reason=str(exc))
                    continue
                yield job, self.engine.commit_plugin(job.file, job.mod, extracted, now)
