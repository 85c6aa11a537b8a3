"""Tests for the decode worker pool."""
from __future__ import annotations

from modmapper.diff.engine import FAILED, PROCESSED, SKIPPED, SyncEngine
from modmapper.pipeline import DecodePool, PluginJob
from modmapper.sources import PluginBlob

from plugin_builder import build_plugin, cell, interior_group, tes4


def plugin(form_id: int) -> bytes:
    return build_plugin(tes4(["Skyrim.esm"]), interior_group([cell(form_id, interior=True)]))


class TestDecodePool:
    def test_mixed_batch(self, store, make_file):
        mod, db_file = make_file()
        engine = SyncEngine(store)
        engine.apply_plugin(db_file, mod, "Old.esp", plugin(0x01000800))

        jobs = [PluginJob(db_file, mod, PluginBlob(path, data)) for path, data in [
            ("Old.esp", plugin(0x01000800)),
            ("New1.esp", plugin(0x01000801)),
            ("New2.esp", plugin(0x01000802)),
            ("Bad.esp", plugin(0x01000803)[:-2]),
        ]]
        results = {job.blob.path: outcome.status
                   for job, outcome in DecodePool(engine, workers=3).run(jobs)}
        assert results == {"Old.esp": SKIPPED, "New1.esp": PROCESSED,
                           "New2.esp": PROCESSED, "Bad.esp": FAILED}
        assert len(store.list_plugins(db_file.id)) == 3

    def test_skipped_jobs_come_first(self, store, make_file):
        mod, db_file = make_file()
        engine = SyncEngine(store)
        engine.apply_plugin(db_file, mod, "Old.esp", plugin(0x01000800))
        jobs = [PluginJob(db_file, mod, PluginBlob("New.esp", plugin(0x01000801))),
                PluginJob(db_file, mod, PluginBlob("Old.esp", plugin(0x01000800)))]
        order = [job.blob.path for job, _ in DecodePool(engine, workers=1).run(jobs)]
        assert order == ["Old.esp", "New.esp"]

    def test_empty(self, store):
        assert list(DecodePool(SyncEngine(store)).run([])) == []
