"""Tests for the upsert & diff engine."""
from __future__ import annotations

from modmapper.db.store import INSERTED, UNCHANGED
from modmapper.diff.engine import FAILED, PROCESSED, SKIPPED, SyncEngine
from modmapper.esm.masters import fingerprint

from plugin_builder import build_plugin, cell, interior_group, tes4, world, world_group

TAMRIEL = 0x0000003C


def base_master() -> bytes:
    return build_plugin(
        tes4(),
        world_group([(world(TAMRIEL, "Tamriel", "Skyrim"),
                      [cell(0x00009ABC, "Riverwood", xy=(3, -2)),
                       cell(0x00009ABD, xy=(4, -2))])]),
        interior_group([cell(0x00001000, "Breezehome", interior=True)]),
    )


def mod_plugin(persistent_flag: int = 0) -> bytes:
    return build_plugin(
        tes4(["Skyrim.esm"]),
        world_group([(world(TAMRIEL, "Tamriel"),
                      [cell(0x00009ABC, "RiverwoodEdit", xy=(3, -2), flags=persistent_flag),
                       cell(0x01000D63, "NewCell", xy=(10, 10))])]),
    )


class TestApplyPlugin:
    def test_first_apply_inserts_everything(self, store, make_file):
        mod, db_file = make_file()
        outcome = SyncEngine(store).apply_plugin(db_file, mod, "A.esp", mod_plugin())
        assert outcome.status == PROCESSED
        assert outcome.stats.get("plugin", INSERTED) == 1
        assert outcome.stats.get("world", INSERTED) == 1
        assert outcome.stats.get("cell", INSERTED) == 2
        assert outcome.stats.get("plugin_cell", INSERTED) == 2

        plugin = store.get_plugin(db_file.id, "A.esp")
        assert plugin.masters == ["Skyrim.esm"]
        assert plugin.name == db_file.name == "Main"
        assert plugin.file_name == "A.esp"
        assert plugin.hash == fingerprint(mod_plugin())
        assert len(store.get_plugin_worlds(plugin.id)) == 1
        links = store.get_plugin_cells(plugin.id)
        assert {l.editor_id for l in links} == {"RiverwoodEdit", "NewCell"}
        assert all(l.file_id == db_file.id and l.mod_id == mod.id for l in links)

    def test_unchanged_plugin_writes_nothing(self, store, make_file):
        mod, db_file = make_file()
        engine = SyncEngine(store)
        engine.apply_plugin(db_file, mod, "A.esp", mod_plugin())
        before = store.conn.total_changes

        outcome = engine.apply_plugin(db_file, mod, "A.esp", mod_plugin())
        assert outcome.status == SKIPPED
        assert store.conn.total_changes == before

    def test_reapply_after_change_touches_only_changed_rows(self, store, make_file):
        mod, db_file = make_file()
        engine = SyncEngine(store)
        engine.apply_plugin(db_file, mod, "A.esp", mod_plugin())
        outcome = engine.apply_plugin(db_file, mod, "A.esp", mod_plugin(persistent_flag=0x400))
        assert outcome.status == PROCESSED
        assert outcome.stats.get("plugin", "updated") == 1
        assert outcome.stats.get("cell", "updated") == 1
        assert outcome.stats.get("cell", UNCHANGED) == 1
        assert outcome.stats.get("world", UNCHANGED) == 1
        assert outcome.stats.get("plugin_cell", UNCHANGED) == 2

    def test_same_plugin_twice_in_one_archive(self, store, make_file):
        mod, db_file = make_file()
        engine = SyncEngine(store)
        engine.apply_plugin(db_file, mod, "Option A/A.esp", mod_plugin())
        engine.apply_plugin(db_file, mod, "Option B/A.esp", mod_plugin())
        assert len(store.list_plugins(db_file.id)) == 2
        assert store.table_counts()["cells"] == 2

    def test_corrupt_plugin_fails_without_writes(self, store, make_file):
        mod, db_file = make_file()
        outcome = SyncEngine(store).apply_plugin(db_file, mod, "A.esp", mod_plugin()[:-7])
        assert outcome.status == FAILED
        assert "A.esp" in outcome.reason
        assert store.table_counts()["plugins"] == 0

    def test_database_error_fails_only_that_plugin(self, store, make_file, lock_table):
        mod, db_file = make_file()
        lock_table("cells")
        outcome = SyncEngine(store).apply_plugin(db_file, mod, "A.esp", mod_plugin())
        assert outcome.status == FAILED
        assert "database is locked" in outcome.reason
        counts = store.table_counts()
        assert counts["plugins"] == 0
        assert counts["worlds"] == 0


class TestBackfill:
    def test_backfill_marks_base_game(self, store):
        stats = SyncEngine(store).backfill_base_game("Skyrim.esm", base_master())
        assert stats.get("world", INSERTED) == 1
        assert stats.get("cell", INSERTED) == 3
        world = store.get_world(TAMRIEL, "Skyrim.esm")
        assert world.is_base_game
        riverwood = store.get_cell(0x9ABC, "Skyrim.esm", world.id)
        assert riverwood.is_base_game
        assert (riverwood.x, riverwood.y) == (3, -2)
        assert store.get_cell(0x1000, "Skyrim.esm", None).is_base_game

    def test_backfill_is_idempotent(self, store):
        engine = SyncEngine(store)
        engine.backfill_base_game("Skyrim.esm", base_master())
        stats = engine.backfill_base_game("Skyrim.esm", base_master())
        assert stats.writes == 0

    def test_mod_cannot_overwrite_base_game_cell(self, store, make_file):
        engine = SyncEngine(store)
        engine.backfill_base_game("Skyrim.esm", base_master())
        mod, db_file = make_file()
        outcome = engine.apply_plugin(db_file, mod, "A.esp", mod_plugin(persistent_flag=0x400))
        assert outcome.stats.get("cell", UNCHANGED) == 1
        assert outcome.stats.get("cell", INSERTED) == 1

        world = store.get_world(TAMRIEL, "Skyrim.esm")
        riverwood = store.get_cell(0x9ABC, "Skyrim.esm", world.id)
        assert riverwood.is_base_game
        assert not riverwood.is_persistent
        assert store.count_mod_edits("Skyrim.esm", world.id, 3, -2) == 1

    def test_cell_data_lists_editing_mods(self, store, make_file):
        engine = SyncEngine(store)
        engine.backfill_base_game("Skyrim.esm", base_master())
        for nexus_mod_id in (1, 2):
            mod, db_file = make_file(nexus_mod_id=nexus_mod_id, nexus_file_id=nexus_mod_id * 10)
            engine.apply_plugin(db_file, mod, "A.esp", mod_plugin())
        world = store.get_world(TAMRIEL, "Skyrim.esm")
        data = store.get_cell_data("Skyrim.esm", world.id, 3, -2)
        assert data.mods_count == 2
        assert data.plugins_count == 2
        assert [m["nexus_mod_id"] for m in data.mods] == [1, 2]
