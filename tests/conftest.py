import sqlite3
from datetime import datetime, timezone

import pytest

from modmapper.db.store import Store
from modmapper.sources import FileListing, ModListing

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    s = Store(tmp_path / "modmapper.db")
    yield s
    s.close()


@pytest.fixture
def make_file(store):
    """Create a game, mod and file row; returns (mod, file) models."""
    def _make(nexus_mod_id: int = 100, nexus_file_id: int = 1000):
        with store.transaction():
            game = store.upsert_game("skyrimspecialedition", 1704)
            mod_id = store.upsert_mod(game.id, ModListing(
                nexus_mod_id=nexus_mod_id, name=f"Mod {nexus_mod_id}", last_update_at=T0)).id
            file_id = store.upsert_file(mod_id, FileListing(
                nexus_file_id=nexus_file_id, name="Main", file_name=f"main-{nexus_file_id}.7z",
                uploaded_at=T0)).id
        return store.get_mod_by_id(mod_id), store.get_file_by_id(file_id)
    return _make


class _LockedConnection:
    """Wraps a connection so inserts into one table fail like a locked database."""

    def __init__(self, conn, table):
        self._conn = conn
        self._table = table

    def execute(self, sql, *args):
        if sql.startswith(f"INSERT INTO {self._table} "):
            raise sqlite3.OperationalError("database is locked")
        return self._conn.execute(sql, *args)

    def __getattr__(self, name):
        return getattr(self._conn, name)


@pytest.fixture
def lock_table(store):
    def _lock(table: str):
        store.conn = _LockedConnection(store.conn, table)
    return _lock
