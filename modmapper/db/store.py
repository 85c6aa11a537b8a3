"""Natural-key upserts and queries over the mod graph, with WAL mode."""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, NamedTuple, Optional

from modmapper.db.models import (
    Cell,
    CellData,
    File,
    Game,
    Mod,
    Plugin,
    PluginCell,
    PluginWorld,
    World,
    to_timestamp,
    utcnow,
)
from modmapper.db.schema import TABLES, init_db
from modmapper.errors import StorageError

if TYPE_CHECKING:
    from modmapper.esm.extract import CellCandidate, ExtractedPlugin
    from modmapper.esm.masters import FormKey
    from modmapper.sources import FileListing, ModListing

logger = logging.getLogger(__name__)

INSERTED = "inserted"
UPDATED = "updated"
UNCHANGED = "unchanged"

_GAME_COLS = "id, name, nexus_game_id, created_at, updated_at"
_MOD_COLS = (
    "id, game_id, nexus_mod_id, name, author_name, author_id, category_name, category_id, "
    "description, thumbnail_link, is_translation, first_upload_at, last_update_at, "
    "last_updated_files_at, created_at, updated_at"
)
_FILE_COLS = (
    "id, mod_id, nexus_file_id, name, file_name, category, version, mod_version, size, "
    "uploaded_at, downloaded_at, has_plugin, unable_to_extract_plugins, created_at, updated_at"
)
_PLUGIN_COLS = (
    "id, file_id, mod_id, name, file_name, file_path, hash, size, version, author, "
    "description, masters, created_at, updated_at"
)
_WORLD_COLS = "id, form_id, master, is_base_game, created_at, updated_at"
_CELL_COLS = (
    "id, form_id, master, world_id, x, y, is_persistent, is_base_game, created_at, updated_at"
)
_PLUGIN_WORLD_COLS = "id, plugin_id, world_id, editor_id, created_at, updated_at"
_PLUGIN_CELL_COLS = "id, plugin_id, cell_id, file_id, mod_id, editor_id, created_at, updated_at"

# Must match the expression in cells_unique_form_id_master_and_world_id
_CELL_CONFLICT = "form_id, master, COALESCE(world_id, -1)"


class Upserted(NamedTuple):
    """Row id plus what the upsert did to it."""
    id: int
    action: str


class Store:
    """Database access layer for the mod graph.

    Upsert methods never commit; wrap related writes in ``transaction()``
    so a plugin's rows land together or not at all.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.execute("PRAGMA busy_timeout=30000")
        self.conn.execute("PRAGMA cache_size=-64000")  # 64MB cache
        init_db(self.conn)

    def close(self):
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[Store]:
        """Commit on success, roll back on any exception."""
        try:
            yield self
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    # -- Generic upsert --

    def _find_id(self, table: str, key: dict) -> Optional[int]:
        where = " AND ".join(f"{col} IS ?" for col in key)
        row = self.conn.execute(
            f"SELECT id FROM {table} WHERE {where}", list(key.values())).fetchone()
        return row[0] if row else None

    def _upsert(self, table: str, key: dict, fields: dict, now: str,
                conflict: Optional[str] = None, guard: Optional[str] = None) -> Upserted:
        """Insert-or-update on the table's natural unique index.

        A conflicting row is only rewritten when one of ``fields`` differs
        (and ``guard`` holds), so untouched rows keep their ``updated_at``.
        """
        cols = [*key, *fields]
        placeholders = ", ".join("?" * (len(cols) + 2))
        if fields:
            changed = " OR ".join(f"{table}.{c} IS NOT excluded.{c}" for c in fields)
            where = f"({changed}) AND {guard}" if guard else changed
            sets = ", ".join(f"{c} = excluded.{c}" for c in fields)
            action = f"DO UPDATE SET {sets}, updated_at = excluded.updated_at WHERE {where}"
        else:
            action = "DO NOTHING"

        try:
            existing = self._find_id(table, key)
            cur = self.conn.execute(
                f"INSERT INTO {table} ({', '.join(cols)}, created_at, updated_at) "
                f"VALUES ({placeholders}) "
                f"ON CONFLICT ({conflict or ', '.join(key)}) {action}",
                [*key.values(), *fields.values(), now, now],
            )
        except sqlite3.Error as exc:
            raise StorageError(f"{table} upsert failed for {key}: {exc}") from exc

        if cur.rowcount > 0:
            status = UPDATED if existing is not None else INSERTED
        else:
            status = UNCHANGED
        if existing is not None:
            row_id = existing
        elif status == INSERTED:
            row_id = cur.lastrowid
        else:
            # Another writer inserted the same key between lookup and upsert
            row_id = self._find_id(table, key)
        return Upserted(row_id, status)

    # -- Games, mods, files --

    def upsert_game(self, name: str, nexus_game_id: int, now: Optional[str] = None) -> Game:
        now = now or utcnow()
        row_id, _ = self._upsert("games", {"nexus_game_id": nexus_game_id, "name": name}, {}, now)
        return self.get_game(row_id)

    def upsert_mod(self, game_id: int, listing: ModListing, now: Optional[str] = None) -> Upserted:
        now = now or utcnow()
        return self._upsert(
            "mods",
            {"game_id": game_id, "nexus_mod_id": listing.nexus_mod_id},
            {
                "name": listing.name,
                "author_name": listing.author_name,
                "author_id": listing.author_id,
                "category_name": listing.category_name,
                "category_id": listing.category_id,
                "description": listing.description,
                "thumbnail_link": listing.thumbnail_link,
                "is_translation": int(listing.is_translation),
                "first_upload_at": _ts(listing.first_upload_at),
                "last_update_at": _ts(listing.last_update_at),
            },
            now,
        )

    def upsert_file(self, mod_id: int, listing: FileListing, now: Optional[str] = None) -> Upserted:
        now = now or utcnow()
        return self._upsert(
            "files",
            {"mod_id": mod_id, "nexus_file_id": listing.nexus_file_id},
            {
                "name": listing.name,
                "file_name": listing.file_name,
                "category": listing.category,
                "version": listing.version,
                "mod_version": listing.mod_version,
                "size": listing.size,
                "uploaded_at": _ts(listing.uploaded_at),
            },
            now,
        )

    def mark_file_downloaded(self, file_id: int, now: Optional[str] = None):
        """Stamp the first successful fetch; later re-fetches leave the row alone."""
        now = now or utcnow()
        self.conn.execute(
            "UPDATE files SET downloaded_at=?, updated_at=? WHERE id=? AND downloaded_at IS NULL",
            (now, now, file_id))

    def update_file_flags(self, file_id: int, has_plugin: Optional[bool] = None,
                          unable_to_extract_plugins: Optional[bool] = None,
                          now: Optional[str] = None):
        """Set plugin-presence flags, touching the row only if a flag changes."""
        now = now or utcnow()
        if has_plugin is not None:
            self.conn.execute(
                "UPDATE files SET has_plugin=?, updated_at=? WHERE id=? AND has_plugin IS NOT ?",
                (int(has_plugin), now, file_id, int(has_plugin)))
        if unable_to_extract_plugins is not None:
            flag = int(unable_to_extract_plugins)
            self.conn.execute(
                "UPDATE files SET unable_to_extract_plugins=?, updated_at=? "
                "WHERE id=? AND unable_to_extract_plugins IS NOT ?",
                (flag, now, file_id, flag))

    def update_watermark(self, mod_id: int, refreshed_at: str):
        """Record that every file of a mod was refreshed as of ``refreshed_at``."""
        self.conn.execute(
            "UPDATE mods SET last_updated_files_at=? "
            "WHERE id=? AND last_updated_files_at IS NOT ?", (refreshed_at, mod_id, refreshed_at))

    # -- Plugins, worlds, cells --

    def upsert_plugin(self, file_id: int, mod_id: int, plugin: ExtractedPlugin,
                      now: Optional[str] = None, display_name: Optional[str] = None) -> Upserted:
        """Upsert a plugin. ``name`` holds ``display_name`` (the owning file's
        name) when given; ``file_name`` is always the plugin basename.
        """
        now = now or utcnow()
        header = plugin.header
        return self._upsert(
            "plugins",
            {"file_id": file_id, "file_path": plugin.path},
            {
                "mod_id": mod_id,
                "name": display_name or plugin.name,
                "file_name": plugin.name,
                "hash": plugin.fingerprint,
                "size": plugin.size,
                "version": header.version,
                "author": header.author,
                "description": header.description,
                "masters": json.dumps(header.masters),
            },
            now,
        )

    def upsert_world(self, key: FormKey, is_base_game: bool = False,
                     now: Optional[str] = None) -> Upserted:
        """Upsert a world; mod-authored writes never touch base-game rows."""
        now = now or utcnow()
        return self._upsert(
            "worlds",
            {"form_id": key.form_id, "master": key.master},
            {"is_base_game": int(is_base_game)},
            now,
            guard=None if is_base_game else "NOT worlds.is_base_game",
        )

    def upsert_cell(self, cell: CellCandidate, world_id: Optional[int],
                    is_base_game: bool = False, now: Optional[str] = None) -> Upserted:
        """Upsert a cell; mod-authored writes never touch base-game rows.

        Persistence is last-write-wins across plugins.
        """
        now = now or utcnow()
        return self._upsert(
            "cells",
            {"form_id": cell.key.form_id, "master": cell.key.master, "world_id": world_id},
            {
                "x": cell.x,
                "y": cell.y,
                "is_persistent": int(cell.is_persistent),
                "is_base_game": int(is_base_game),
            },
            now,
            conflict=_CELL_CONFLICT,
            guard=None if is_base_game else "NOT cells.is_base_game",
        )

    def upsert_plugin_world(self, plugin_id: int, world_id: int, editor_id: str,
                            now: Optional[str] = None) -> Upserted:
        now = now or utcnow()
        return self._upsert(
            "plugin_worlds",
            {"plugin_id": plugin_id, "world_id": world_id},
            {"editor_id": editor_id},
            now,
        )

    def upsert_plugin_cell(self, plugin_id: int, cell_id: int, file_id: int, mod_id: int,
                           editor_id: Optional[str], now: Optional[str] = None) -> Upserted:
        now = now or utcnow()
        return self._upsert(
            "plugin_cells",
            {"plugin_id": plugin_id, "cell_id": cell_id},
            {"file_id": file_id, "mod_id": mod_id, "editor_id": editor_id},
            now,
        )

    # -- Queries --

    def get_game(self, game_id: int) -> Optional[Game]:
        row = self.conn.execute(f"SELECT {_GAME_COLS} FROM games WHERE id=?", (game_id,)).fetchone()
        return Game(*row) if row else None

    def get_mod(self, game_id: int, nexus_mod_id: int) -> Optional[Mod]:
        row = self.conn.execute(
            f"SELECT {_MOD_COLS} FROM mods WHERE game_id=? AND nexus_mod_id=?",
            (game_id, nexus_mod_id)).fetchone()
        return Mod(*row) if row else None

    def get_mod_by_id(self, mod_id: int) -> Optional[Mod]:
        row = self.conn.execute(f"SELECT {_MOD_COLS} FROM mods WHERE id=?", (mod_id,)).fetchone()
        return Mod(*row) if row else None

    def list_mods(self, game_id: int) -> list[Mod]:
        cur = self.conn.execute(
            f"SELECT {_MOD_COLS} FROM mods WHERE game_id=? ORDER BY nexus_mod_id", (game_id,))
        return [Mod(*row) for row in cur.fetchall()]

    def get_file(self, mod_id: int, nexus_file_id: int) -> Optional[File]:
        row = self.conn.execute(
            f"SELECT {_FILE_COLS} FROM files WHERE mod_id=? AND nexus_file_id=?",
            (mod_id, nexus_file_id)).fetchone()
        return File(*row) if row else None

    def get_file_by_id(self, file_id: int) -> Optional[File]:
        row = self.conn.execute(f"SELECT {_FILE_COLS} FROM files WHERE id=?", (file_id,)).fetchone()
        return File(*row) if row else None

    def get_plugin(self, file_id: int, file_path: str) -> Optional[Plugin]:
        row = self.conn.execute(
            f"SELECT {_PLUGIN_COLS} FROM plugins WHERE file_id=? AND file_path=?",
            (file_id, file_path)).fetchone()
        return Plugin(*row) if row else None

    def get_plugin_hash(self, file_id: int, file_path: str) -> Optional[int]:
        row = self.conn.execute(
            "SELECT hash FROM plugins WHERE file_id=? AND file_path=?",
            (file_id, file_path)).fetchone()
        return row[0] if row else None

    def list_plugins(self, file_id: int) -> list[Plugin]:
        cur = self.conn.execute(
            f"SELECT {_PLUGIN_COLS} FROM plugins WHERE file_id=? ORDER BY file_path", (file_id,))
        return [Plugin(*row) for row in cur.fetchall()]

    def get_world(self, form_id: int, master: str) -> Optional[World]:
        row = self.conn.execute(
            f"SELECT {_WORLD_COLS} FROM worlds WHERE form_id=? AND master=?",
            (form_id, master)).fetchone()
        return World(*row) if row else None

    def get_cell(self, form_id: int, master: str, world_id: Optional[int]) -> Optional[Cell]:
        row = self.conn.execute(
            f"SELECT {_CELL_COLS} FROM cells "
            f"WHERE form_id=? AND master=? AND COALESCE(world_id, -1)=COALESCE(?, -1)",
            (form_id, master, world_id)).fetchone()
        return Cell(*row) if row else None

    def get_cells(self, form_id: int, master: str) -> list[Cell]:
        """Every row for a form id/master pair, one per distinct world."""
        cur = self.conn.execute(
            f"SELECT {_CELL_COLS} FROM cells WHERE form_id=? AND master=? ORDER BY id",
            (form_id, master))
        return [Cell(*row) for row in cur.fetchall()]

    def get_plugin_worlds(self, plugin_id: int) -> list[PluginWorld]:
        cur = self.conn.execute(
            f"SELECT {_PLUGIN_WORLD_COLS} FROM plugin_worlds WHERE plugin_id=? ORDER BY id",
            (plugin_id,))
        return [PluginWorld(*row) for row in cur.fetchall()]

    def get_plugin_cells(self, plugin_id: int) -> list[PluginCell]:
        cur = self.conn.execute(
            f"SELECT {_PLUGIN_CELL_COLS} FROM plugin_cells WHERE plugin_id=? ORDER BY id",
            (plugin_id,))
        return [PluginCell(*row) for row in cur.fetchall()]

    def count_mod_edits(self, master: str, world_id: int, x: int, y: int) -> int:
        """Number of distinct mods with a plugin that edits the cell at (x, y)."""
        row = self.conn.execute(
            "SELECT COUNT(DISTINCT plugin_cells.mod_id) FROM cells "
            "JOIN plugin_cells ON cells.id = plugin_cells.cell_id "
            "WHERE cells.master=? AND cells.world_id=? AND cells.x=? AND cells.y=?",
            (master, world_id, x, y)).fetchone()
        return row[0]

    def get_cell_data(self, master: str, world_id: int, x: int, y: int,
                      base_game_only: bool = False) -> Optional[CellData]:
        """Cell at (x, y) plus the plugins, files and mods that edit it."""
        sql = (f"SELECT {_CELL_COLS} FROM cells "
               "WHERE master=? AND world_id=? AND x=? AND y=?")
        if base_game_only:
            sql += " AND is_base_game = 1"
        row = self.conn.execute(sql, (master, world_id, x, y)).fetchone()
        if row is None:
            return None
        cell = Cell(*row)

        plugins_count, files_count, mods_count = self.conn.execute(
            "SELECT COUNT(DISTINCT plugin_id), COUNT(DISTINCT file_id), COUNT(DISTINCT mod_id) "
            "FROM plugin_cells WHERE cell_id=?", (cell.id,)).fetchone()
        cur = self.conn.execute(
            "SELECT DISTINCT mods.nexus_mod_id, mods.name FROM plugin_cells "
            "JOIN mods ON mods.id = plugin_cells.mod_id "
            "WHERE plugin_cells.cell_id=? ORDER BY mods.nexus_mod_id", (cell.id,))
        mods = [{"nexus_mod_id": nexus_id, "name": name} for nexus_id, name in cur.fetchall()]
        return CellData(cell=cell, plugins_count=plugins_count, files_count=files_count,
                        mods_count=mods_count, mods=mods)

    def table_counts(self) -> dict[str, int]:
        return {
            table: self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            for table in TABLES
        }

    def get_db_size(self) -> int:
        """Get database file size in bytes."""
        return self.db_path.stat().st_size if self.db_path.exists() else 0


def _ts(value) -> Optional[str]:
    return to_timestamp(value) if value is not None else None
