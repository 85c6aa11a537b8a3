"""SQLite schema for the mod/plugin/world/cell graph."""
from __future__ import annotations

import sqlite3

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS games (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    name          TEXT NOT NULL,
    nexus_game_id INTEGER NOT NULL,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS games_unique_nexus_game_id_and_name
    ON games(nexus_game_id, name);

CREATE TABLE IF NOT EXISTS mods (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    game_id               INTEGER NOT NULL REFERENCES games(id),
    nexus_mod_id          INTEGER NOT NULL,
    name                  TEXT NOT NULL,
    author_name           TEXT,
    author_id             INTEGER,
    category_name         TEXT,
    category_id           INTEGER,
    description           TEXT,
    thumbnail_link        TEXT,
    is_translation        INTEGER NOT NULL DEFAULT 0,
    first_upload_at       TEXT,
    last_update_at        TEXT,
    last_updated_files_at TEXT,
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS mods_unique_game_id_and_nexus_mod_id
    ON mods(game_id, nexus_mod_id);

CREATE TABLE IF NOT EXISTS files (
    id                        INTEGER PRIMARY KEY AUTOINCREMENT,
    mod_id                    INTEGER NOT NULL REFERENCES mods(id),
    nexus_file_id             INTEGER NOT NULL,
    name                      TEXT NOT NULL,
    file_name                 TEXT NOT NULL,
    category                  TEXT,
    version                   TEXT,
    mod_version               TEXT,
    size                      INTEGER NOT NULL DEFAULT 0,
    uploaded_at               TEXT NOT NULL,
    downloaded_at             TEXT,
    has_plugin                INTEGER NOT NULL DEFAULT 1,
    unable_to_extract_plugins INTEGER NOT NULL DEFAULT 0,
    created_at                TEXT NOT NULL,
    updated_at                TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS files_unique_mod_id_and_nexus_file_id
    ON files(mod_id, nexus_file_id);

CREATE TABLE IF NOT EXISTS plugins (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id     INTEGER NOT NULL REFERENCES files(id),
    mod_id      INTEGER NOT NULL REFERENCES mods(id),
    name        TEXT NOT NULL,
    file_name   TEXT NOT NULL,
    file_path   TEXT NOT NULL,
    hash        INTEGER NOT NULL,
    size        INTEGER NOT NULL,
    version     REAL,
    author      TEXT,
    description TEXT,
    masters     TEXT NOT NULL DEFAULT '[]',   -- JSON array, order-significant
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

-- An archive can hold several plugins with the same name at different paths
CREATE UNIQUE INDEX IF NOT EXISTS plugins_unique_file_id_and_file_path
    ON plugins(file_id, file_path);
CREATE INDEX IF NOT EXISTS plugins_hash ON plugins(hash);

CREATE TABLE IF NOT EXISTS worlds (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    form_id      INTEGER NOT NULL,
    master       TEXT NOT NULL,
    is_base_game INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS worlds_unique_form_id_and_master
    ON worlds(form_id, master);

CREATE TABLE IF NOT EXISTS cells (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    form_id       INTEGER NOT NULL,
    master        TEXT NOT NULL,
    world_id      INTEGER REFERENCES worlds(id),
    x             INTEGER,
    y             INTEGER,
    is_persistent INTEGER NOT NULL DEFAULT 0,
    is_base_game  INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

-- NULLS NOT DISTINCT: two cells with no world and the same form id/master collide
CREATE UNIQUE INDEX IF NOT EXISTS cells_unique_form_id_master_and_world_id
    ON cells(form_id, master, COALESCE(world_id, -1));
CREATE INDEX IF NOT EXISTS cells_world_id_x_y ON cells(world_id, x, y);

CREATE TABLE IF NOT EXISTS plugin_worlds (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    plugin_id  INTEGER NOT NULL REFERENCES plugins(id),
    world_id   INTEGER NOT NULL REFERENCES worlds(id),
    editor_id  TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS plugin_worlds_unique_plugin_id_and_world_id
    ON plugin_worlds(plugin_id, world_id);
CREATE INDEX IF NOT EXISTS plugin_worlds_world_id ON plugin_worlds(world_id);

CREATE TABLE IF NOT EXISTS plugin_cells (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    plugin_id  INTEGER NOT NULL REFERENCES plugins(id),
    cell_id    INTEGER NOT NULL REFERENCES cells(id),
    file_id    INTEGER NOT NULL REFERENCES files(id),
    mod_id     INTEGER NOT NULL REFERENCES mods(id),
    editor_id  TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS plugin_cells_unique_plugin_id_and_cell_id
    ON plugin_cells(plugin_id, cell_id);
CREATE INDEX IF NOT EXISTS plugin_cells_cell_id ON plugin_cells(cell_id);
"""

TABLES = ("games", "mods", "files", "plugins", "worlds", "cells",
          "plugin_worlds", "plugin_cells")


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize the database schema."""
    conn.executescript(SCHEMA_SQL)

    # Check/set schema version
    cur = conn.execute("SELECT COUNT(*) FROM schema_version")
    if cur.fetchone()[0] == 0:
        conn.execute("INSERT INTO schema_version VALUES (?)", (SCHEMA_VERSION,))
    conn.commit()
