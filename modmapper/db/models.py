"""Dataclasses for stored rows, and timestamp helpers."""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_timestamp(dt: datetime) -> str:
    """Render a datetime as the UTC ISO string stored in the database."""
    return as_utc(dt).isoformat(timespec="milliseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def utcnow() -> str:
    return to_timestamp(datetime.now(timezone.utc))


@dataclass
class Game:
    id: int
    name: str
    nexus_game_id: int
    created_at: str
    updated_at: str


@dataclass
class Mod:
    id: int
    game_id: int
    nexus_mod_id: int
    name: str
    author_name: Optional[str]
    author_id: Optional[int]
    category_name: Optional[str]
    category_id: Optional[int]
    description: Optional[str]
    thumbnail_link: Optional[str]
    is_translation: bool
    first_upload_at: Optional[str]
    last_update_at: Optional[str]
    last_updated_files_at: Optional[str]
    created_at: str
    updated_at: str

    def __post_init__(self):
        self.is_translation = bool(self.is_translation)

    @property
    def last_update_datetime(self) -> Optional[datetime]:
        return parse_timestamp(self.last_update_at)

    @property
    def watermark(self) -> Optional[datetime]:
        """When this mod's files were last fully refreshed."""
        return parse_timestamp(self.last_updated_files_at)


@dataclass
class File:
    id: int
    mod_id: int
    nexus_file_id: int
    name: str
    file_name: str
    category: Optional[str]
    version: Optional[str]
    mod_version: Optional[str]
    size: int
    uploaded_at: str
    downloaded_at: Optional[str]
    has_plugin: bool
    unable_to_extract_plugins: bool
    created_at: str
    updated_at: str

    def __post_init__(self):
        self.has_plugin = bool(self.has_plugin)
        self.unable_to_extract_plugins = bool(self.unable_to_extract_plugins)


@dataclass
class Plugin:
    id: int
    file_id: int
    mod_id: int
    name: str
    file_name: str
    file_path: str
    hash: int
    size: int
    version: Optional[float]
    author: Optional[str]
    description: Optional[str]
    masters_json: str
    created_at: str
    updated_at: str

    @property
    def masters(self) -> list[str]:
        return json.loads(self.masters_json)

    @property
    def hash_hex(self) -> str:
        return f"{self.hash & 0xFFFFFFFFFFFFFFFF:016x}"


@dataclass
class World:
    id: int
    form_id: int
    master: str
    is_base_game: bool
    created_at: str
    updated_at: str

    def __post_init__(self):
        self.is_base_game = bool(self.is_base_game)


@dataclass
class Cell:
    id: int
    form_id: int
    master: str
    world_id: Optional[int]
    x: Optional[int]
    y: Optional[int]
    is_persistent: bool
    is_base_game: bool
    created_at: str
    updated_at: str

    def __post_init__(self):
        self.is_persistent = bool(self.is_persistent)
        self.is_base_game = bool(self.is_base_game)

    @property
    def is_exterior(self) -> bool:
        return self.x is not None and self.y is not None


@dataclass
class PluginWorld:
    id: int
    plugin_id: int
    world_id: int
    editor_id: str
    created_at: str
    updated_at: str


@dataclass
class PluginCell:
    id: int
    plugin_id: int
    cell_id: int
    file_id: int
    mod_id: int
    editor_id: Optional[str]
    created_at: str
    updated_at: str


@dataclass
class CellData:
    """A cell plus how many plugins, files and mods edit it."""
    cell: Cell
    plugins_count: int
    files_count: int
    mods_count: int
    mods: list[dict]
