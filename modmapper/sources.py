"""Where mods, files and plugin bytes come from.

The update loop only talks to a ``ModSource``. Fetching from the mod host
and unpacking archives live behind that interface; ``DirectorySource``
reads an already-extracted plugin cache laid out as::

    <root>/<game>/<nexus mod id>/mod.json
    <root>/<game>/<nexus mod id>/<nexus file id>/file.json
    <root>/<game>/<nexus mod id>/<nexus file id>/**/*.esp|.esm|.esl
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Protocol

from modmapper.errors import SourceError
from modmapper.esm.constants import PLUGIN_EXTENSIONS

logger = logging.getLogger(__name__)


@dataclass
class ModListing:
    """Mod metadata as reported by the mod host."""
    nexus_mod_id: int
    name: str
    last_update_at: Optional[datetime]
    first_upload_at: Optional[datetime] = None
    author_name: Optional[str] = None
    author_id: Optional[int] = None
    category_name: Optional[str] = None
    category_id: Optional[int] = None
    description: Optional[str] = None
    thumbnail_link: Optional[str] = None
    is_translation: bool = False


@dataclass
class FileListing:
    """One downloadable archive version of a mod."""
    nexus_file_id: int
    name: str
    file_name: str
    uploaded_at: datetime
    category: Optional[str] = "MAIN"
    version: Optional[str] = None
    mod_version: Optional[str] = None
    size: int = 0

    @property
    def is_current(self) -> bool:
        """Replaced/deleted files have no category; archived files are superseded."""
        return self.category is not None and self.category != "ARCHIVED"


@dataclass
class PluginBlob:
    """Raw bytes of one plugin plus its exact path inside the archive."""
    path: str
    data: bytes


class ModSource(Protocol):
    def list_mods(self, game: str) -> Iterable[ModListing]: ...

    def list_files(self, game: str, nexus_mod_id: int) -> Iterable[FileListing]: ...

    def fetch_plugins(self, game: str, nexus_mod_id: int,
                      nexus_file_id: int) -> list[PluginBlob]: ...


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return datetime.fromisoformat(value)


def _load_listing(cls, path: Path, defaults: dict):
    """Build a listing dataclass from a JSON manifest, ignoring unknown keys."""
    try:
        data = json.loads(path.read_text(encoding="utf-8")) if path.exists() else {}
    except (OSError, json.JSONDecodeError) as exc:
        raise SourceError(f"Unreadable manifest {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise SourceError(f"Invalid manifest {path}: expected a JSON object")

    known = {f.name for f in fields(cls)}
    values = {**defaults, **{k: v for k, v in data.items() if k in known}}
    try:
        for key in ("last_update_at", "first_upload_at", "uploaded_at"):
            if key in values:
                values[key] = _parse_datetime(values[key])
        return cls(**values)
    except (TypeError, ValueError, OverflowError) as exc:
        raise SourceError(f"Invalid manifest {path}: {exc}") from exc


def _mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


class DirectorySource:
    """ModSource over an on-disk cache of extracted plugins."""

    def __init__(self, root: Path):
        self.root = root

    def _game_dir(self, game: str) -> Path:
        game_dir = self.root / game
        if not game_dir.is_dir():
            raise SourceError(f"No plugin directory for {game} under {self.root}")
        return game_dir

    def list_mods(self, game: str) -> list[ModListing]:
        """Every mod in the cache; a mod with a bad manifest is logged and left out."""
        mods = []
        for mod_dir in sorted(self._game_dir(game).iterdir()):
            if not mod_dir.is_dir() or not mod_dir.name.isdigit():
                continue
            try:
                mods.append(_load_listing(ModListing, mod_dir / "mod.json", {
                    "nexus_mod_id": int(mod_dir.name),
                    "name": mod_dir.name,
                    "last_update_at": _mtime(mod_dir),
                }))
            except SourceError as exc:
                logger.warning("Skipping mod %s: %s", mod_dir.name, exc)
        return mods

    def list_files(self, game: str, nexus_mod_id: int) -> list[FileListing]:
        mod_dir = self._game_dir(game) / str(nexus_mod_id)
        if not mod_dir.is_dir():
            raise SourceError(f"Mod {nexus_mod_id} not found under {mod_dir.parent}")
        files = []
        for file_dir in sorted(mod_dir.iterdir()):
            if not file_dir.is_dir() or not file_dir.name.isdigit():
                continue
            files.append(_load_listing(FileListing, file_dir / "file.json", {
                "nexus_file_id": int(file_dir.name),
                "name": file_dir.name,
                "file_name": file_dir.name,
                "uploaded_at": _mtime(file_dir),
            }))
        return files

    def fetch_plugins(self, game: str, nexus_mod_id: int,
                      nexus_file_id: int) -> list[PluginBlob]:
        file_dir = self._game_dir(game) / str(nexus_mod_id) / str(nexus_file_id)
        if not file_dir.is_dir():
            raise SourceError(f"File {nexus_file_id} of mod {nexus_mod_id} not found")
        blobs = []
        for path in sorted(file_dir.rglob("*")):
            if path.is_file() and path.suffix.lower() in PLUGIN_EXTENSIONS:
                try:
                    data = path.read_bytes()
                except OSError as exc:
                    raise SourceError(f"Cannot read {path}: {exc}") from exc
                blobs.append(PluginBlob(path=path.relative_to(file_dir).as_posix(), data=data))
        logger.debug("Found %d plugins in %s", len(blobs), file_dir)
        return blobs
