"""Config profiles: which game to map, where its database and plugin cache live."""
from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from pathlib import Path

import click

from modmapper.config import APP_NAME, DEFAULT_WORKERS, GAMES, derive_db_path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

_PROFILE_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


@dataclass
class Profile:
    name: str
    game: str
    nexus_game_id: int
    db: Path
    base_master: Path | None = None
    plugins_dir: Path | None = None
    workers: int = DEFAULT_WORKERS


@dataclass
class Config:
    default_profile: str | None = None
    profiles: dict[str, Profile] = field(default_factory=dict)


def get_config_path() -> Path:
    """Return the TOML config file path via click.get_app_dir."""
    return Path(click.get_app_dir(APP_NAME)) / "config.toml"


def _optional_path(value) -> Path | None:
    return Path(value) if value else None


def load_config(path: Path | None = None) -> Config:
    """Read TOML config. Returns empty Config if file missing."""
    path = path or get_config_path()
    if not path.exists():
        return Config()

    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise click.UsageError(f"Invalid config file {path}: {exc}") from exc

    config = Config(default_profile=data.get("default_profile"))
    for name, info in data.get("profiles", {}).items():
        game = info.get("game", "skyrimspecialedition")
        known_id = GAMES.get(game, (None, None))[0]
        config.profiles[name] = Profile(
            name=name,
            game=game,
            nexus_game_id=int(info.get("nexus_game_id", known_id or 0)),
            db=Path(info["db"]) if "db" in info else derive_db_path(name),
            base_master=_optional_path(info.get("base_master")),
            plugins_dir=_optional_path(info.get("plugins_dir")),
            workers=int(info.get("workers", DEFAULT_WORKERS)),
        )
    return config


def save_config(config: Config, path: Path | None = None) -> Path:
    """Write config to TOML using literal strings for paths."""
    path = path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    lines: list[str] = []
    if config.default_profile:
        lines.append(f"default_profile = \"{config.default_profile}\"")
    lines.append("")

    for name, profile in config.profiles.items():
        lines.append(f"[profiles.{name}]")
        lines.append(f"game = \"{profile.game}\"")
        lines.append(f"nexus_game_id = {profile.nexus_game_id}")
        # Use TOML literal strings (single quotes) so backslashes aren't escapes
        lines.append(f"db = '{profile.db}'")
        if profile.base_master:
            lines.append(f"base_master = '{profile.base_master}'")
        if profile.plugins_dir:
            lines.append(f"plugins_dir = '{profile.plugins_dir}'")
        lines.append(f"workers = {profile.workers}")
        lines.append("")

    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def validate_profile_name(name: str) -> bool:
    """Check that a profile name is a valid TOML bare key."""
    return bool(_PROFILE_NAME_RE.match(name))


def resolve_profile(profile_name: str | None, config: Config | None = None) -> Profile:
    """Resolve --profile > default profile.

    Raises click.UsageError with a helpful message if nothing resolves.
    """
    config = config or load_config()

    name = profile_name or config.default_profile
    if name is None:
        raise click.UsageError(
            "No profile configured. Either:\n"
            "  1. Run 'modmapper init' to set up a profile\n"
            "  2. Pass --profile <name> to use a named profile"
        )

    profile = config.profiles.get(name)
    if profile is None:
        available = ", ".join(config.profiles) or "(none)"
        raise click.UsageError(
            f"Profile '{name}' not found. Available profiles: {available}"
        )

    if profile.base_master is not None and not profile.base_master.exists():
        raise click.UsageError(
            f"Base master not found for profile '{name}': {profile.base_master}\n"
            "Run 'modmapper init' to update the path."
        )

    return profile
