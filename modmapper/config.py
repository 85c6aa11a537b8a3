"""Default paths and constants for the mod mapper."""
import os
from pathlib import Path

import click

APP_NAME = "modmapper"

# Decode workers; storage writes stay on one thread regardless
DEFAULT_WORKERS = min(os.cpu_count() or 2, 8)

# Known games: mod-host domain name -> (nexus game id, base master filename)
GAMES = {
    "skyrim": (110, "Skyrim.esm"),
    "skyrimspecialedition": (1704, "Skyrim.esm"),
}
DEFAULT_GAME = "skyrimspecialedition"


def get_app_dir() -> Path:
    return Path(click.get_app_dir(APP_NAME))


def derive_db_path(profile_name: str) -> Path:
    """Default database path for a profile, under the app dir."""
    db_dir = get_app_dir() / "db"
    db_dir.mkdir(parents=True, exist_ok=True)
    return db_dir / f"{profile_name}.db"


def derive_plugins_dir() -> Path:
    """Default root of the extracted-plugin cache."""
    return get_app_dir() / "plugins"

