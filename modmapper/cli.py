"""Click CLI for the mod mapper."""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import click

from modmapper.config import DEFAULT_GAME, DEFAULT_WORKERS, GAMES, derive_db_path, derive_plugins_dir
from modmapper.errors import ModmapperError
from modmapper.profiles import (
    Config,
    Profile,
    load_config,
    resolve_profile,
    save_config,
    validate_profile_name,
)

TAMRIEL_FORM_ID = 0x3C


class Context:
    """Holds the resolved profile and paths derived from --profile / --db / config."""

    def __init__(self, profile: str | None = None, db: Path | None = None):
        self._profile_name = profile
        self._explicit_db = db
        self._profile: Profile | None = None

    @property
    def profile(self) -> Profile:
        if self._profile is None:
            self._profile = resolve_profile(self._profile_name)
        return self._profile

    @property
    def db(self) -> Path:
        if self._explicit_db is not None:
            return self._explicit_db
        return self.profile.db

    @property
    def plugins_dir(self) -> Path:
        return self.profile.plugins_dir or derive_plugins_dir()


pass_ctx = click.make_pass_decorator(Context)


@click.group()
@click.option(
    "--profile", "-p", default=None, type=str,
    help="Named profile to use (from modmapper init)",
)
@click.option(
    "--db", default=None, type=click.Path(dir_okay=False, path_type=Path),
    help="SQLite database path (overrides the profile)",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output")
@click.option("--quiet", "-q", is_flag=True, help="Only log warnings and errors")
@click.version_option(package_name="modmapper")
@click.pass_context
def cli(ctx, profile: Optional[str], db: Optional[Path], verbose: bool, quiet: bool):
    """modmapper - map which mods edit which cells.

    Decode Skyrim plugins from a mod cache, resolve their worlds and cells
    against the master chain, and keep a database of every cell edit
    up to date incrementally.
    """
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj = Context(profile=profile, db=db)


@cli.command()
def init():
    """Set up config profiles (interactive)."""
    config = load_config()

    if config.profiles:
        click.echo("Current profiles:")
        for name, p in config.profiles.items():
            default_marker = " (default)" if name == config.default_profile else ""
            click.echo(f"  {name}: {p.game} -> {p.db}{default_marker}")
        click.echo()
        if not click.confirm("Overwrite existing configuration?", default=False):
            click.echo("Aborted.")
            return
        config = Config()

    click.echo("Set up modmapper profiles. Each profile maps one game into one database.\n")

    while True:
        default_name = "default" if not config.profiles else None
        name = click.prompt("Profile name", default=default_name).strip()
        if not validate_profile_name(name):
            click.echo(f"Invalid profile name '{name}'. Use letters, digits, hyphens, underscores.")
            continue

        game = click.prompt("Game", type=click.Choice(sorted(GAMES)), default=DEFAULT_GAME)
        db = Path(click.prompt("Database path", default=str(derive_db_path(name))))
        plugins_dir = Path(click.prompt("Plugin cache directory",
                                        default=str(derive_plugins_dir())))

        base_master = None
        master_name = GAMES[game][1]
        while True:
            raw = click.prompt(f"Path to {master_name} (blank to skip backfill)",
                               default="", show_default=False).strip().strip('"').strip("'")
            if not raw:
                break
            base_master = Path(raw)
            if base_master.is_file():
                break
            click.echo(f"File not found: {base_master}")

        workers = click.prompt("Decode workers", type=click.IntRange(1, 64),
                               default=DEFAULT_WORKERS)
        config.profiles[name] = Profile(name=name, game=game, nexus_game_id=GAMES[game][0],
                                        db=db, base_master=base_master,
                                        plugins_dir=plugins_dir, workers=workers)

        if len(config.profiles) == 1:
            config.default_profile = name
        elif click.confirm(f"Set '{name}' as the default profile?", default=False):
            config.default_profile = name

        if not click.confirm("\nAdd another profile?", default=False):
            break
        click.echo()

    if config.default_profile is None and config.profiles:
        config.default_profile = next(iter(config.profiles))

    saved_path = save_config(config)
    click.echo(f"\nConfig saved to {saved_path}\n")

    click.echo("Example commands:")
    click.echo("  modmapper backfill")
    click.echo("  modmapper update")
    click.echo("  modmapper cell 3 -2")


def _open_updater(ctx: Context, workers: Optional[int]):
    from modmapper.db.store import Store
    from modmapper.sources import DirectorySource
    from modmapper.update import Updater

    profile = ctx.profile
    store = Store(ctx.db)
    updater = Updater(store, DirectorySource(ctx.plugins_dir), profile.game,
                      profile.nexus_game_id, base_master=profile.base_master,
                      workers=workers or profile.workers)
    return store, updater


@cli.command()
@click.option("--full", is_flag=True, help="Re-scan every mod, ignoring watermarks")
@click.option("--since", type=click.DateTime(), default=None,
              help="Treat mods with no watermark as refreshed at this time")
@click.option("--workers", "-w", type=click.IntRange(1, 64), default=None,
              help="Parallel decode workers (default: from profile)")
@click.option("--json", "as_json", is_flag=True, help="Print the run summary as JSON")
@pass_ctx
def update(ctx: Context, full: bool, since: Optional[datetime], workers: Optional[int],
           as_json: bool):
    """Ingest new and changed plugins from the plugin cache."""
    from modmapper.diff.report import format_summary
    from modmapper.update import RunMode

    store, updater = _open_updater(ctx, workers)
    t0 = time.perf_counter()
    try:
        summary = updater.run(RunMode.FULL if full else RunMode.INCREMENTAL, since=since)
    except ModmapperError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        store.close()

    click.echo(format_summary(summary, "json" if as_json else "text"))
    if not as_json:
        click.echo(f"\nDone in {time.perf_counter() - t0:.1f}s")
    if summary.files_failed:
        raise SystemExit(1)


@cli.command()
@pass_ctx
def backfill(ctx: Context):
    """Seed base-game worlds and cells from the game's master file."""
    from modmapper.diff.report import format_summary
    from modmapper.update import RunMode

    store, updater = _open_updater(ctx, None)
    t0 = time.perf_counter()
    try:
        summary = updater.run(RunMode.BACKFILL)
    except ModmapperError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        store.close()

    click.echo(format_summary(summary))
    click.echo(f"\nDone in {time.perf_counter() - t0:.1f}s")


@cli.command()
@pass_ctx
def stats(ctx: Context):
    """Show row counts per table and database size."""
    from modmapper.db.store import Store

    with Store(ctx.db) as store:
        click.echo(f"DB: {ctx.db}")
        click.echo(f"DB size: {store.get_db_size() / 1024 / 1024:.1f} MB\n")
        click.echo(f"{'Table':<14}  {'Rows':>10}")
        click.echo("-" * 26)
        for table, count in store.table_counts().items():
            click.echo(f"{table:<14}  {count:>10,}")


# Negative coordinates would otherwise parse as short options
@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("x", type=int)
@click.argument("y", type=int)
@click.option("--world-form-id", default=f"0x{TAMRIEL_FORM_ID:X}",
              help="World form id, hex or decimal (default: Tamriel)")
@click.option("--master", default="Skyrim.esm", help="Master that owns the world and cell")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
@pass_ctx
def cell(ctx: Context, x: int, y: int, world_form_id: str, master: str, as_json: bool):
    """Show an exterior cell and the mods that edit it."""
    from modmapper.db.store import Store

    try:
        form_id = int(world_form_id, 0)
    except ValueError:
        raise click.BadParameter(f"Invalid form id: {world_form_id}", param_hint="--world-form-id")

    with Store(ctx.db) as store:
        world = store.get_world(form_id, master)
        if world is None:
            click.echo(f"World 0x{form_id:08X} from {master} not found. Run 'modmapper backfill' first.")
            return
        data = store.get_cell_data(master, world.id, x, y)

    if data is None:
        click.echo(f"No cell at ({x}, {y}) in world 0x{form_id:08X}.")
        return

    if as_json:
        click.echo(json.dumps({
            "form_id": data.cell.form_id,
            "master": data.cell.master,
            "x": data.cell.x,
            "y": data.cell.y,
            "is_persistent": data.cell.is_persistent,
            "is_base_game": data.cell.is_base_game,
            "plugins_count": data.plugins_count,
            "files_count": data.files_count,
            "mods_count": data.mods_count,
            "mods": data.mods,
        }, indent=2))
        return

    click.echo(f"Cell 0x{data.cell.form_id:08X} ({data.cell.master}) at ({x}, {y})")
    click.echo(f"  Persistent: {data.cell.is_persistent}")
    click.echo(f"  Base game:  {data.cell.is_base_game}")
    click.echo(f"  Edited by {data.plugins_count:,} plugins in {data.files_count:,} files "
               f"from {data.mods_count:,} mods")
    for mod in data.mods:
        click.echo(f"    {mod['nexus_mod_id']:>8}  {mod['name']}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def inspect(path: Path):
    """Decode a local plugin and list the worlds and cells it touches."""
    from modmapper.errors import PluginError
    from modmapper.esm.extract import extract_plugin

    try:
        plugin = extract_plugin(path.read_bytes(), path.name)
    except PluginError as exc:
        raise click.ClickException(str(exc)) from exc

    header = plugin.header
    click.echo(f"Plugin {plugin.name} ({plugin.size:,} bytes, hash {plugin.fingerprint & (2**64 - 1):016x})")
    click.echo(f"  Version: {header.version:.2f}  Records: {header.num_records:,}")
    click.echo(f"  Author:  {header.author or '(none)'}")
    click.echo(f"  Masters: {', '.join(header.masters) or '(none)'}")
    click.echo(f"\n  Worlds ({len(plugin.worlds)}):")
    for world in plugin.worlds:
        click.echo(f"    0x{world.key.form_id:08X} {world.key.master:<24} {world.editor_id or ''}")
    click.echo(f"\n  Cells ({len(plugin.cells)}):")
    for c in plugin.cells:
        coords = f"({c.x}, {c.y})" if c.x is not None else "interior"
        click.echo(f"    0x{c.key.form_id:08X} {c.key.master:<24} {coords:<12} {c.editor_id or ''}")
    if plugin.skipped_records:
        click.echo(f"\n  Skipped {plugin.skipped_records} records with dangling master references")


if __name__ == "__main__":
    cli()
