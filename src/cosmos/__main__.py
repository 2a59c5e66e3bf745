"""CLI entry point for Cosmos."""

from __future__ import annotations

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from cosmos import __version__
from cosmos.catalog.sync import SyncLevel
from cosmos.operations import Cosmos, OperationResult
from cosmos.transport import build_transport

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _cosmos(ctx: click.Context, root: str | None = None, install_root: bool = False) -> Cosmos:
    """Build a Cosmos for a command.

    A command-level --root wins over the global one; on install, update and
    uninstall it also becomes the install root.
    """
    options = ctx.obj
    return Cosmos(
        root=root or options["root"],
        offline=options["offline"],
        transport=build_transport(
            allow_https=options["allow_https"], allow_ftp=options["allow_ftp"]
        ),
        install_dir=root if install_root else None,
    )


def _finish(result: OperationResult) -> None:
    """Print a result message and exit 1 on failure."""
    if result.success:
        console.print(f"[green]✓ {escape(result.message)}[/green]")
        return
    console.print(f"[red]✗ {escape(result.message)}[/red]")
    sys.exit(1)


root_option = click.option(
    "--root",
    type=click.Path(file_okay=False),
    default=None,
    help="System root (default: $COSMOS_ROOT or /)",
)


@click.group()
@click.version_option(version=__version__)
@root_option
@click.option("--offline", is_flag=True, help="Only use local galaxies and the cache")
@click.option("--allow-https", is_flag=True, help="Allow https:// downloads")
@click.option("--allow-ftp", is_flag=True, help="Allow ftp:// downloads")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(
    ctx: click.Context,
    root: str | None,
    offline: bool,
    allow_https: bool,
    allow_ftp: bool,
    verbose: bool,
):
    """Cosmos - a minimal, offline-first package manager."""
    _configure_logging(verbose)
    ctx.obj = {
        "root": root,
        "offline": offline,
        "allow_https": allow_https,
        "allow_ftp": allow_ftp,
    }


# =============================================================================
# Setup
# =============================================================================


@cli.command()
@root_option
@click.pass_context
def init(ctx: click.Context, root: str | None):
    """Initialize the cosmos config and universe."""
    result = _cosmos(ctx, root).init()
    _finish(result)
    if not result.details.get("created_universe", True):
        console.print("[yellow]⚠ Universe already exists, left untouched[/yellow]")


# =============================================================================
# Stars
# =============================================================================


@cli.command()
@click.argument("name", required=False)
@click.option(
    "--constellation",
    "-c",
    type=click.Path(dir_okay=False),
    help="Install every member of a constellation file",
)
@root_option
@click.pass_context
def install(ctx: click.Context, name: str | None, constellation: str | None, root: str | None):
    """Install a star or a constellation.

    Examples:
        cosmos install hello
        cosmos install --constellation desktop.yaml
    """
    if bool(name) == bool(constellation):
        console.print("[red]Provide either a star name or --constellation FILE[/red]")
        sys.exit(1)

    cosmos = _cosmos(ctx, root, install_root=True)
    if constellation:
        result = cosmos.install_constellation(constellation)
    else:
        result = cosmos.install(name)

    _finish(result)
    for entry in result.details.get("installed", []):
        console.print(f"  [cyan]{entry['name']}[/cyan] {entry['version']}")


@cli.command()
@click.argument("name")
@root_option
@click.pass_context
def uninstall(ctx: click.Context, name: str, root: str | None):
    """Uninstall a star."""
    cosmos = _cosmos(ctx, root, install_root=True)
    _finish(cosmos.uninstall(name))


@cli.command()
@click.argument("name")
@root_option
@click.pass_context
def update(ctx: click.Context, name: str, root: str | None):
    """Update a star to the newest resolvable version."""
    cosmos = _cosmos(ctx, root, install_root=True)
    _finish(cosmos.update(name))


@cli.command()
@click.pass_context
def status(ctx: click.Context):
    """Show installed stars."""
    result = _cosmos(ctx).status()
    if not result.success:
        _finish(result)

    installed = result.details["installed"]
    if not installed:
        console.print("[dim]No stars installed.[/dim]")
        return

    table = Table(title="Installed Stars")
    table.add_column("Star", style="cyan")
    table.add_column("Version")
    table.add_column("Files", justify="right")
    for entry in installed:
        table.add_row(entry["name"], entry["version"], str(len(entry["files"])))
    console.print(table)


@cli.command()
@click.argument("name")
@click.pass_context
def show(ctx: click.Context, name: str):
    """Show information about a star."""
    result = _cosmos(ctx).show(name)
    if not result.success:
        _finish(result)

    star = result.details["star"]
    console.print(f"[bold]{escape(star['name'])}[/bold]")
    console.print(f"Version: {escape(star['version'])}")
    console.print(f"Galaxy: {escape(result.details['galaxy'])}")
    if star.get("description"):
        console.print(f"Description: {escape(star['description'])}")
    if star.get("license"):
        console.print(f"License: {escape(star['license'])}")
    if result.details["installed_version"]:
        console.print(f"Installed: {escape(result.details['installed_version'])}")
    dependencies = star.get("dependencies") or {}
    if dependencies:
        console.print("Dependencies:")
        for dep_name, constraint in dependencies.items():
            console.print(f"  - {escape(dep_name)} @ {escape(constraint)}")


@cli.command()
@click.argument("term")
@click.pass_context
def search(ctx: click.Context, term: str):
    """Search loaded galaxies by name or description."""
    result = _cosmos(ctx).search(term)
    if not result.success:
        _finish(result)

    matches = result.details["matches"]
    if not matches:
        console.print(f"[yellow]No stars match '{escape(term)}'[/yellow]")
        return

    table = Table(title=f"Search results for '{escape(term)}'")
    table.add_column("Star", style="cyan")
    table.add_column("Version")
    table.add_column("Galaxy")
    table.add_column("Description", style="dim")
    for match in matches:
        table.add_row(match["name"], match["version"], match["galaxy"], match["description"])
    console.print(table)


# =============================================================================
# Galaxies
# =============================================================================


@cli.command()
@click.option("--stars", "level", flag_value="stars", help="Also fetch star descriptors")
@click.option("--full", "level", flag_value="full", help="Also fetch package tarballs")
@click.pass_context
def sync(ctx: click.Context, level: str | None):
    """Sync remote galaxies into the local cache."""
    sync_level = {
        "stars": SyncLevel.WITH_STARS,
        "full": SyncLevel.FULL,
    }.get(level, SyncLevel.META_ONLY)

    result = _cosmos(ctx).sync(sync_level)
    report = result.details.get("report")
    if report is not None:
        for galaxy in report.galaxies:
            if galaxy.skipped:
                console.print(f"  [dim]{galaxy.name}: local, skipped[/dim]")
            elif galaxy.error:
                console.print(f"  [red]{galaxy.name}: {escape(galaxy.error)}[/red]")
            else:
                console.print(f"  [green]{galaxy.name}[/green]: {len(galaxy.downloaded)} files")
            for star_name, error in galaxy.failures.items():
                console.print(f"    [yellow]{star_name}: {escape(error)}[/yellow]")
    _finish(result)


@cli.group()
def galaxy():
    """Manage configured galaxies."""
    pass


@galaxy.command("add")
@click.argument("name")
@click.argument("url")
@root_option
@click.pass_context
def galaxy_add(ctx: click.Context, name: str, url: str, root: str | None):
    """Add a galaxy (lowest priority)."""
    _finish(_cosmos(ctx, root).add_galaxy(name, url))


@galaxy.command("remove")
@click.argument("name")
@root_option
@click.pass_context
def galaxy_remove(ctx: click.Context, name: str, root: str | None):
    """Remove a galaxy."""
    _finish(_cosmos(ctx, root).remove_galaxy(name))


@galaxy.command("list")
@root_option
@click.pass_context
def galaxy_list(ctx: click.Context, root: str | None):
    """List galaxies in priority order."""
    result = _cosmos(ctx, root).list_galaxies()
    if not result.success:
        _finish(result)

    table = Table(title="Galaxies")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("URL")
    table.add_column("Kind")
    for index, entry in enumerate(result.details["galaxies"], start=1):
        table.add_row(
            str(index), entry["name"], entry["url"], "local" if entry["local"] else "remote"
        )
    console.print(table)


if __name__ == "__main__":
    cli()
