"""CLI interface for diskbin."""

import json
from pathlib import Path
from typing import Optional

import typer

from diskbin import __version__
from diskbin.config import DEFAULT_IGNORE_DIRS, Settings, config_file, load_settings, save_settings
from diskbin.display import (
    confirm_action,
    console,
    format_size,
    show_settings,
    show_trash_items,
    show_trash_result,
    show_tree,
)
from diskbin.errors import DiskbinError
from diskbin.executor import ScanExecutor
from diskbin.log import setup_logging
from diskbin.trash import TrashManager

# Create Typer app
app = typer.Typer(
    name="diskbin",
    help="See where disk space goes and delete things recoverably",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"diskbin version {__version__}")
        raise typer.Exit()


def _settings(ctx: typer.Context) -> Settings:
    if isinstance(ctx.obj, Settings):
        return ctx.obj
    return load_settings()


def _manager(ctx: typer.Context) -> TrashManager:
    return TrashManager.from_settings(_settings(ctx))


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log trash and scan activity."),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Read settings from this JSON file."
    ),
) -> None:
    """diskbin - disk usage map and recoverable delete."""
    settings = load_settings(config_path)
    setup_logging("INFO" if verbose else settings.log_level)
    ctx.obj = settings
    ctx.meta["config_path"] = config_path


@app.command()
def scan(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Directory to map"),
    depth: Optional[int] = typer.Option(
        None, "--depth", "-d", min=0, help="Directory levels to expand"
    ),
    deep: bool = typer.Option(False, "--deep", help="Use the deep scan depth"),
    as_json: bool = typer.Option(False, "--json", help="Print the tree as JSON"),
    ignore_defaults: bool = typer.Option(
        False,
        "--ignore-defaults",
        help="Never expand node_modules, .git, build output and caches",
    ),
) -> None:
    """Map disk usage below a directory."""
    settings = _settings(ctx)
    if depth is None:
        depth = settings.deep_depth if deep else settings.default_depth

    options = settings.scan_options()
    if ignore_defaults:
        options["ignore_dirs"] = tuple(sorted(set(options["ignore_dirs"]) | set(DEFAULT_IGNORE_DIRS)))

    try:
        future = ScanExecutor().submit(path, depth, **options)
        if as_json:
            node = future.result()
        else:
            with console.status(f"[bold blue]Scanning {path}...[/bold blue]"):
                node = future.result()
    except DiskbinError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(node.to_dict(), indent=2))
    else:
        show_tree(node)


@app.command()
def trash(
    ctx: typer.Context,
    paths: list[Path] = typer.Argument(..., help="Files or directories to move to the trash"),
) -> None:
    """Move files or directories to the diskbin trash."""
    manager = _manager(ctx)
    failed = False

    for path in paths:
        result = manager.move_to_trash(path)
        show_trash_result("Trashed", str(path), result)
        if result and result.item_id:
            console.print(f"    [dim]id: {result.item_id}[/dim]")
        failed = failed or not result

    if failed:
        raise typer.Exit(1)


@app.command(name="bin")
def list_bin(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the listing as JSON"),
) -> None:
    """List trashed items (diskbin and system trash), newest first."""
    try:
        items = _manager(ctx).list_trash_items()
    except DiskbinError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps([i.model_dump(mode="json", by_alias=True) for i in items], indent=2))
    else:
        show_trash_items(items)


@app.command()
def restore(
    ctx: typer.Context,
    item_id: str = typer.Argument(..., help="Id shown by 'diskbin bin'"),
) -> None:
    """Restore a trashed item to its original location."""
    result = _manager(ctx).restore_from_trash(item_id)
    show_trash_result("Restored", item_id, result)
    if not result:
        raise typer.Exit(1)


@app.command()
def purge(
    ctx: typer.Context,
    item_id: str = typer.Argument(..., help="Id shown by 'diskbin bin'"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Skip confirmation prompt"),
) -> None:
    """Permanently delete one trashed item."""
    if not yes and not confirm_action(f"Permanently delete {item_id}?"):
        console.print("[yellow]Cancelled[/yellow]")
        raise typer.Exit(0)

    result = _manager(ctx).permanently_delete(item_id)
    show_trash_result("Deleted", item_id, result)
    if not result:
        raise typer.Exit(1)


@app.command()
def empty(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "-y", "--yes", help="Skip confirmation prompt"),
) -> None:
    """Permanently delete everything in both trashes."""
    manager = _manager(ctx)
    try:
        items = manager.list_trash_items()
    except DiskbinError:
        items = []

    if not yes:
        total = format_size(sum(i.size for i in items))
        if not confirm_action(f"Permanently delete {len(items)} items ({total})?"):
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

    result = manager.empty_trash()
    show_trash_result("Emptied", "trash", result)
    if not result:
        raise typer.Exit(1)


@app.command()
def orphans(ctx: typer.Context) -> None:
    """List payloads in the trash that have no journal entry."""
    found = _manager(ctx).orphaned_payloads()
    if not found:
        console.print("[green]No orphaned payloads.[/green]")
        return

    console.print(f"[yellow]{len(found)} orphaned payloads:[/yellow]")
    for path in found:
        console.print(f"  • {path}")
    console.print("[dim]Run [bold]diskbin empty[/bold] to remove them[/dim]")


@app.command(name="config")
def show_config(
    ctx: typer.Context,
    save: bool = typer.Option(False, "--save", help="Write the effective settings to the config file"),
) -> None:
    """Show effective configuration."""
    settings = _settings(ctx)
    show_settings(settings.model_dump())

    if save:
        path = ctx.meta.get("config_path") or config_file()
        if not save_settings(settings, path):
            console.print(f"[red]Error: could not write {path}[/red]")
            raise typer.Exit(1)
        console.print(f"[green]Saved settings to {path}[/green]")


if __name__ == "__main__":
    app()
