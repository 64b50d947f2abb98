"""reprieve CLI - move files to the trash instead of deleting them."""
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
from rich.markup import escape
from rich.table import Table

from reprieve.config import __version__, get_config
from reprieve.reaper.errors import TrashError
from reprieve.reaper.filters import SortOrder, TrashFilter, parse_duration
from reprieve.reaper.safe_delete import TrashContext, TrashEngine
from reprieve.reaper.store import TrashedItem
from reprieve.utils.logger import configure_logging
from reprieve.utils.safe_console import SafeConsole

app = typer.Typer(
    name="reprieve",
    help="Move files to the trash instead of deleting them; list, restore or empty it later",
    add_completion=False
)
console = SafeConsole()
err_console = SafeConsole(stderr=True)


class _State:
    quiet = False


state = _State()


def build_engine() -> TrashEngine:
    """Create an engine from the environment configuration.

    Raises:
        typer.Exit: If the configuration is invalid
    """
    try:
        return TrashEngine(TrashContext.from_config(get_config()))
    except ValueError as e:
        err_console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)


def fail(error: Exception):
    """Print an engine error and exit with status 1."""
    err_console.print(f"[bold red]Error:[/bold red] {escape(str(error))}")
    raise typer.Exit(1)


def warn(error: TrashError):
    if not state.quiet:
        err_console.print(f"[yellow]⚠ Skipped:[/yellow] {escape(str(error))}")


def _duration(value: Optional[str]):
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def build_filter(globs: Optional[List[str]], regexes: Optional[List[str]], directory: Optional[Path],
                 older_than: Optional[str], newer_than: Optional[str],
                 min_size: Optional[int], max_size: Optional[int]) -> TrashFilter:
    """Assemble a TrashFilter from command line options."""
    try:
        return TrashFilter(
            globs=list(globs or []),
            regexes=list(regexes or []),
            directory=directory.expanduser().absolute() if directory is not None else None,
            older_than=_duration(older_than),
            newer_than=_duration(newer_than),
            min_size=min_size,
            max_size=max_size,
        )
    except re.error as e:
        raise typer.BadParameter(f"Invalid regex: {e}")


def parse_ranges(specs: List[str]) -> List[int]:
    """Parse ``1``, ``3-5``, ``2,7`` style index selections (1-based).

    Raises:
        typer.BadParameter: On malformed input
    """
    indices: List[int] = []
    for spec in specs:
        for part in spec.split(","):
            part = part.strip()
            match = re.fullmatch(r"(\d+)(?:-(\d+))?", part)
            if not match:
                raise typer.BadParameter(f"Invalid index or range: {part!r}")
            start = int(match.group(1))
            end = int(match.group(2) or start)
            if start < 1 or end < start:
                raise typer.BadParameter(f"Invalid index or range: {part!r}")
            for index in range(start, end + 1):
                if index not in indices:
                    indices.append(index)
    return indices


def format_age(deleted_at: datetime, now: datetime) -> str:
    seconds = int((now - deleted_at).total_seconds())
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60)):
        if seconds >= size:
            return f"{seconds // size}{unit} ago"
    return "just now"


def format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


# =========================================================================
# COMMANDS
# =========================================================================

@app.command()
def put(
    paths: List[Path] = typer.Argument(..., help="Files or directories to move to the trash"),
):
    """Move files or directories to the trash of their own volume."""
    engine = build_engine()
    failed = 0

    for path, result in engine.put_many(paths):
        if isinstance(result, TrashError):
            failed += 1
            err_console.print(f"[bold red]✗[/bold red] {escape(str(path))}: {escape(str(result))}")

    if failed:
        raise typer.Exit(1)


@app.command("list")
def list_items(
    glob: Optional[List[str]] = typer.Option(None, "--glob", "-g", help="Original path glob (basename if no '/')"),
    regex: Optional[List[str]] = typer.Option(None, "--regex", "-r", help="Original path regex"),
    directory: Optional[Path] = typer.Option(None, "--dir", "-d", help="Only items originally under this directory"),
    older_than: Optional[str] = typer.Option(None, "--older-than", help="Deleted longer ago than e.g. 30d, 12h"),
    newer_than: Optional[str] = typer.Option(None, "--newer-than", help="Deleted more recently than e.g. 1h"),
    min_size: Optional[int] = typer.Option(None, "--min-size", help="Minimum payload size in bytes"),
    max_size: Optional[int] = typer.Option(None, "--max-size", help="Maximum payload size in bytes"),
    sort: SortOrder = typer.Option(SortOrder.NEWEST_FIRST, "--sort", "-s", help="Ordering of the listing"),
    show_size: bool = typer.Option(False, "--size", help="Show payload sizes"),
):
    """List trashed items, most recently deleted first."""
    engine = build_engine()
    trash_filter = build_filter(glob, regex, directory, older_than, newer_than, min_size, max_size)
    now = datetime.now()

    table = Table(show_header=True, header_style="bold cyan", box=None)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Deleted", style="green")
    table.add_column("Age", style="dim")
    if show_size:
        table.add_column("Size", justify="right")
    table.add_column("Original path", style="cyan")

    count = 0
    try:
        for count, item in enumerate(engine.list(trash_filter, order=sort, on_warning=warn), start=1):
            row = [str(count), item.deleted_at.strftime("%Y-%m-%d %H:%M:%S"), format_age(item.deleted_at, now)]
            if show_size:
                try:
                    row.append(format_size(engine.context.store_of(item).payload_size(item)))
                except OSError:
                    # Purged or restored by another process mid-listing
                    row.append("?")
            row.append(escape(str(item.original_path)))
            table.add_row(*row)
    except TrashError as e:
        fail(e)

    if count:
        console.print(table)
    elif not state.quiet:
        console.print("[dim]Trash is empty.[/dim]" if trash_filter.is_empty() else "[dim]No matching items.[/dim]")


@app.command()
def restore(
    ranges: Optional[List[str]] = typer.Argument(None, help="Indexes from 'list' (e.g. 1 3-5 2,7)"),
    glob: Optional[List[str]] = typer.Option(None, "--glob", "-g", help="Original path glob (basename if no '/')"),
    regex: Optional[List[str]] = typer.Option(None, "--regex", "-r", help="Original path regex"),
    directory: Optional[Path] = typer.Option(None, "--dir", "-d", help="Only items originally under this directory"),
    older_than: Optional[str] = typer.Option(None, "--older-than", help="Deleted longer ago than e.g. 30d"),
    newer_than: Optional[str] = typer.Option(None, "--newer-than", help="Deleted more recently than e.g. 1h"),
    sort: SortOrder = typer.Option(SortOrder.NEWEST_FIRST, "--sort", "-s", help="Ordering the indexes refer to"),
    to: Optional[Path] = typer.Option(None, "--to", help="Restore a single item to this path instead"),
):
    """Restore trashed items to where they were deleted from.

    Indexes refer to the listing produced by 'list' with the same filters.
    Without indexes, every item matching the filters is restored.
    """
    engine = build_engine()
    trash_filter = build_filter(glob, regex, directory, older_than, newer_than, None, None)
    indices = parse_ranges(ranges or [])

    if not indices and trash_filter.is_empty():
        fail(ValueError("Nothing selected: give indexes or a filter (see 'reprieve list')"))

    items: List[TrashedItem] = list(engine.list(trash_filter, order=sort, on_warning=warn))
    if indices:
        out_of_range = [index for index in indices if index > len(items)]
        if out_of_range:
            fail(ValueError(f"No item at index {out_of_range[0]} (trash has {len(items)} matching)"))
        items = [items[index - 1] for index in indices]

    if to is not None and len(items) != 1:
        fail(ValueError(f"--to needs exactly one item, {len(items)} selected"))

    failed = 0
    for item in items:
        try:
            target = engine.restore(item, destination=to)
        except TrashError as e:
            failed += 1
            err_console.print(f"[bold red]✗[/bold red] {escape(str(item.original_path))}: {escape(str(e))}")
            continue
        if not state.quiet:
            console.print(f"[green]✓[/green] {escape(str(target))}")

    if failed:
        raise typer.Exit(1)


@app.command()
def empty(
    everything: bool = typer.Option(False, "--all", help="Purge every item in every trash"),
    glob: Optional[List[str]] = typer.Option(None, "--glob", "-g", help="Original path glob (basename if no '/')"),
    regex: Optional[List[str]] = typer.Option(None, "--regex", "-r", help="Original path regex"),
    directory: Optional[Path] = typer.Option(None, "--dir", "-d", help="Only items originally under this directory"),
    older_than: Optional[str] = typer.Option(None, "--older-than", help="Deleted longer ago than e.g. 30d"),
    newer_than: Optional[str] = typer.Option(None, "--newer-than", help="Deleted more recently than e.g. 1h"),
    min_size: Optional[int] = typer.Option(None, "--min-size", help="Minimum payload size in bytes"),
    max_size: Optional[int] = typer.Option(None, "--max-size", help="Maximum payload size in bytes"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
):
    """Permanently delete trashed items. This cannot be undone."""
    engine = build_engine()
    trash_filter = build_filter(glob, regex, directory, older_than, newer_than, min_size, max_size)

    if trash_filter.is_empty() and not everything:
        fail(ValueError("Refusing to empty the trash without --all or a filter"))
    if everything and not trash_filter.is_empty():
        fail(ValueError("--all cannot be combined with filters"))

    selected = list(engine.list(trash_filter, order=SortOrder.NONE, on_warning=warn))
    if not selected and not everything:
        if not state.quiet:
            console.print("[dim]No matching items.[/dim]")
        return

    if not yes:
        what = "the whole trash" if everything else f"{len(selected)} item(s)"
        typer.confirm(f"Permanently delete {what}?", abort=True)

    try:
        count = engine.purge(None if everything else selected, confirmed=True)
    except TrashError as e:
        fail(e)

    if not state.quiet:
        console.print(f"[green]✓[/green] Purged {count} item(s)")


def _version_callback(value: bool):
    if value:
        console.print(f"reprieve {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="More logging (-vv for debug)"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print errors"),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True,
                                 help="Show version and exit"),
):
    """reprieve - a recoverable rm."""
    state.quiet = quiet
    try:
        default_level = get_config().log_level
    except ValueError as e:
        fail(e)
    configure_logging(verbose, quiet, default_level)


if __name__ == "__main__":
    app()
