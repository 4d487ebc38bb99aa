"""
Utility functions for tidytree.

Includes:
- Console output helpers
- JSON save/load helpers
- macOS bundle detection
- Size, date and duration parsing
"""

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

# Global console instance
console = Console()


def print_header(title: str, subtitle: str = ""):
    """Print a styled header."""
    console.print(Panel(f"[bold blue]{title}[/bold blue]\n[italic]{subtitle}[/italic]", expand=False))


def print_error(msg: str):
    console.print(f"[bold red]ERROR:[/bold red] {msg}")


def print_warning(msg: str):
    console.print(f"[bold yellow]WARNING:[/bold yellow] {msg}")


def print_success(msg: str):
    console.print(f"[bold green]SUCCESS:[/bold green] {msg}")


def _rel(path: Path | None, root: Path) -> str:
    if path is None:
        return "-"
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)


def print_batch_table(batch) -> None:
    """Print a summary table and a sample of the operations in a batch."""
    table = Table(title=f"Plan {batch.batch_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="magenta")

    kinds: dict[str, int] = {}
    for op in batch.operations:
        kinds[op.kind.value] = kinds.get(op.kind.value, 0) + 1
    for kind, count in sorted(kinds.items()):
        table.add_row(kind.capitalize(), str(count))
    table.add_row("Dropped", str(len(batch.dropped)))
    if batch.pending:
        table.add_row("Awaiting decision", str(len(batch.pending)))
    table.add_row("Total size", format_size(batch.total_size))

    console.print(table)

    if batch.operations:
        tree = Tree("[bold green]Sample Operations[/bold green]")
        for op in batch.operations[:10]:
            tree.add(
                f"[dim]{op.kind.value}[/dim] [yellow]{_rel(op.source, batch.root)}[/yellow]"
                f" -> [blue]{_rel(op.destination, batch.root)}[/blue]"
            )
        if len(batch.operations) > 10:
            tree.add(f"[italic]... and {len(batch.operations) - 10} more[/italic]")
        console.print(tree)


def print_report(report) -> None:
    """Print succeeded/skipped/failed counts with reasons for failures."""
    counts = report.counts()
    console.print(
        f"\n[bold]Results:[/bold] [green]{counts['succeeded']} succeeded[/green], "
        f"[yellow]{counts['skipped']} skipped[/yellow], [red]{counts['failed']} failed[/red]"
    )
    for path, reason in report.failed[:10]:
        console.print(f"  [red]✗[/red] {path}: {reason}")
    if len(report.failed) > 10:
        console.print(f"  ... and {len(report.failed) - 10} more errors")
    if report.cancelled:
        print_warning("Execution was interrupted; remaining operations were dropped.")


def print_duplicate_groups(groups: list, title: str = "Duplicate Files") -> None:
    if not groups:
        print_success(f"No {title.lower()} found.")
        return

    tree = Tree(f"[bold yellow]{title}[/bold yellow]")
    for i, group in enumerate(groups[:10], 1):
        label = f"[cyan]Group {i}[/cyan] ({format_size(group.size)}, {len(group.members)} files)"
        if group.distance is not None:
            label += f" [dim]max distance {group.distance}[/dim]"
        branch = tree.add(label)
        for j, member in enumerate(group.members):
            marker = "[green]●[/green]" if j == 0 else "[yellow]○[/yellow]"
            branch.add(f"{marker} {member}")
    if len(groups) > 10:
        tree.add(f"[italic]... and {len(groups) - 10} more groups[/italic]")
    console.print(tree)

    wasted = sum(g.wasted_space for g in groups)
    count = sum(len(g.duplicates) for g in groups)
    console.print(f"\n[bold]Summary:[/bold] {count} removable files in {len(groups)} groups, "
                  f"{format_size(wasted)} recoverable")


def print_history(entries: list) -> None:
    if not entries:
        console.print("[yellow]No operation history.[/yellow]")
        return

    table = Table(title="Operation History")
    table.add_column("When", style="dim")
    table.add_column("Batch", style="cyan")
    table.add_column("Command")
    table.add_column("Files", justify="right")
    table.add_column("State")

    for entry in entries:
        if entry.undone:
            state = "[dim]undone[/dim]"
        elif not entry.undoable:
            state = "[red]permanent[/red]"
        elif any(r.undone for r in entry.records):
            state = "[yellow]partially undone[/yellow]"
        else:
            state = "[green]active[/green]"
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.batch_id,
            entry.command,
            str(len(entry.records)),
            state,
        )
    console.print(table)


def print_stats(stats) -> None:
    """Print files per category with a bar, then the largest and oldest files."""
    if not stats.total_files:
        console.print("[yellow]No files found.[/yellow]")
        return

    table = Table(title="Files by Type")
    table.add_column("Category", style="cyan")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right", style="dim")
    table.add_column("")
    for category in stats.categories:
        bar = "█" * int(category.count / stats.total_files * 30)
        table.add_row(category.name, str(category.count), format_size(category.size), f"[green]{bar}[/green]")
    console.print(table)

    largest = Table(title="Largest Files")
    largest.add_column("Size", justify="right", style="yellow")
    largest.add_column("File", style="dim")
    for d in stats.largest:
        largest.add_row(format_size(d.size), d.name)
    console.print(largest)

    oldest = Table(title="Oldest Files")
    oldest.add_column("Age", justify="right", style="yellow")
    oldest.add_column("File", style="dim")
    for d in stats.oldest:
        oldest.add_row(format_age(d.modified), d.name)
    console.print(oldest)

    console.print(f"\n[bold]Total:[/bold] [cyan]{stats.total_files}[/cyan] files, "
                  f"[cyan]{format_size(stats.total_size)}[/cyan]")


# -----------------------------------------------------------------------------
# macOS Bundle Extensions
# -----------------------------------------------------------------------------

MACOS_BUNDLE_EXTENSIONS = {
    # Application bundles
    ".app", ".bundle", ".plugin", ".kext", ".prefpane",
    ".qlgenerator", ".mdimporter", ".xpc", ".appex",
    # Apple Pro Apps project bundles
    ".dvdproj", ".imovieproject", ".fcpproject", ".fcpbundle",
    # Photo libraries
    ".photoslibrary",    # Photos app
    ".aplibrary",        # Aperture
}

# Known folder names that must be kept intact
BUNDLE_FOLDERS = {
    'VIDEO_TS', 'AUDIO_TS', 'BDMV', 'AVCHD',
}


def is_protected_folder(name: str) -> bool:
    """
    Check if a folder name is a bundle whose contents must not be reorganized.

    Args:
        name: A single folder name.

    Returns:
        True for known bundle folders and names with a bundle extension.
    """
    if name in BUNDLE_FOLDERS:
        return True
    name_lower = name.lower()
    return any(name_lower.endswith(ext) for ext in MACOS_BUNDLE_EXTENSIONS)


def save_json(data: Any, path: Path) -> None:
    """
    Save data to a JSON file with pretty formatting.

    Args:
        data: The data to serialize.
        path: The output file path.
    """
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    print(f"[INFO] Saved: {path}")


def load_json(path: Path) -> Any:
    """
    Load data from a JSON file.

    Args:
        path: The input file path.

    Returns:
        The deserialized data.
    """
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


# -----------------------------------------------------------------------------
# Sizes and dates
# -----------------------------------------------------------------------------

KB = 1024
MB = KB * 1024
GB = MB * 1024
TB = GB * 1024

_SIZE_UNITS = [
    ("TB", TB), ("GB", GB), ("MB", MB), ("KB", KB),
    ("T", TB), ("G", GB), ("M", MB), ("K", KB), ("B", 1),
]


def format_size(num_bytes: int) -> str:
    """Format bytes into a human-readable string (1.50 KB, 3.00 MB)."""
    if num_bytes >= GB:
        return f"{num_bytes / GB:.2f} GB"
    if num_bytes >= MB:
        return f"{num_bytes / MB:.2f} MB"
    if num_bytes >= KB:
        return f"{num_bytes / KB:.2f} KB"
    return f"{num_bytes} B"


def parse_size(text: str) -> int:
    """
    Parse a human-readable size into bytes.

    Examples: "10MB", "1.5GB", "500KB", "1024", "100B", "2k".

    Raises:
        ValueError: If the text is not a valid, non-negative size.
    """
    s = text.strip().upper()
    multiplier = 1
    for suffix, factor in _SIZE_UNITS:
        if s.endswith(suffix):
            s = s[: -len(suffix)]
            multiplier = factor
            break
    try:
        value = float(s.strip())
    except ValueError:
        raise ValueError(f"Invalid size format: {text}")
    if value < 0:
        raise ValueError("Size cannot be negative")
    return int(value * multiplier)


def parse_date(text: str) -> datetime:
    """
    Parse a date given as YYYY-MM-DD or YYYY/MM/DD (midnight, local time).

    Raises:
        ValueError: On any other format.
    """
    s = text.strip()
    for fmt in ("%Y-%m-%d", "%Y/%m/%d"):
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {text}. Use YYYY-MM-DD or YYYY/MM/DD")



_DURATION_UNITS = {"h": 3600, "d": 86400, "w": 7 * 86400}


def parse_duration(text: str) -> timedelta:
    """
    Parse an age such as "30d", "2w" or "12h". A bare number means days.

    Raises:
        ValueError: If the text is empty or not a whole number with an h/d/w unit.
    """
    s = text.strip().lower()
    if not s:
        raise ValueError("Duration cannot be empty")
    unit = "d"
    if s[-1] in _DURATION_UNITS:
        s, unit = s[:-1].strip(), s[-1]
    if not s.isdigit():
        raise ValueError(f"Invalid duration format: {text}. Use formats like 30d, 7d, 1w")
    return timedelta(seconds=int(s) * _DURATION_UNITS[unit])


def format_age(modified: datetime, now: datetime | None = None) -> str:
    """Rough age of a timestamp: 3d ago, 4mo ago, 2y ago."""
    days = max(((now or datetime.now()) - modified).days, 0)
    if days > 365:
        return f"{days // 365}y ago"
    if days > 30:
        return f"{days // 30}mo ago"
    return f"{days}d ago"
