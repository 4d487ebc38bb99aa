#!/usr/bin/env python3
"""
tidytree - CLI Entry Point
==========================

Usage:
    python -m tidytree organize ~/Downloads --mode by-type
    python -m tidytree organize ~/Pictures --template "{taken.year}/{taken.month}" --execute
    python -m tidytree duplicates ~/Downloads --export dupes.json
    python -m tidytree similar ~/Pictures --threshold 8
    python -m tidytree clean ~/Downloads --older-than 90d --empty-folders
    python -m tidytree stats ~/Downloads --json
    python -m tidytree undo
    python -m tidytree history
"""

import argparse
import sys
from pathlib import Path

from .config import load_rules, load_settings
from .duplicates import export_groups
from .errors import TidyTreeError
from .models import ConflictStrategy, OperationKind, PendingDecision
from .organizer import Organizer
from .planning.templates import PRESETS
from .scanner import ScanFilters
from .utils import (
    console,
    parse_date,
    parse_size,
    print_batch_table,
    print_duplicate_groups,
    print_error,
    print_header,
    print_history,
    print_report,
    print_stats,
    print_success,
    print_warning,
    save_json,
)

_CHOICES = {
    "s": ConflictStrategy.SKIP,
    "o": ConflictStrategy.OVERWRITE,
    "r": ConflictStrategy.RENAME,
    "b": ConflictStrategy.BACKUP,
    "d": ConflictStrategy.DEDUPLICATE,
}


def prompt_decision(pending: PendingDecision) -> ConflictStrategy | None:
    """Ask on the terminal how to resolve one conflict. Non-interactive: leave it pending."""
    if not sys.stdin.isatty():
        return None
    console.print(f"\n[bold yellow]Conflict:[/bold yellow] {pending.intent.source.path}")
    console.print(f"  already exists: {pending.existing}")
    console.print("[bold yellow]\\[s]kip / \\[o]verwrite / \\[r]ename / \\[b]ackup / \\[d]eduplicate[/bold yellow]")
    while True:
        choice = input("Choice: ").strip().lower()
        if choice in _CHOICES:
            return _CHOICES[choice]
        if choice == "":
            return ConflictStrategy.SKIP
        console.print("Invalid choice. Enter s, o, r, b or d")


def build_filters(args) -> ScanFilters:
    """Build ScanFilters from parsed arguments. Raises ValueError on bad sizes/dates."""
    return ScanFilters(
        min_size=parse_size(args.min_size) if args.min_size else None,
        max_size=parse_size(args.max_size) if args.max_size else None,
        after=parse_date(args.after) if args.after else None,
        before=parse_date(args.before) if args.before else None,
        name_startswith=args.name_startswith,
        name_endswith=args.name_endswith,
        name_contains=args.name_contains,
        regex=args.regex,
        mime=args.mime,
        content=args.content,
        ignore=list(args.ignore or []),
    )


def make_organizer(args, root: Path, progress: bool = True) -> Organizer:
    settings = load_settings()
    if getattr(args, "hidden", False):
        settings.include_hidden = True
    if getattr(args, "follow_symlinks", False):
        settings.follow_symlinks = True
    return Organizer(root, settings=settings, decide=prompt_decision, progress=progress)


def cmd_organize(args) -> int:
    """Organize command - plan (and optionally execute) moves or copies."""
    root = args.root.expanduser()
    if not root.is_dir():
        print_error(f"Invalid directory: {root}")
        return 1

    rules = load_rules(args.rules) if args.rules else []
    mode = args.template or args.mode
    kind = OperationKind.COPY if args.copy else OperationKind.MOVE

    print_header("ORGANIZE", f"{root} ({mode or 'default mode'})")

    with make_organizer(args, root) as organizer:
        batch = organizer.plan(
            filters=build_filters(args),
            rules=rules,
            mode=mode,
            kind=kind,
            strategy=args.conflict,
            recursive=not args.no_recursive,
            max_depth=args.max_depth,
        )
        print_batch_table(batch)

        if batch.pending:
            print_warning(f"{len(batch.pending)} conflicts need a decision and were skipped "
                          f"(use --conflict to choose a strategy)")

        if not batch.operations:
            print_success("Nothing to do - everything is already organized.")
            return 0

        if not args.execute:
            print_warning("This was a preview. No files were changed.")
            console.print("       Run with --execute to apply changes.")
            return 0

        report = organizer.execute(batch, cleanup_empty_dirs=args.cleanup)
        print_report(report)
        if args.report_out:
            save_json(report.to_dict(), args.report_out)
        if report.cancelled:
            return 130
        return 1 if report.failed else 0


def cmd_duplicates(args) -> int:
    """Duplicates command - find byte-identical files, optionally delete extras."""
    root = args.root.expanduser()
    print_header("DUPLICATES", str(root))

    with make_organizer(args, root) as organizer:
        groups = organizer.find_duplicates(filters=build_filters(args))
        print_duplicate_groups(groups)
        for path, reason in organizer.errors[:5]:
            print_warning(f"Could not hash {path}: {reason}")
        if args.export:
            save_json(export_groups(groups), args.export)

        if not args.delete or not groups:
            return 0

        batch = organizer.plan_removal(groups)
        print_batch_table(batch)
        if not args.execute:
            print_warning("This was a preview. No files were deleted.")
            console.print("       Run with --execute to delete duplicates (this cannot be undone).")
            return 0

        report = organizer.execute(batch)
        print_report(report)
        if report.cancelled:
            return 130
        return 1 if report.failed else 0


def cmd_similar(args) -> int:
    """Similar command - group visually similar images."""
    root = args.root.expanduser()
    print_header("SIMILAR IMAGES", str(root))

    with make_organizer(args, root) as organizer:
        groups = organizer.find_similar(threshold=args.threshold, filters=build_filters(args))
        print_duplicate_groups(groups, title="Similar Images")
        for path, reason in organizer.errors[:5]:
            print_warning(f"Could not read image {path}: {reason}")
        if args.export:
            save_json(export_groups(groups), args.export)
    return 0


def cmd_clean(args) -> int:
    """Clean command - delete files older than a given age and/or empty folders."""
    root = args.root.expanduser()
    if not root.is_dir():
        print_error(f"Invalid directory: {root}")
        return 1
    if not args.older_than and not args.empty_folders:
        print_error("Nothing to clean: pass --older-than and/or --empty-folders")
        return 1

    print_header("CLEAN", str(root))
    status = 0

    with make_organizer(args, root) as organizer:
        if args.older_than:
            batch = organizer.plan_clean(args.older_than, filters=build_filters(args))
            print_batch_table(batch)
            if not batch.operations:
                print_success(f"No files older than {args.older_than}.")
            elif not args.execute:
                print_warning("This was a preview. No files were deleted.")
                console.print("       Run with --execute to delete them (this cannot be undone).")
            else:
                report = organizer.execute(batch)
                print_report(report)
                if report.cancelled:
                    return 130
                status = 1 if report.failed else 0

        if args.empty_folders:
            folders = organizer.empty_folders(remove=args.execute)
            if not folders:
                print_success("No empty folders found.")
            else:
                verb = "Removed" if args.execute else "Found"
                console.print(f"\n[bold]{verb} {len(folders)} empty folders:[/bold]")
                for folder in folders[:20]:
                    console.print(f"  [yellow]○[/yellow] {folder}")
                if len(folders) > 20:
                    console.print(f"  ... and {len(folders) - 20} more")
    return status


def cmd_stats(args) -> int:
    """Stats command - files and bytes per category, largest and oldest files."""
    root = args.root.expanduser()
    if not root.is_dir():
        print_error(f"Invalid directory: {root}")
        return 1

    if args.json:
        with make_organizer(args, root, progress=False) as organizer:
            stats = organizer.stats(filters=build_filters(args))
        console.print_json(data=stats.to_dict())
        return 0

    print_header("STATS", str(root))
    with make_organizer(args, root) as organizer:
        stats = organizer.stats(filters=build_filters(args))
    print_stats(stats)
    return 0


def cmd_undo(args) -> int:
    """Undo command - reverse the most recent batch."""
    with make_organizer(args, Path.cwd()) as organizer:
        report = organizer.undo()

    if report.batch_id is None:
        print_warning("Nothing to undo.")
        return 0

    console.print(f"[bold]Undo {report.batch_id}[/bold] ({report.command}): "
                  f"[green]{len(report.restored)} restored[/green], "
                  f"[red]{len(report.conflicts)} conflicts[/red]")
    for path, reason in report.conflicts[:10]:
        console.print(f"  [red]✗[/red] {path}: {reason}")
    for path, reason in report.skipped[:10]:
        print_warning(f"{path}: {reason}")
    return 0 if report.complete else 1


def cmd_history(args) -> int:
    """History command - list journaled batches, newest first."""
    with make_organizer(args, Path.cwd()) as organizer:
        entries = organizer.history()
    print_history(entries[: args.limit] if args.limit else entries)
    return 0


def _add_filter_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("filters")
    group.add_argument("--min-size", metavar="SIZE", help="Minimum file size (e.g. 10MB)")
    group.add_argument("--max-size", metavar="SIZE", help="Maximum file size (e.g. 1.5G)")
    group.add_argument("--after", metavar="DATE", help="Modified on or after YYYY-MM-DD")
    group.add_argument("--before", metavar="DATE", help="Modified on or before YYYY-MM-DD")
    group.add_argument("--name-startswith", metavar="TEXT", help="Name (without extension) starts with")
    group.add_argument("--name-endswith", metavar="TEXT", help="Name (without extension) ends with")
    group.add_argument("--name-contains", metavar="TEXT", help="Name contains")
    group.add_argument("--regex", metavar="PATTERN", help="Regular expression on the file name")
    group.add_argument("--mime", metavar="TYPE", help="MIME type, e.g. image/* or application/pdf")
    group.add_argument("--ignore", metavar="GLOB", action="append", help="Ignore pattern (repeatable)")
    group.add_argument("--content", metavar="TEXT", help="Text files containing TEXT")
    group.add_argument("--hidden", action="store_true", help="Include hidden files and folders")
    group.add_argument("--follow-symlinks", action="store_true", help="Follow symbolic links")


# =============================================================================
# Main
# =============================================================================

def main() -> int:
    parser = argparse.ArgumentParser(
        description="tidytree - organize files, find duplicates, undo anything",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    conflict_choices = [s.value for s in ConflictStrategy]

    # --- ORGANIZE command ---
    organize_parser = subparsers.add_parser("organize", help="Sort files into folders")
    organize_parser.add_argument("root", type=Path, help="Directory to organize")
    source = organize_parser.add_mutually_exclusive_group()
    source.add_argument("--mode", choices=sorted(PRESETS), help="Built-in organization mode")
    source.add_argument("--template", help="Destination template, e.g. '{year}/{month}/{filename}'")
    organize_parser.add_argument("--rules", type=Path, help="JSON file with custom rules")
    organize_parser.add_argument("--copy", action="store_true", help="Copy instead of move")
    organize_parser.add_argument("--conflict", choices=conflict_choices,
                                 help="What to do when a destination exists (default: rename)")
    organize_parser.add_argument("--execute", action="store_true", help="Apply the plan (default: preview)")
    organize_parser.add_argument("--cleanup", action="store_true", help="Remove folders emptied by the moves")
    organize_parser.add_argument("--no-recursive", action="store_true", help="Only the top-level folder")
    organize_parser.add_argument("--max-depth", type=int, metavar="N", help="Maximum folder depth")
    organize_parser.add_argument("--report-out", type=Path, help="Write the execution report as JSON")
    _add_filter_args(organize_parser)
    organize_parser.set_defaults(func=cmd_organize)

    # --- DUPLICATES command ---
    dup_parser = subparsers.add_parser("duplicates", help="Find byte-identical files")
    dup_parser.add_argument("root", type=Path, help="Directory to search")
    dup_parser.add_argument("--delete", action="store_true", help="Plan deletion of every non-canonical copy")
    dup_parser.add_argument("--execute", action="store_true", help="Actually delete (cannot be undone)")
    dup_parser.add_argument("--export", type=Path, metavar="FILE", help="Write the groups as JSON")
    _add_filter_args(dup_parser)
    dup_parser.set_defaults(func=cmd_duplicates)

    # --- SIMILAR command ---
    sim_parser = subparsers.add_parser("similar", help="Find visually similar images")
    sim_parser.add_argument("root", type=Path, help="Directory to search")
    sim_parser.add_argument("--threshold", type=int, metavar="BITS",
                            help="Maximum perceptual hash distance, 0-64 (default: 5)")
    sim_parser.add_argument("--export", type=Path, metavar="FILE", help="Write the groups as JSON")
    _add_filter_args(sim_parser)
    sim_parser.set_defaults(func=cmd_similar)

    # --- CLEAN command ---
    clean_parser = subparsers.add_parser("clean", help="Delete old files and empty folders")
    clean_parser.add_argument("root", type=Path, help="Directory to clean")
    clean_parser.add_argument("--older-than", metavar="AGE",
                              help="Files not modified within AGE (e.g. 30d, 2w, 12h; bare numbers are days)")
    clean_parser.add_argument("--empty-folders", action="store_true", help="Also find empty folders")
    clean_parser.add_argument("--execute", action="store_true", help="Actually delete (cannot be undone)")
    _add_filter_args(clean_parser)
    clean_parser.set_defaults(func=cmd_clean)

    # --- STATS command ---
    stats_parser = subparsers.add_parser("stats", help="Show what a folder contains")
    stats_parser.add_argument("root", type=Path, help="Directory to analyze")
    stats_parser.add_argument("--json", action="store_true", help="Print totals per category as JSON")
    _add_filter_args(stats_parser)
    stats_parser.set_defaults(func=cmd_stats)

    # --- UNDO command ---
    undo_parser = subparsers.add_parser("undo", help="Reverse the most recent batch")
    undo_parser.set_defaults(func=cmd_undo)

    # --- HISTORY command ---
    history_parser = subparsers.add_parser("history", help="Show operation history")
    history_parser.add_argument("--limit", type=int, metavar="N", help="Show at most N batches")
    history_parser.set_defaults(func=cmd_history)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\n[ABORT] Operation cancelled by user")
        return 130
    except (TidyTreeError, ValueError, RuntimeError) as e:
        print_error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
