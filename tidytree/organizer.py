"""
High-level entry points.

An Organizer ties the scanner, planner, duplicate finder, executor and
journal together for one organize root. It owns a single journal handle
for its lifetime; use it as a context manager (or call close()).
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable

from .classifier import Classifier
from .config import Settings, load_settings
from .duplicates import DuplicateFinder, removal_intents
from .executor import Executor, Trash, cleanup_empty_dirs
from .history import history as read_history, undo as undo_last
from .journal import Journal
from .models import (
    Batch,
    CategoryStats,
    ConflictStrategy,
    DirectoryStats,
    DuplicateGroup,
    ExecutionReport,
    FileDescriptor,
    Intent,
    JournalEntry,
    OperationKind,
    Rule,
    UndoReport,
)
from .planning.planner import Decide, Planner
from .planning.rules import DestinationResolver
from .scanner import FileScan, ScanFilters
from .utils import parse_duration


class Organizer:
    """
    Args:
        root: Organize root; destinations are computed relative to it.
        journal: Journal handle. Defaults to the configured journal path.
        settings: Settings; loaded from the environment when omitted.
        classifier: Classifier (and metadata providers) to use.
        trash: Optional trash capability for deletions.
        decide: Optional callback answering Ask conflicts.
        progress: Show progress bars and status lines.
    """

    def __init__(
        self,
        root: Path | str,
        journal: Journal | None = None,
        settings: Settings | None = None,
        classifier: Classifier | None = None,
        trash: Trash | None = None,
        decide: Decide | None = None,
        progress: bool = True,
    ):
        self.settings = settings or load_settings()
        self.root = Path(root).expanduser().resolve()
        self.journal = journal or Journal(
            self.settings.journal_path,
            history_limit=self.settings.history_limit,
            history_days=self.settings.history_days,
            verbose=progress,
        )
        self.classifier = classifier or Classifier()
        self.trash = trash
        self.decide = decide
        self.progress = progress
        # Files the last duplicate/similarity search could not read
        self.errors: list[tuple[Path, str]] = []

    def __enter__(self) -> "Organizer":
        self.journal.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self.journal.close()

    def _open_journal(self) -> Journal:
        if not self.journal.is_open:
            self.journal.open()
        return self.journal

    def _check_root(self) -> None:
        if not self.root.is_dir():
            raise RuntimeError(f"Root directory not found: {self.root}\nIs the drive connected?")

    def _strategy(self, strategy) -> ConflictStrategy:
        return ConflictStrategy.parse(strategy) if strategy is not None else self.settings.conflict

    def scan(
        self,
        roots: Iterable[Path | str] | None = None,
        filters: ScanFilters | None = None,
        recursive: bool = True,
        max_depth: int | None = None,
    ) -> FileScan:
        return FileScan(
            list(roots) if roots else [self.root],
            filters=filters,
            recursive=recursive,
            max_depth=max_depth,
            include_hidden=self.settings.include_hidden,
            follow_symlinks=self.settings.follow_symlinks,
            classifier=self.classifier,
            progress=self.progress,
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(
        self,
        roots: Iterable[Path | str] | None = None,
        filters: ScanFilters | None = None,
        rules: Iterable[Rule] = (),
        mode: str | None = None,
        kind: OperationKind = OperationKind.MOVE,
        strategy: ConflictStrategy | str | None = None,
        recursive: bool = True,
        max_depth: int | None = None,
    ) -> Batch:
        """
        Scan roots (default: the organize root) and plan where every file goes.

        Raises:
            RuntimeError: If the organize root is missing.
            TemplateError: If a rule or the mode template is malformed.
        """
        self._check_root()
        resolver = DestinationResolver(rules, mode or self.settings.mode)
        scan = self.scan(roots, filters, recursive, max_depth)
        descriptors = list(scan)
        batch = self._plan_descriptors(descriptors, resolver, kind, strategy, mode)
        batch.dropped.extend(scan.errors)
        return batch

    def plan_paths(
        self,
        paths: Iterable[Path | str],
        rules: Iterable[Rule] = (),
        mode: str | None = None,
        kind: OperationKind = OperationKind.MOVE,
        strategy: ConflictStrategy | str | None = None,
    ) -> Batch:
        """
        Plan a batch for specific files, e.g. paths reported by a file watcher.

        Paths that vanished or are not regular files are dropped.
        """
        self._check_root()
        resolver = DestinationResolver(rules, mode or self.settings.mode)
        descriptors = []
        dropped = []
        for raw in paths:
            path = Path(raw).expanduser().resolve()
            if not path.is_file():
                dropped.append((path, "Not a regular file"))
                continue
            try:
                descriptors.append(self.classifier.describe(path))
            except OSError as e:
                dropped.append((path, e.strerror or str(e)))
        batch = self._plan_descriptors(descriptors, resolver, kind, strategy, mode)
        batch.dropped.extend(dropped)
        return batch

    def _plan_descriptors(
        self,
        descriptors: list[FileDescriptor],
        resolver: DestinationResolver,
        kind: OperationKind,
        strategy,
        mode: str | None,
    ) -> Batch:
        if resolver.uses_metadata:
            descriptors = self.classifier.enrich_all(
                descriptors, workers=self.settings.workers, progress=self.progress
            )

        intents = []
        for d in descriptors:
            destination, reason = resolver.destination(d)
            intents.append(Intent(source=d, destination=destination, kind=kind, reason=reason))

        command = f"{kind.value} {mode or self.settings.mode}"
        planner = Planner(self.root, self._strategy(strategy), self.decide, command)
        return planner.resolve(intents)

    def resume(self, batch: Batch, decisions: dict) -> Batch:
        """Answer pending Ask conflicts (source path -> strategy) and re-resolve."""
        planner = Planner(self.root, batch.strategy, self.decide, batch.command)
        return planner.resume(batch, decisions)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(
        self,
        batch: Batch,
        strategy: ConflictStrategy | str | None = None,
        cleanup_empty_dirs: bool = False,
    ) -> ExecutionReport:
        """
        Execute a batch, re-resolving it first if a different strategy is given.
        """
        if strategy is not None and ConflictStrategy.parse(strategy) is not batch.strategy:
            planner = Planner(batch.root, strategy, self.decide, batch.command)
            batch = planner.resolve(batch.intents, batch_id=batch.batch_id)

        executor = Executor(
            self._open_journal(),
            trash=self.trash,
            progress=self.progress,
            cleanup_empty_dirs=cleanup_empty_dirs,
        )
        return executor.execute(batch)

    # ------------------------------------------------------------------
    # Duplicates
    # ------------------------------------------------------------------

    def _finder(self) -> DuplicateFinder:
        return DuplicateFinder(workers=self.settings.workers, progress=self.progress)

    def find_duplicates(
        self,
        roots: Iterable[Path | str] | None = None,
        filters: ScanFilters | None = None,
        finder: DuplicateFinder | None = None,
    ) -> list[DuplicateGroup]:
        finder = finder or self._finder()
        groups = finder.find_duplicates(self.scan(roots, filters))
        self.errors = list(finder.errors)
        return groups

    def find_similar(
        self,
        roots: Iterable[Path | str] | None = None,
        threshold: int | None = None,
        filters: ScanFilters | None = None,
        finder: DuplicateFinder | None = None,
    ) -> list[DuplicateGroup]:
        """
        Raises:
            ValueError: If threshold is outside 0..64.
        """
        finder = finder or self._finder()
        if threshold is None:
            threshold = self.settings.similarity_threshold
        groups = finder.find_similar(self.scan(roots, filters), threshold)
        self.errors = list(finder.errors)
        return groups

    def plan_removal(self, groups: Iterable[DuplicateGroup]) -> Batch:
        """A delete batch for every non-canonical member of the groups."""
        intents, dropped = removal_intents(groups, self.classifier)
        planner = Planner(self.root, self.settings.conflict, command="remove duplicates")
        batch = planner.resolve(intents)
        batch.dropped.extend(dropped)
        return batch

    # ------------------------------------------------------------------
    # Cleaning and statistics
    # ------------------------------------------------------------------

    def plan_clean(
        self,
        older_than: timedelta | str,
        roots: Iterable[Path | str] | None = None,
        filters: ScanFilters | None = None,
        now: datetime | None = None,
    ) -> Batch:
        """
        A delete batch for every scanned file not modified within `older_than`.

        Args:
            older_than: A timedelta or a duration such as "30d", "2w", "12h".
            now: Reference time (default: the current time).

        Raises:
            RuntimeError: If the organize root is missing.
            ValueError: If the duration cannot be parsed.
        """
        self._check_root()
        if isinstance(older_than, str):
            label = older_than.strip()
            older_than = parse_duration(older_than)
        else:
            label = str(older_than)
        cutoff = (now or datetime.now()) - older_than

        scan = self.scan(roots, filters)
        intents = [
            Intent(
                source=d,
                destination=None,
                kind=OperationKind.DELETE,
                reason=f"Not modified since {cutoff:%Y-%m-%d %H:%M}",
            )
            for d in scan
            if d.modified < cutoff
        ]
        planner = Planner(self.root, self.settings.conflict, command=f"clean older than {label}")
        batch = planner.resolve(intents)
        batch.dropped.extend(scan.errors)
        return batch

    def empty_folders(self, remove: bool = False) -> list[str]:
        """
        Folders under the root that hold no files (root-relative, posix style).

        With remove=True they are deleted, deepest first. Folder removal is
        not journaled.
        """
        self._check_root()
        return cleanup_empty_dirs(self.root, dry_run=not remove)

    def stats(
        self,
        roots: Iterable[Path | str] | None = None,
        filters: ScanFilters | None = None,
        top: int = 10,
    ) -> DirectoryStats:
        """
        File counts and sizes per category, most files first, plus the
        `top` largest and oldest files.
        """
        scan = self.scan(roots, filters)
        files = list(scan)
        self.errors = list(scan.errors)

        by_category: dict[str, CategoryStats] = {}
        for d in files:
            entry = by_category.setdefault(d.category.value, CategoryStats(d.category.value))
            entry.count += 1
            entry.size += d.size

        return DirectoryStats(
            total_files=len(files),
            total_size=sum(d.size for d in files),
            categories=sorted(by_category.values(), key=lambda c: (-c.count, c.name)),
            largest=sorted(files, key=lambda d: d.size, reverse=True)[:top],
            oldest=sorted(files, key=lambda d: d.modified)[:top],
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def undo(self) -> UndoReport:
        return undo_last(self._open_journal(), verbose=self.progress)

    def history(self) -> list[JournalEntry]:
        return read_history(self._open_journal())
