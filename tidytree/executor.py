"""
Batch execution.

Applies planned operations in order and journals each success before it
is reported as succeeded.
"""

import errno
import os
import shutil
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable

from tqdm import tqdm

from .errors import JournalError
from .journal import Journal
from .models import Batch, ExecutionReport, OperationKind, PlannedOperation
from .planning.validator import validate_batch
from .utils import is_protected_folder

Trash = Callable[[Path], Path]


class OperationError(Exception):
    """A single operation failed; the batch carries on."""


def _copy_file(src: Path, dst: Path) -> None:
    """Copy bytes and timestamps; remove a partial copy on failure."""
    try:
        shutil.copy2(src, dst)
    except BaseException:
        try:
            if dst.exists():
                dst.unlink()
        except OSError:
            pass
        raise


def move_file(src: Path, dst: Path, allow_cross_device: bool = True) -> None:
    """
    Rename src to dst, falling back to copy-then-delete across filesystems.

    Raises:
        OperationError: If cross-device moves are not allowed.
        OSError: On any filesystem failure.
    """
    try:
        os.rename(src, dst)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
    if not allow_cross_device:
        raise OperationError("Destination is on a different device")
    _copy_file(src, dst)
    src.unlink()


@contextmanager
def _deferred_interrupt():
    """Hold Ctrl-C until the block finishes, then raise KeyboardInterrupt."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    received = []
    previous = signal.signal(signal.SIGINT, lambda signum, frame: received.append(signum))
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous if previous is not None else signal.default_int_handler)
    if received:
        raise KeyboardInterrupt


class Executor:
    """
    Applies batches sequentially.

    Args:
        journal: Open journal; every success is appended to it.
        trash: Optional capability that moves a file to the trash and
            returns where it went. Without it deletes are permanent.
        progress: Show a tqdm progress bar.
        allow_cross_device: Allow moves between filesystems (copy + delete).
        cleanup_empty_dirs: Remove folders emptied by a move batch.
    """

    def __init__(
        self,
        journal: Journal,
        trash: Trash | None = None,
        progress: bool = True,
        allow_cross_device: bool = True,
        cleanup_empty_dirs: bool = False,
    ):
        self.journal = journal
        self.trash = trash
        self.progress = progress
        self.allow_cross_device = allow_cross_device
        self.cleanup_empty_dirs = cleanup_empty_dirs

    def _log(self, message: str) -> None:
        if self.progress:
            tqdm.write(message)

    def execute(self, batch: Batch) -> ExecutionReport:
        """
        Execute a batch.

        Per-operation failures are recorded and the batch continues. A
        journal write failure stops the batch. Ctrl-C stops it between
        operations; the report is marked cancelled.

        Raises:
            RuntimeError: If the organize root is missing.
            ValueError: If the batch has colliding or escaping destinations.
        """
        validate_batch(batch, verbose=self.progress)
        report = ExecutionReport(batch_id=batch.batch_id)
        report.skipped.extend(batch.dropped)

        ops = list(batch.operations)
        if self.progress:
            print(f"\n[APPLY] Executing {len(ops)} operations...")

        index = 0
        with tqdm(total=len(ops), unit="file", disable=not self.progress) as pbar:
            try:
                while index < len(ops):
                    op = ops[index]
                    applied = journaled = False
                    try:
                        # Ctrl-C waits until the change is journaled
                        with _deferred_interrupt():
                            self._apply(op)
                            applied = True
                            self.journal.record_operation(batch, op)
                            journaled = True
                    except (OperationError, OSError) as e:
                        reason = str(e) if isinstance(e, OperationError) else (e.strerror or str(e))
                        report.failed.append((op.source, reason))
                        self._log(f"[ERROR] {reason}: {op.source}")
                    except JournalError as e:
                        report.failed.append((op.source, str(e)))
                        self._log(f"[ERROR] {e}; stopping batch")
                        index += 1
                        break
                    except KeyboardInterrupt:
                        if journaled:
                            report.succeeded.append(op)
                        elif applied:
                            report.failed.append((op.source, "Interrupted before the change was journaled"))
                            self._log(f"[ERROR] Interrupted before journaling: {op.source}")
                        if applied:
                            index += 1
                        raise
                    else:
                        report.succeeded.append(op)
                    index += 1
                    pbar.update(1)
            except KeyboardInterrupt:
                report.cancelled = True

        for op in ops[index:]:
            report.skipped.append((op.source, "Not started"))

        if self.cleanup_empty_dirs and not report.cancelled:
            moved = [op for op in report.succeeded if op.kind is OperationKind.MOVE]
            if moved:
                keep = {str(op.destination.parent.relative_to(batch.root)).replace("\\", "/") for op in moved}
                report.cleaned_folders = cleanup_empty_dirs(batch.root, keep_folders=keep)
                self._log(f"  [CLEANUP] Removed {len(report.cleaned_folders)} empty folders")

        if self.progress:
            counts = report.counts()
            print(f"[APPLY] Complete: {counts['succeeded']} succeeded, "
                  f"{counts['skipped']} skipped, {counts['failed']} failed")
        return report

    def _apply(self, op: PlannedOperation) -> None:
        if op.kind is OperationKind.DELETE:
            if not op.source.exists():
                raise OperationError("Source not found")
            if self.trash is not None:
                self.trash(op.source)
            else:
                op.source.unlink()
            return

        src, dst = op.source, op.destination
        if not src.exists():
            raise OperationError("Source not found")

        if os.path.lexists(dst):
            if not op.replace:
                raise OperationError("Destination exists")
            if dst.is_dir():
                raise OperationError("Destination is a directory")
            if op.backup is not None:
                if os.path.lexists(op.backup):
                    raise OperationError("Backup path exists")
                _copy_file(dst, op.backup)

        dst.parent.mkdir(parents=True, exist_ok=True)

        if op.kind is OperationKind.MOVE:
            if op.replace:
                # os.replace overwrites atomically on the same device
                try:
                    os.replace(src, dst)
                    return
                except OSError as e:
                    if e.errno != errno.EXDEV:
                        raise
                if not self.allow_cross_device:
                    raise OperationError("Destination is on a different device")
                _copy_file(src, dst)
                src.unlink()
            else:
                move_file(src, dst, self.allow_cross_device)
        else:
            _copy_file(src, dst)


def cleanup_empty_dirs(root: Path, keep_folders: set[str] | None = None, dry_run: bool = False) -> list[str]:
    """
    Recursively remove empty directories, starting from the bottom up.
    Skips the root and anything inside known bundles (e.g. .app, VIDEO_TS).

    Args:
        root: The root directory to clean.
        keep_folders: Root-relative folders (posix style) that must stay.
        dry_run: Only list what would be removed, counting folders that
            hold nothing but removable folders as empty.

    Returns:
        List of removed folder paths (relative to root).
    """
    removed = []
    emptied: set[str] = set()
    root = Path(root)

    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        if os.path.samefile(dirpath, root):
            continue

        rel_path = Path(dirpath).relative_to(root)
        rel_path_str = rel_path.as_posix()
        if keep_folders and rel_path_str in keep_folders:
            continue

        # If any part of the path is a bundle, protect it and its children
        if any(is_protected_folder(part) for part in rel_path.parts):
            continue

        if dry_run:
            if not filenames and all((rel_path / d).as_posix() in emptied for d in dirnames):
                emptied.add(rel_path_str)
                removed.append(rel_path_str)
            continue

        try:
            # Only succeeds on empty directories
            os.rmdir(dirpath)
            removed.append(rel_path_str)
        except OSError:
            pass

    return removed
