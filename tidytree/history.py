"""
History and undo, read back from the journal.
"""

import os
from pathlib import Path

from .executor import move_file
from .journal import Journal
from .models import JournalEntry, JournalRecord, OperationKind, UndoReport


class UndoConflict(Exception):
    """A record cannot be reversed without clobbering or inventing a file."""

    def __init__(self, path: Path, reason: str):
        super().__init__(reason)
        self.path = path
        self.reason = reason


def history(journal: Journal) -> list[JournalEntry]:
    """All retained batches, newest first."""
    journal.prune()
    return list(reversed(journal.entries()))


def _restore_backup(record: JournalRecord, report: UndoReport) -> None:
    if record.backup is None:
        return
    if not record.backup.exists():
        report.skipped.append((record.backup, "Backup missing; replaced file not restored"))
        return
    try:
        move_file(record.backup, record.destination)
    except OSError as e:
        report.skipped.append((record.backup, f"Backup not restored: {e.strerror or e}"))


def _reverse(record: JournalRecord) -> None:
    src, dst = record.source, record.destination

    if record.kind is OperationKind.MOVE:
        if not dst.exists():
            raise UndoConflict(dst, "File to restore is missing")
        if os.path.lexists(src):
            raise UndoConflict(src, "Original location is occupied")
        src.parent.mkdir(parents=True, exist_ok=True)
        move_file(dst, src)

    elif record.kind is OperationKind.COPY:
        # The original was never touched; only the copy goes
        if os.path.lexists(dst):
            dst.unlink()

    else:
        raise UndoConflict(src, "Deletions cannot be undone")


def undo(journal: Journal, verbose: bool = True) -> UndoReport:
    """
    Reverse the most recent undoable batch that is not fully undone.

    Records are reversed newest first. A record that conflicts is reported
    and stays not-undone; the rest are still attempted, so calling undo
    again retries only what is left.
    """
    journal.prune()
    entries = journal.entries()
    target = next((e for e in reversed(entries) if e.undoable and not e.undone), None)
    if target is None:
        if verbose:
            print("[UNDO] Nothing to undo")
        return UndoReport(batch_id=None)

    report = UndoReport(batch_id=target.batch_id, command=target.command)
    pending = sorted(target.pending_records, key=lambda r: r.seq, reverse=True)
    if verbose:
        print(f"[UNDO] Reversing {len(pending)} operations from batch {target.batch_id} ({target.command})")

    for record in pending:
        try:
            _reverse(record)
        except UndoConflict as e:
            report.conflicts.append((e.path, e.reason))
            continue
        except OSError as e:
            report.conflicts.append((record.destination or record.source, e.strerror or str(e)))
            continue
        # The record is undone once the file is back; the backup is extra
        journal.record_undo(target.batch_id, record.seq)
        report.restored.append(record.source)
        _restore_backup(record, report)

    if verbose:
        print(f"[UNDO] Restored {len(report.restored)}, conflicts {len(report.conflicts)}")
    return report
