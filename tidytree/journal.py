"""
Append-only operation journal.

The journal is a JSON Lines file with three record types:

    {"type": "batch", "batch_id": ..., "timestamp": ..., "command": ..., "undoable": true}
    {"type": "op", "batch_id": ..., "seq": 0, "kind": "move", "source": ..., "destination": ..., "backup": null}
    {"type": "undo", "batch_id": ..., "seq": 0, "timestamp": ...}

A batch line is written just before the batch's first op line, so a batch
in which nothing succeeded leaves no trace. Every line is flushed and
fsync'ed before the call returns.
"""

import json
import os
import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path

from .config import DEFAULT_HISTORY_DAYS, DEFAULT_HISTORY_LIMIT
from .errors import JournalError, JournalLockedError
from .models import Batch, JournalEntry, JournalRecord, OperationKind, PlannedOperation

if os.name == "nt":
    import msvcrt
else:
    import fcntl


def _lock(handle) -> None:
    if os.name == "nt":
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
    else:
        fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock(handle) -> None:
    if os.name == "nt":
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(handle, fcntl.LOCK_UN)


def _path_or_none(value) -> Path | None:
    return Path(value) if value else None


class Journal:
    """
    Exclusive handle on the journal file for one invocation.

    Use as a context manager, or call open()/close().

    Args:
        path: The journal file.
        history_limit: Keep at most this many batches.
        history_days: Drop batches older than this many days.
        verbose: Print warnings about malformed lines.
    """

    def __init__(
        self,
        path: Path,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        history_days: int = DEFAULT_HISTORY_DAYS,
        verbose: bool = True,
    ):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.history_limit = history_limit
        self.history_days = history_days
        self.verbose = verbose
        self._lock = threading.Lock()
        self._handle = None
        self._lock_handle = None
        self._started: set[str] = set()
        self._seq: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    def open(self) -> "Journal":
        """
        Raises:
            JournalLockedError: If another process holds the journal.
            JournalError: If the file cannot be opened.
        """
        if self.is_open:
            return self
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._lock_handle = open(self.lock_path, "a+", encoding="utf-8")
        except OSError as e:
            raise JournalError(f"Cannot open journal lock {self.lock_path}: {e}")
        try:
            _lock(self._lock_handle)
        except OSError:
            self._lock_handle.close()
            self._lock_handle = None
            raise JournalLockedError(f"Journal {self.path} is in use by another process")
        try:
            self._handle = open(self.path, "a", encoding="utf-8")
        except OSError as e:
            self._release()
            raise JournalError(f"Cannot open journal {self.path}: {e}")
        return self

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        self._release()

    def _release(self) -> None:
        if self._lock_handle is not None:
            try:
                _unlock(self._lock_handle)
            finally:
                self._lock_handle.close()
                self._lock_handle = None

    def __enter__(self) -> "Journal":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _append(self, record: dict) -> None:
        if self._handle is None:
            raise JournalError("Journal is not open")
        try:
            self._handle.write(json.dumps(record, ensure_ascii=False) + "\n")
            self._handle.flush()
            os.fsync(self._handle.fileno())
        except OSError as e:
            raise JournalError(f"Failed to write journal {self.path}: {e}")

    def record_operation(self, batch: Batch, op: PlannedOperation) -> int:
        """
        Append one executed operation, preceded by the batch line if needed.

        Returns:
            The operation's sequence number within the batch.

        Raises:
            JournalError: If the write fails.
        """
        with self._lock:
            if batch.batch_id not in self._started:
                self._append({
                    "type": "batch",
                    "batch_id": batch.batch_id,
                    "timestamp": datetime.now().isoformat(timespec="seconds"),
                    "command": batch.command,
                    "undoable": batch.undoable,
                })
                self._started.add(batch.batch_id)
                self._seq[batch.batch_id] = 0

            seq = self._seq[batch.batch_id]
            self._append({
                "type": "op",
                "batch_id": batch.batch_id,
                "seq": seq,
                "kind": op.kind.value,
                "source": str(op.source),
                "destination": str(op.destination) if op.destination else None,
                "backup": str(op.backup) if op.backup else None,
            })
            self._seq[batch.batch_id] = seq + 1
            return seq

    def record_undo(self, batch_id: str, seq: int) -> None:
        """Mark one operation as reversed. This is permanent."""
        with self._lock:
            self._append({
                "type": "undo",
                "batch_id": batch_id,
                "seq": seq,
                "timestamp": datetime.now().isoformat(timespec="seconds"),
            })

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def entries(self) -> list[JournalEntry]:
        """Rebuild all batches from the file, oldest first."""
        with self._lock:
            return self._read()

    def _read(self) -> list[JournalEntry]:
        if not self.path.exists():
            return []

        entries: dict[str, JournalEntry] = {}
        records: dict[tuple[str, int], JournalRecord] = {}
        bad_lines = 0

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            raise JournalError(f"Failed to read journal {self.path}: {e}")

        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                kind = data["type"]
                batch_id = data["batch_id"]
                if kind == "batch":
                    entries[batch_id] = JournalEntry(
                        batch_id=batch_id,
                        timestamp=datetime.fromisoformat(data["timestamp"]),
                        command=data.get("command", ""),
                        undoable=bool(data.get("undoable", True)),
                    )
                elif kind == "op":
                    entry = entries[batch_id]
                    record = JournalRecord(
                        seq=int(data["seq"]),
                        source=Path(data["source"]),
                        destination=_path_or_none(data.get("destination")),
                        kind=OperationKind(data["kind"]),
                        backup=_path_or_none(data.get("backup")),
                    )
                    entry.records.append(record)
                    records[(batch_id, record.seq)] = record
                elif kind == "undo":
                    records[(batch_id, int(data["seq"]))].undone = True
                else:
                    raise ValueError(f"unknown record type {kind}")
            except (ValueError, KeyError, TypeError):
                bad_lines += 1

        if bad_lines and self.verbose:
            print(f"[WARN] Skipped {bad_lines} malformed journal lines in {self.path}")

        return sorted(entries.values(), key=lambda e: e.timestamp)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def prune(self, now: datetime | None = None) -> int:
        """
        Drop batches beyond the count cap or older than the age horizon.

        The file is rewritten atomically. Returns the number of batches removed.
        """
        now = now or datetime.now()
        horizon = now - timedelta(days=self.history_days)

        with self._lock:
            entries = self._read()
            keep = [e for e in entries if e.timestamp >= horizon]
            keep = keep[-self.history_limit:] if self.history_limit > 0 else []
            removed = len(entries) - len(keep)
            if removed == 0:
                return 0
            self._rewrite(keep)
            return removed

    def _rewrite(self, entries: list[JournalEntry]) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                for entry in entries:
                    f.write(json.dumps({
                        "type": "batch",
                        "batch_id": entry.batch_id,
                        "timestamp": entry.timestamp.isoformat(timespec="seconds"),
                        "command": entry.command,
                        "undoable": entry.undoable,
                    }, ensure_ascii=False) + "\n")
                    for r in entry.records:
                        f.write(json.dumps({
                            "type": "op",
                            "batch_id": entry.batch_id,
                            "seq": r.seq,
                            "kind": r.kind.value,
                            "source": str(r.source),
                            "destination": str(r.destination) if r.destination else None,
                            "backup": str(r.backup) if r.backup else None,
                        }, ensure_ascii=False) + "\n")
                    for r in entry.records:
                        if r.undone:
                            f.write(json.dumps({
                                "type": "undo",
                                "batch_id": entry.batch_id,
                                "seq": r.seq,
                            }, ensure_ascii=False) + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise JournalError(f"Failed to rewrite journal {self.path}: {e}")

        # The append handle still points at the replaced file
        if self._handle is not None:
            self._handle.close()
            self._handle = open(self.path, "a", encoding="utf-8")
