"""
Conflict resolution: turns intents into an executable Batch.

Every destination in a batch is unique, both within the batch and against
what already exists on disk, unless an operation explicitly replaces an
existing file (Overwrite/Backup).
"""

import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

from ..duplicates import hash_file
from ..models import (
    Batch,
    ConflictStrategy,
    Intent,
    OperationKind,
    PendingDecision,
    PlannedOperation,
)

# Safety break for pathological rename loops
MAX_RENAME_ATTEMPTS = 100000

Decide = Callable[[PendingDecision], "ConflictStrategy | str | None"]


def new_batch_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"


def _exists(path: Path) -> bool:
    return os.path.lexists(path)


class Planner:
    """
    Resolves destination collisions for one organize root.

    Args:
        root: Organize root; intent destinations are relative to it.
        strategy: Conflict strategy for the whole batch.
        decide: Optional callback for Ask conflicts. It receives a
            PendingDecision and returns a strategy, or None to leave the
            conflict pending.
        command: Description recorded on the batch and in the journal.
        hash_func: Content hash used by Deduplicate.
    """

    def __init__(
        self,
        root: Path,
        strategy: ConflictStrategy = ConflictStrategy.RENAME,
        decide: Decide | None = None,
        command: str = "organize",
        hash_func: Callable[[Path], str] = hash_file,
    ):
        self.root = Path(root)
        self.strategy = ConflictStrategy.parse(strategy)
        self.decide = decide
        self.command = command
        self.hash_func = hash_func

    def resolve(
        self,
        intents: Iterable[Intent],
        strategy: ConflictStrategy | str | None = None,
        batch_id: str | None = None,
        decide: Decide | None = None,
    ) -> Batch:
        """
        Build a Batch from intents, in order.

        Args:
            intents: Requested operations.
            strategy: Overrides the planner's strategy for this batch.
            batch_id: Reuse an id (re-resolving an existing batch).
            decide: Overrides the planner's Ask callback for this batch.
        """
        strategy = ConflictStrategy.parse(strategy) if strategy is not None else self.strategy
        decide = decide if decide is not None else self.decide
        intents = list(intents)
        batch = Batch(
            batch_id=batch_id or new_batch_id(),
            command=self.command,
            root=self.root,
            strategy=strategy,
            intents=intents,
        )

        claimed: dict[Path, Path] = {}  # destination -> source claiming it
        next_counters: dict[Path, int] = {}
        sources: set[Path] = set()
        # Files this batch reads, moves or deletes, wherever they sit in it
        batch_sources = {
            intent.source.path for intent in intents
            if intent.destination is None or self.root / intent.destination != intent.source.path
        }

        for intent in intents:
            src = intent.source.path
            if src in sources:
                batch.dropped.append((src, "Duplicate source in batch"))
                continue
            sources.add(src)

            if intent.kind is OperationKind.DELETE:
                batch.operations.append(PlannedOperation(
                    source=src,
                    destination=None,
                    kind=intent.kind,
                    strategy=strategy,
                    batch_id=batch.batch_id,
                    reason=intent.reason,
                ))
                continue

            dest = self.root / intent.destination
            if dest == src:
                batch.dropped.append((src, "Already in place"))
                continue

            op = self._resolve_one(
                intent, dest, strategy, decide, batch, claimed, next_counters, batch_sources,
            )
            if op is None:
                continue
            claimed[op.destination] = src
            if op.backup is not None:
                claimed[op.backup] = src
            batch.operations.append(op)

        return batch

    def resume(
        self,
        batch: Batch,
        decisions: dict[Path, "ConflictStrategy | str"],
    ) -> Batch:
        """
        Re-resolve a batch, answering its pending Ask conflicts.

        Args:
            batch: A batch with pending decisions.
            decisions: Source path -> strategy. Sources not listed stay pending.
        """
        answers = {Path(k): ConflictStrategy.parse(v) for k, v in decisions.items()}

        def lookup(pending: PendingDecision):
            return answers.get(pending.intent.source.path)

        planner = Planner(self.root, batch.strategy, lookup, batch.command, self.hash_func)
        return planner.resolve(batch.intents, batch.strategy, batch_id=batch.batch_id)

    def _resolve_one(
        self,
        intent: Intent,
        dest: Path,
        strategy: ConflictStrategy,
        decide: Decide | None,
        batch: Batch,
        claimed: dict[Path, Path],
        next_counters: dict[Path, int],
        batch_sources: frozenset[Path] | set[Path] = frozenset(),
    ) -> PlannedOperation | None:
        src = intent.source.path

        def op(destination: Path, replace: bool = False, backup: Path | None = None, used=strategy):
            return PlannedOperation(
                source=src,
                destination=destination,
                kind=intent.kind,
                strategy=used,
                batch_id=batch.batch_id,
                replace=replace,
                backup=backup,
                reason=intent.reason,
            )

        # Claimed by, or the source of, another operation in this batch
        in_batch = dest in claimed or dest in batch_sources
        if not in_batch and not _exists(dest):
            return op(dest)

        if strategy is ConflictStrategy.ASK:
            pending = PendingDecision(intent=intent, existing=dest)
            choice = decide(pending) if decide is not None else None
            if choice is None:
                batch.pending.append(pending)
                batch.dropped.append((src, "Awaiting decision"))
                return None
            strategy = ConflictStrategy.parse(choice)
            if strategy is ConflictStrategy.ASK:
                strategy = ConflictStrategy.SKIP

        if strategy is ConflictStrategy.SKIP:
            batch.dropped.append((src, f"Destination exists: {dest}"))
            return None

        if strategy is ConflictStrategy.DEDUPLICATE:
            existing = claimed.get(dest, dest)
            if self._same_content(src, existing):
                batch.dropped.append((src, "Identical file already at destination"))
                return None

        # Batch claims and batch sources are never replaced
        if in_batch or strategy in (ConflictStrategy.RENAME, ConflictStrategy.DEDUPLICATE):
            renamed = self._unique_path(dest, claimed, next_counters)
            if renamed is None:
                batch.dropped.append((src, "No free name for destination"))
                return None
            return op(renamed, used=strategy)

        if strategy is ConflictStrategy.OVERWRITE:
            return op(dest, replace=True, used=strategy)

        # Backup
        backup = self._unique_path(dest.with_name(dest.name + ".bak"), claimed, next_counters, check_base=True)
        if backup is None:
            batch.dropped.append((src, "No free name for backup"))
            return None
        return op(dest, replace=True, backup=backup, used=strategy)

    def _same_content(self, a: Path, b: Path) -> bool:
        try:
            return self.hash_func(a) == self.hash_func(b)
        except OSError as e:
            print(f"[WARN] Could not compare {a} with {b}: {e}")
            return False

    @staticmethod
    def _unique_path(
        path: Path,
        claimed: dict[Path, Path],
        next_counters: dict[Path, int],
        check_base: bool = False,
    ) -> Path | None:
        """Lowest free `stem_N.ext` (or `path` itself when check_base and free)."""
        if check_base and path not in claimed and not _exists(path):
            return path
        stem, suffix = path.stem, path.suffix
        counter = next_counters.get(path, 1)
        while counter <= MAX_RENAME_ATTEMPTS:
            candidate = path.with_name(f"{stem}_{counter}{suffix}")
            if candidate not in claimed and not _exists(candidate):
                # Names below counter are taken for the rest of this batch
                next_counters[path] = counter + 1
                return candidate
            counter += 1
        print(f"[WARNING] Collision limit reached for {path}. Skipping.")
        return None
