"""
Data model shared by the scanner, planner, executor and journal.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any


class Category(str, Enum):
    """Fixed set of file categories. The value doubles as the folder name."""
    IMAGES = "Images"
    DOCUMENTS = "Documents"
    VIDEOS = "Videos"
    AUDIO = "Audio"
    ARCHIVES = "Archives"
    CODE = "Code"
    DATA = "Data"
    OTHER = "Other"


class OperationKind(str, Enum):
    MOVE = "move"
    COPY = "copy"
    DELETE = "delete"


class ConflictStrategy(str, Enum):
    """What to do when a planned destination is already taken."""
    SKIP = "skip"
    OVERWRITE = "overwrite"
    RENAME = "rename"
    ASK = "ask"
    DEDUPLICATE = "deduplicate"
    BACKUP = "backup"

    @classmethod
    def parse(cls, value: "str | ConflictStrategy") -> "ConflictStrategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown conflict strategy '{value}' (expected one of: {choices})")


@dataclass(frozen=True)
class FileDescriptor:
    """
    Snapshot of a file taken at scan time.

    Not re-validated before execution: if the file changes in between, the
    snapshot is simply stale.
    """
    path: Path
    size: int
    modified: datetime
    category: Category
    ext: str  # lowercase, without the dot; "" when the file has none
    mime: str | None = None
    metadata: dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def stem(self) -> str:
        return self.path.stem

    def with_metadata(self, metadata: dict[str, str]) -> "FileDescriptor":
        return replace(self, metadata=dict(metadata))


@dataclass
class Rule:
    """
    A custom organization rule.

    `destination` is a template; see planning.templates for the variables.
    `order` is the declaration index and breaks priority ties.
    """
    name: str
    pattern: str
    destination: str
    priority: int = 0
    order: int = 0

    @classmethod
    def from_dict(cls, data: dict, order: int = 0) -> "Rule":
        """Create a Rule from a parsed rule-source mapping."""
        return cls(
            name=data.get("name", f"Rule {order + 1}"),
            pattern=data.get("pattern", "*"),
            destination=data.get("destination", ""),
            priority=int(data.get("priority", 0)),
            order=order,
        )


@dataclass(frozen=True)
class Intent:
    """A requested operation before conflict resolution."""
    source: FileDescriptor
    destination: PurePosixPath | None  # relative to the organize root; None for deletes
    kind: OperationKind
    reason: str = ""


@dataclass
class PendingDecision:
    """An Ask conflict waiting for the caller to choose a strategy."""
    intent: Intent
    existing: Path


@dataclass
class PlannedOperation:
    source: Path
    destination: Path | None
    kind: OperationKind
    strategy: ConflictStrategy
    batch_id: str
    replace: bool = False
    backup: Path | None = None
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "source": str(self.source),
            "destination": str(self.destination) if self.destination else None,
            "kind": self.kind.value,
            "strategy": self.strategy.value,
            "replace": self.replace,
            "backup": str(self.backup) if self.backup else None,
            "reason": self.reason,
        }


@dataclass
class Batch:
    """
    An ordered set of planned operations, executed and undone as one unit.
    """
    batch_id: str
    command: str
    root: Path
    strategy: ConflictStrategy
    operations: list[PlannedOperation] = field(default_factory=list)
    intents: list[Intent] = field(default_factory=list)
    dropped: list[tuple[Path, str]] = field(default_factory=list)
    pending: list[PendingDecision] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self):
        return iter(self.operations)

    @property
    def undoable(self) -> bool:
        return all(op.kind is not OperationKind.DELETE for op in self.operations)

    @property
    def total_size(self) -> int:
        sizes = {i.source.path: i.source.size for i in self.intents}
        return sum(sizes.get(op.source, 0) for op in self.operations)


@dataclass
class DuplicateGroup:
    """
    Files with identical content (or perceptually similar images).

    The first member is canonical and is kept; the others are deletion
    candidates.
    """
    fingerprint: str
    size: int  # total bytes of all members
    members: list[Path]
    canonical_size: int = 0
    distance: int | None = None  # similarity groups: max distance from the canonical member

    @property
    def canonical(self) -> Path:
        return self.members[0]

    @property
    def duplicates(self) -> list[Path]:
        return self.members[1:]

    @property
    def wasted_space(self) -> int:
        """Bytes recovered by removing every non-canonical member."""
        if len(self.members) < 2:
            return 0
        return self.size - self.canonical_size


@dataclass
class CategoryStats:
    name: str
    count: int = 0
    size: int = 0


@dataclass
class DirectoryStats:
    """Counts and sizes for a scanned tree, plus its largest and oldest files."""
    total_files: int = 0
    total_size: int = 0
    categories: list[CategoryStats] = field(default_factory=list)  # most files first
    largest: list[FileDescriptor] = field(default_factory=list)
    oldest: list[FileDescriptor] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_files": self.total_files,
            "total_size": self.total_size,
            "categories": [{"name": c.name, "count": c.count, "size": c.size} for c in self.categories],
        }


@dataclass
class JournalRecord:
    """One executed file mutation as read back from the journal."""
    seq: int
    source: Path
    destination: Path | None
    kind: OperationKind
    backup: Path | None = None
    undone: bool = False


@dataclass
class JournalEntry:
    batch_id: str
    timestamp: datetime
    command: str
    undoable: bool = True
    records: list[JournalRecord] = field(default_factory=list)

    @property
    def undone(self) -> bool:
        return bool(self.records) and all(r.undone for r in self.records)

    @property
    def pending_records(self) -> list[JournalRecord]:
        return [r for r in self.records if not r.undone]


@dataclass
class ExecutionReport:
    batch_id: str
    succeeded: list[PlannedOperation] = field(default_factory=list)
    skipped: list[tuple[Path, str]] = field(default_factory=list)
    failed: list[tuple[Path, str]] = field(default_factory=list)
    cancelled: bool = False
    cleaned_folders: list[str] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "succeeded": len(self.succeeded),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            **self.counts(),
            "cancelled": self.cancelled,
            "failures": [{"path": str(p), "reason": r} for p, r in self.failed],
            "skips": [{"path": str(p), "reason": r} for p, r in self.skipped],
        }


@dataclass
class UndoReport:
    batch_id: str | None
    command: str = ""
    restored: list[Path] = field(default_factory=list)
    skipped: list[tuple[Path, str]] = field(default_factory=list)
    conflicts: list[tuple[Path, str]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.batch_id is not None and not self.conflicts
