"""
Batch validation.

Checks that a batch is safe to execute before anything touches the disk.
"""

from pathlib import Path

from ..models import Batch, OperationKind
from ..utils import is_protected_folder


def _inside_bundle(path: Path, root: Path) -> bool:
    try:
        parts = path.relative_to(root).parts[:-1]
    except ValueError:
        return False
    return any(is_protected_folder(part) for part in parts)


def validate_batch(batch: Batch, verbose: bool = True) -> Batch:
    """
    Validate a batch before execution.

    Checks for:
    - Destination collisions (two operations, or an operation and a backup)
    - Destinations outside the organize root
    - Destinations inside macOS bundles
    - Sources that no longer exist

    Operations that fail a soft check are moved to batch.dropped.

    Args:
        batch: The batch to validate; modified in place.
        verbose: Print warnings.

    Returns:
        The same batch.

    Raises:
        RuntimeError: If the organize root is missing.
        ValueError: On destination collisions or escaping destinations.
    """
    root = batch.root.resolve()
    if not root.exists():
        raise RuntimeError(f"Root directory not found: {root}\nIs the drive connected?")

    warnings = []
    collisions = []
    escapes = []
    valid = []
    destinations: dict[Path, Path] = {}  # destination -> source

    for op in batch.operations:
        if op.kind is not OperationKind.DELETE:
            targets = [op.destination] + ([op.backup] if op.backup else [])
            for target in targets:
                resolved = target.resolve()
                if resolved != root and root not in resolved.parents:
                    escapes.append(f"'{op.source}' targets '{target}' outside {root}")
                if target in destinations and destinations[target] != op.source:
                    collisions.append(
                        f"Collision: '{destinations[target]}' and '{op.source}' both target '{target}'"
                    )
                destinations[target] = op.source

            if _inside_bundle(op.destination, batch.root):
                warnings.append((op.source, f"Skipping - destination inside bundle: {op.destination}"))
                continue

        if not op.source.exists():
            warnings.append((op.source, "Skipping - file not found"))
            continue

        valid.append(op)

    # Collisions and escapes are hard failures
    if collisions or escapes:
        problems = collisions + escapes
        raise ValueError("Batch has invalid destinations:\n" + "\n".join(f"  - {p}" for p in problems))

    if warnings:
        batch.dropped.extend(warnings)
        if verbose:
            print(f"[WARN] Skipped {len(warnings)} operations:")
            for path, reason in warnings[:5]:
                print(f"       - {path}: {reason}")
            if len(warnings) > 5:
                print(f"       ... and {len(warnings) - 5} more")

    batch.operations = valid
    return batch
