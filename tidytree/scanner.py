"""
Directory scanning.

Walks one or more roots and yields a FileDescriptor for every regular file
that passes the active filters.
"""

import fnmatch
import os
import re
import stat as stat_module
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator

from .classifier import Classifier
from .errors import ConfigError
from .models import FileDescriptor
from .utils import is_protected_folder

IGNORE_FILE = ".tidyignore"

# Folders to completely ignore
IGNORE_FOLDERS = {
    'System Volume Information', '$RECYCLE.BIN', '.fseventsd', '.Spotlight-V100', '.Trashes'
}

# Extensions whose contents can be searched as text
CONTENT_EXTENSIONS = {"txt", "md", "log", "csv", "json", "xml"}


def matches_mime(mime: str | None, pattern: str) -> bool:
    """Match a MIME type against "type/subtype" or a "type/*" wildcard."""
    if not mime:
        return False
    pattern = pattern.strip().lower()
    mime = mime.lower()
    if pattern.endswith("/*"):
        return mime.startswith(pattern[:-1])
    return mime == pattern


def matches_content(path: Path, needle: str) -> bool:
    """
    Case-insensitive substring search in a text-like file.

    Files with other extensions, or that cannot be read, never match.
    """
    if path.suffix[1:].lower() not in CONTENT_EXTENSIONS:
        return False
    try:
        text = path.read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return False
    return needle.lower() in text.lower()


def load_ignore_patterns(directory: Path) -> list[str]:
    """
    Read glob patterns from a .tidyignore file in directory.

    Blank lines and lines starting with '#' are skipped. A missing or
    unreadable file yields no patterns.
    """
    ignore_file = Path(directory) / IGNORE_FILE
    if not ignore_file.is_file():
        return []
    try:
        lines = ignore_file.read_text(encoding="utf-8").splitlines()
    except OSError:
        return []
    patterns = []
    for line in lines:
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


@dataclass
class ScanFilters:
    """
    Inclusion filters. Every filter that is set must match (AND logic).

    Name filters are case-insensitive unless case_sensitive is set:
    name_startswith/name_endswith test the stem, name_contains the full name.
    """
    min_size: int | None = None
    max_size: int | None = None
    after: datetime | None = None
    before: datetime | None = None
    name_startswith: str | None = None
    name_endswith: str | None = None
    name_contains: str | None = None
    regex: str | None = None
    mime: str | None = None
    content: str | None = None
    ignore: list[str] = field(default_factory=list)
    case_sensitive: bool = False

    def __post_init__(self):
        self._regex = None
        if self.regex:
            try:
                self._regex = re.compile(self.regex)
            except re.error as e:
                raise ConfigError(f"Invalid regex '{self.regex}': {e}")

    def _fold(self, text: str) -> str:
        return text if self.case_sensitive else text.lower()

    def matches_name(self, name: str) -> bool:
        full = self._fold(name)
        stem = self._fold(Path(name).stem)
        if self.name_startswith and not stem.startswith(self._fold(self.name_startswith)):
            return False
        if self.name_endswith and not stem.endswith(self._fold(self.name_endswith)):
            return False
        if self.name_contains and self._fold(self.name_contains) not in full:
            return False
        return True

    def matches(self, descriptor: FileDescriptor) -> bool:
        """Check a descriptor against every filter except ignore patterns."""
        if self.min_size is not None and descriptor.size < self.min_size:
            return False
        if self.max_size is not None and descriptor.size > self.max_size:
            return False
        if self.after is not None and descriptor.modified < self.after:
            return False
        if self.before is not None and descriptor.modified > self.before:
            return False
        if not self.matches_name(descriptor.name):
            return False
        if self._regex is not None and not self._regex.search(descriptor.name):
            return False
        if self.mime and not matches_mime(descriptor.mime, self.mime):
            return False
        # Content last: it is the only filter that reads the file
        if self.content and not matches_content(descriptor.path, self.content):
            return False
        return True


def _is_ignored(patterns: list[str], name: str, rel_path: str) -> bool:
    for pattern in patterns:
        pattern = pattern.rstrip("/")
        if fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(rel_path, pattern):
            return True
    return False


class FileScan:
    """
    A lazy, restartable scan over one or more roots.

    Each iteration walks the filesystem again. Unreadable entries are
    recorded on `errors` as (path, reason) and never abort the scan.

    Args:
        roots: A root path or an iterable of root paths.
        filters: Inclusion filters.
        recursive: Descend into subdirectories.
        max_depth: Deepest file level to yield (files directly in a root are depth 1).
        include_hidden: Include dot-files and dot-directories.
        follow_symlinks: Follow symlinked directories and files.
        classifier: Classifier used to build descriptors.
        progress: Print scan progress and warnings.
    """

    def __init__(
        self,
        roots: Path | str | Iterable[Path | str],
        filters: ScanFilters | None = None,
        recursive: bool = True,
        max_depth: int | None = None,
        include_hidden: bool = False,
        follow_symlinks: bool = False,
        classifier: Classifier | None = None,
        progress: bool = True,
    ):
        if isinstance(roots, (str, Path)):
            roots = [roots]
        self.roots = [Path(r) for r in roots]
        self.filters = filters or ScanFilters()
        self.max_depth = max_depth
        if not recursive:
            self.max_depth = 1 if max_depth is None else min(max_depth, 1)
        self.include_hidden = include_hidden
        self.follow_symlinks = follow_symlinks
        self.classifier = classifier or Classifier()
        self.progress = progress
        self.errors: list[tuple[Path, str]] = []
        self.skipped_by_filter = 0

    def __iter__(self) -> Iterator[FileDescriptor]:
        self.errors = []
        self.skipped_by_filter = 0
        scanned_count = 0

        for root in self.roots:
            for descriptor in self._scan_root(root):
                scanned_count += 1
                if self.progress and scanned_count % 5000 == 0:
                    print(f"[SCAN] {scanned_count} files...", end='\r')
                yield descriptor

        if self.progress:
            if self.skipped_by_filter > 0:
                print(f"[INFO] Skipped {self.skipped_by_filter} files by filter")
            if self.errors:
                print(f"[WARN] Skipped {len(self.errors)} unreadable entries:")
                for path, reason in self.errors[:5]:
                    print(f"       - {path}: {reason}")
                if len(self.errors) > 5:
                    print(f"       ... and {len(self.errors) - 5} more")

    def _hidden(self, name: str) -> bool:
        return not self.include_hidden and name.startswith('.')

    def _on_walk_error(self, error: OSError):
        self.errors.append((Path(error.filename or ""), error.strerror or str(error)))

    def _scan_root(self, root: Path) -> Iterator[FileDescriptor]:
        root = root.expanduser().resolve()
        if not root.exists():
            self.errors.append((root, "Path does not exist"))
            return
        if root.is_file():
            descriptor = self._describe(root)
            if descriptor is not None:
                yield descriptor
            return

        patterns = load_ignore_patterns(root) + list(self.filters.ignore)

        for dirpath, dirnames, filenames in os.walk(
            root, onerror=self._on_walk_error, followlinks=self.follow_symlinks
        ):
            current = Path(dirpath)
            rel_dir = current.relative_to(root)
            depth = len(rel_dir.parts)

            # 1. Prune directories: ignored, hidden, bundles, too deep
            if self.max_depth is not None and depth + 2 > self.max_depth:
                dirnames[:] = []
            kept = []
            for d in sorted(dirnames):
                if d in IGNORE_FOLDERS or self._hidden(d) or is_protected_folder(d):
                    continue
                if _is_ignored(patterns, d, (rel_dir / d).as_posix()):
                    continue
                kept.append(d)
            dirnames[:] = kept

            if self.max_depth is not None and depth + 1 > self.max_depth:
                continue

            # 2. Process files
            for filename in sorted(filenames):
                if depth == 0 and filename == IGNORE_FILE:
                    continue
                if self._hidden(filename):
                    continue
                if _is_ignored(patterns, filename, (rel_dir / filename).as_posix()):
                    continue

                filepath = current / filename
                if not self.follow_symlinks and filepath.is_symlink():
                    continue

                descriptor = self._describe(filepath)
                if descriptor is not None:
                    yield descriptor

    def _describe(self, filepath: Path) -> FileDescriptor | None:
        try:
            st = filepath.stat()
        except (PermissionError, OSError) as e:
            self.errors.append((filepath, e.strerror or str(e)))
            return None
        if not stat_module.S_ISREG(st.st_mode):
            return None

        descriptor = self.classifier.describe(filepath, st)
        if not self.filters.matches(descriptor):
            self.skipped_by_filter += 1
            return None
        return descriptor


def scan_directory(
    root: Path | Iterable[Path],
    filters: ScanFilters | None = None,
    **options,
) -> FileScan:
    """
    Scan one or more directories.

    Args:
        root: The root directory (or directories) to scan.
        filters: Inclusion filters.
        **options: Passed through to FileScan.

    Returns:
        A re-iterable FileScan of FileDescriptors.
    """
    return FileScan(root, filters=filters, **options)
