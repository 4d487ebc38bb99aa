"""
Exact duplicate and similar-image detection.

Exact duplicates are found by bucketing on size, then on a hash of the
first 64 KiB, and only then hashing whole files (SHA-256) in buckets that
still hold two or more files. Similar images are grouped by the
Hamming distance between 64-bit perceptual hashes.
"""

import hashlib
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

import imagehash
from PIL import Image
from tqdm import tqdm

from .classifier import Classifier
from .models import DuplicateGroup, FileDescriptor, Intent, OperationKind

CHUNK_SIZE = 64 * 1024

# Bytes read by the pre-filter hash
QUICK_HASH_SIZE = 64 * 1024

# Formats that can be fingerprinted
SIMILARITY_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "bmp", "webp", "tiff"}

MAX_DISTANCE = 64

# Per-file failures that exclude a file instead of aborting the run
_FILE_ERRORS = (OSError, ValueError, SyntaxError, Image.DecompressionBombError)


def hash_file(path: Path, chunk_size: int = CHUNK_SIZE) -> str:
    """SHA-256 of a file's contents, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def quick_hash(path: Path, limit: int = QUICK_HASH_SIZE) -> str:
    """SHA-256 of the first `limit` bytes; a cheap pre-filter before hash_file."""
    with open(path, "rb") as f:
        return hashlib.sha256(f.read(limit)).hexdigest()


def image_fingerprint(path: Path) -> int:
    """64-bit perceptual hash (pHash) of an image as an integer."""
    with Image.open(path) as img:
        return int(str(imagehash.phash(img)), 16)


def hamming(a: int, b: int) -> int:
    return bin(a ^ b).count("1")


def _unique(descriptors: Iterable[FileDescriptor]) -> list[FileDescriptor]:
    # Overlapping roots can yield the same file twice
    seen = set()
    out = []
    for d in descriptors:
        if d.path in seen:
            continue
        seen.add(d.path)
        out.append(d)
    return out


class DuplicateFinder:
    """
    Groups files by identical content or visual similarity.

    Per-file hashing/fingerprinting failures are recorded on `errors` as
    (path, reason) and the file is left out.

    Args:
        workers: Thread pool size.
        fingerprint: Function mapping an image path to a 64-bit int.
        hasher: Function mapping a path to a content hash string.
        quick_hasher: Cheap partial hash run before `hasher`.
        progress: Show tqdm progress bars.
    """

    def __init__(
        self,
        workers: int = 8,
        fingerprint: Callable[[Path], int] = image_fingerprint,
        hasher: Callable[[Path], str] = hash_file,
        quick_hasher: Callable[[Path], str] = quick_hash,
        progress: bool = True,
    ):
        self.workers = workers
        self.fingerprint = fingerprint
        self.hasher = hasher
        self.quick_hasher = quick_hasher
        self.progress = progress
        self.errors: list[tuple[Path, str]] = []

    def _map(self, func: Callable, paths: list[Path], desc: str) -> list:
        """Run func over paths on the pool; results in input order, None on failure."""
        if not paths:
            return []
        results = []
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = [executor.submit(func, p) for p in paths]
            iterator = tqdm(futures, desc=desc, unit="file") if self.progress else futures
            for path, future in zip(paths, iterator):
                try:
                    results.append(future.result())
                except _FILE_ERRORS as e:
                    self.errors.append((path, str(e)))
                    if self.progress:
                        tqdm.write(f"[WARN] {desc} failed for {path}: {e}")
                    results.append(None)
        return results

    def find_duplicates(self, descriptors: Iterable[FileDescriptor]) -> list[DuplicateGroup]:
        """
        Find byte-identical files.

        Empty files are ignored. Groups are ordered by the scan position of
        their canonical (first) member.
        """
        self.errors = []
        items = _unique(descriptors)

        by_size: dict[int, list[int]] = defaultdict(list)
        for idx, d in enumerate(items):
            if d.size > 0:
                by_size[d.size].append(idx)

        candidates = sorted(i for bucket in by_size.values() if len(bucket) >= 2 for i in bucket)
        prefixes = self._map(self.quick_hasher, [items[i].path for i in candidates], "Pre-hashing")

        by_prefix: dict[tuple[int, str], list[int]] = defaultdict(list)
        for idx, prefix in zip(candidates, prefixes):
            if prefix is not None:
                by_prefix[(items[idx].size, prefix)].append(idx)

        candidates = sorted(i for bucket in by_prefix.values() if len(bucket) >= 2 for i in bucket)
        hashes = self._map(self.hasher, [items[i].path for i in candidates], "Hashing")

        buckets: dict[tuple[int, str], list[FileDescriptor]] = {}
        for idx, digest in zip(candidates, hashes):
            if digest is None:
                continue
            d = items[idx]
            buckets.setdefault((d.size, digest), []).append(d)

        groups = []
        for (size, digest), members in buckets.items():
            if len(members) < 2:
                continue
            groups.append(DuplicateGroup(
                fingerprint=digest,
                size=size * len(members),
                members=[m.path for m in members],
                canonical_size=size,
            ))
        return groups

    def find_similar(
        self,
        descriptors: Iterable[FileDescriptor],
        threshold: int = 5,
    ) -> list[DuplicateGroup]:
        """
        Group visually similar images.

        Two images are linked when their fingerprints differ in at most
        `threshold` bits; groups are the connected components of those
        links, so raising the threshold only ever merges groups.

        Raises:
            ValueError: If threshold is outside 0..64.
        """
        if not 0 <= threshold <= MAX_DISTANCE:
            raise ValueError(f"Similarity threshold must be between 0 and {MAX_DISTANCE}, got {threshold}")

        self.errors = []
        images = [d for d in _unique(descriptors) if d.ext in SIMILARITY_EXTENSIONS]
        prints = self._map(self.fingerprint, [d.path for d in images], "Fingerprinting")
        valid = [(d, fp) for d, fp in zip(images, prints) if fp is not None]

        parent = list(range(len(valid)))

        def find(i: int) -> int:
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        for i in range(len(valid)):
            for j in range(i + 1, len(valid)):
                if hamming(valid[i][1], valid[j][1]) <= threshold:
                    ri, rj = find(i), find(j)
                    if ri != rj:
                        # Keep the earliest index as the representative
                        parent[max(ri, rj)] = min(ri, rj)

        components: dict[int, list[int]] = {}
        for i in range(len(valid)):
            components.setdefault(find(i), []).append(i)

        groups = []
        for root in sorted(components):
            members = components[root]
            if len(members) < 2:
                continue
            canonical, canonical_fp = valid[members[0]]
            groups.append(DuplicateGroup(
                fingerprint=f"{canonical_fp:016x}",
                size=sum(valid[i][0].size for i in members),
                members=[valid[i][0].path for i in members],
                canonical_size=canonical.size,
                distance=max(hamming(canonical_fp, valid[i][1]) for i in members),
            ))
        return groups


def removal_intents(
    groups: Iterable[DuplicateGroup],
    classifier: Classifier | None = None,
) -> tuple[list[Intent], list[tuple[Path, str]]]:
    """
    Delete intents for every non-canonical group member.

    Returns:
        (intents, dropped) where dropped lists members that no longer exist.
    """
    classifier = classifier or Classifier()
    intents = []
    dropped = []
    for group in groups:
        for path in group.duplicates:
            try:
                descriptor = classifier.describe(path)
            except OSError as e:
                dropped.append((path, f"Cannot read file: {e.strerror or e}"))
                continue
            intents.append(Intent(
                source=descriptor,
                destination=None,
                kind=OperationKind.DELETE,
                reason=f"Duplicate of {group.canonical}",
            ))
    return intents, dropped


def export_groups(groups: Iterable[DuplicateGroup]) -> list[dict]:
    """
    JSON-ready view of groups: hash, member count, wasted space and, per
    member, its path, size and modification time. Members that vanished
    since the search keep their path with null size and time.
    """
    exported = []
    for group in groups:
        files = []
        for path in group.members:
            try:
                st = path.stat()
            except OSError:
                files.append({"path": str(path), "size": None, "modified": None})
                continue
            files.append({
                "path": str(path),
                "size": st.st_size,
                "modified": datetime.fromtimestamp(st.st_mtime).isoformat(timespec="seconds"),
            })
        entry = {
            "hash": group.fingerprint,
            "count": len(group.members),
            "wasted_space": group.wasted_space,
            "files": files,
        }
        if group.distance is not None:
            entry["distance"] = group.distance
        exported.append(entry)
    return exported
