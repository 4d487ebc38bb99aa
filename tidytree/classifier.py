"""
File classification and optional metadata extraction.

Category comes from a static extension table. Metadata (EXIF for images,
tags for audio) is read by a provider chosen from the category alone.
"""

import mimetypes
import os
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Iterable

import mutagen
from PIL import Image
from PIL.ExifTags import TAGS
from tqdm import tqdm

from .models import Category, FileDescriptor

EXTENSION_MAP: dict[Category, set[str]] = {
    Category.IMAGES: {
        "jpg", "jpeg", "png", "gif", "bmp", "svg", "webp", "ico", "tiff", "heic", "raw",
    },
    Category.DOCUMENTS: {
        "pdf", "doc", "docx", "txt", "rtf", "odt", "xls", "xlsx", "ppt", "pptx", "csv", "md", "epub",
    },
    Category.VIDEOS: {
        "mp4", "avi", "mov", "mkv", "wmv", "flv", "webm", "m4v", "mpeg", "mpg",
    },
    Category.AUDIO: {
        "mp3", "wav", "flac", "aac", "ogg", "wma", "m4a", "opus",
    },
    Category.ARCHIVES: {
        "zip", "tar", "gz", "rar", "7z", "bz2", "xz", "tgz", "dmg", "iso",
    },
    Category.CODE: {
        "rs", "py", "js", "ts", "go", "java", "c", "cpp", "h", "hpp", "cs", "rb", "php",
        "swift", "kt", "scala", "html", "css", "scss", "vue", "jsx", "tsx",
        "sh", "bash", "zsh", "fish",
    },
    Category.DATA: {
        "json", "xml", "yaml", "yml", "toml", "sql", "db", "sqlite",
    },
}

_CATEGORY_BY_EXT = {ext: cat for cat, exts in EXTENSION_MAP.items() for ext in exts}

# Characters that cannot appear in a folder name on common filesystems
_UNSAFE_CHARS = '/\\:*?<>|'

EXIF_IFD = 0x8769


def classify(ext: str) -> Category:
    """Map an extension (with or without the dot, any case) to a Category."""
    return _CATEGORY_BY_EXT.get(ext.lstrip(".").lower(), Category.OTHER)


def guess_mime(path: Path) -> str | None:
    mime, _ = mimetypes.guess_type(path.name)
    return mime


def _clean(value) -> str:
    text = str(value).replace("\x00", "").strip()
    for ch in _UNSAFE_CHARS:
        text = text.replace(ch, "_")
    return text


class MetadataProvider(ABC):
    """Reads a small key-value bag of metadata for one file."""

    #: Template variables this provider can fill
    keys: tuple[str, ...] = ()

    @abstractmethod
    def read(self, path: Path) -> dict[str, str]:
        """Return metadata, or an empty dict when nothing can be read."""


class NoMetadata(MetadataProvider):
    def read(self, path: Path) -> dict[str, str]:
        return {}


class ExifProvider(MetadataProvider):
    """Camera model and date taken from EXIF, via Pillow."""

    keys = ("camera", "date_taken", "taken.year", "taken.month")

    def read(self, path: Path) -> dict[str, str]:
        try:
            with Image.open(path) as img:
                exif = img.getexif()
                tags = {TAGS.get(tag_id, tag_id): value for tag_id, value in exif.items()}
                # DateTimeOriginal lives in the Exif sub-IFD
                try:
                    tags.update({TAGS.get(k, k): v for k, v in exif.get_ifd(EXIF_IFD).items()})
                except (KeyError, AttributeError):
                    pass
        except (OSError, ValueError, SyntaxError):
            return {}

        result: dict[str, str] = {}

        camera = tags.get("Model") or tags.get("Make")
        if camera:
            camera = _clean(camera)
            if camera:
                result["camera"] = camera

        taken = self._parse_date(tags.get("DateTimeOriginal")) or self._parse_date(tags.get("DateTime"))
        if taken:
            result["date_taken"] = taken.strftime("%Y-%m-%d")
            result["taken.year"] = f"{taken.year:04d}"
            result["taken.month"] = f"{taken.month:02d}"

        return result

    @staticmethod
    def _parse_date(value) -> datetime | None:
        # EXIF format is "YYYY:MM:DD HH:MM:SS"
        if not value:
            return None
        text = str(value).replace("\x00", "").strip()
        try:
            return datetime.strptime(text[:19], "%Y:%m:%d %H:%M:%S")
        except ValueError:
            return None


class AudioTagProvider(MetadataProvider):
    """Artist and album tags, via mutagen."""

    keys = ("artist", "album")

    def read(self, path: Path) -> dict[str, str]:
        try:
            audio = mutagen.File(path, easy=True)
        except (mutagen.MutagenError, OSError, ValueError):
            return {}
        if audio is None:
            return {}

        result: dict[str, str] = {}
        for key in self.keys:
            values = audio.get(key)
            if not values:
                continue
            value = values[0] if isinstance(values, (list, tuple)) else values
            value = _clean(value)
            if value:
                result[key] = value
        return result


_NO_METADATA = NoMetadata()

DEFAULT_PROVIDERS: dict[Category, MetadataProvider] = {
    Category.IMAGES: ExifProvider(),
    Category.AUDIO: AudioTagProvider(),
}

METADATA_KEYS = frozenset(k for p in DEFAULT_PROVIDERS.values() for k in p.keys)


def provider_for(category: Category) -> MetadataProvider:
    return DEFAULT_PROVIDERS.get(category, _NO_METADATA)


class Classifier:
    """
    Builds FileDescriptors and enriches them with metadata.

    Args:
        providers: Optional override of the category -> provider table.
    """

    def __init__(self, providers: dict[Category, MetadataProvider] | None = None):
        self.providers = dict(DEFAULT_PROVIDERS if providers is None else providers)

    def classify(self, ext: str) -> Category:
        return classify(ext)

    def provider_for(self, category: Category) -> MetadataProvider:
        return self.providers.get(category, _NO_METADATA)

    def describe(self, path: Path, stat: os.stat_result | None = None) -> FileDescriptor:
        """
        Snapshot a file.

        Raises:
            OSError: If the file cannot be stat'ed.
        """
        path = Path(path)
        if stat is None:
            stat = path.stat()
        ext = path.suffix[1:].lower() if path.suffix else ""
        return FileDescriptor(
            path=path,
            size=stat.st_size,
            modified=datetime.fromtimestamp(stat.st_mtime),
            category=self.classify(ext),
            ext=ext,
            mime=guess_mime(path),
        )

    def enrich(self, descriptor: FileDescriptor) -> FileDescriptor:
        """Return a copy of descriptor carrying whatever metadata its provider finds."""
        metadata = self.provider_for(descriptor.category).read(descriptor.path)
        if not metadata:
            return descriptor
        return descriptor.with_metadata(metadata)

    def enrich_all(
        self,
        descriptors: Iterable[FileDescriptor],
        workers: int = 8,
        progress: bool = True,
    ) -> list[FileDescriptor]:
        """Enrich many descriptors on a thread pool, keeping input order."""
        items = list(descriptors)
        if not items:
            return []
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = executor.map(self.enrich, items)
            if progress:
                results = tqdm(results, total=len(items), unit="file", desc="Metadata")
            return list(results)
