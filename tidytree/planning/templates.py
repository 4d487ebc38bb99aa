"""
Destination templates.

A template is a path string with {variable} placeholders, for example
"{year}/{month}/{filename}". Templates are compiled once (so malformed ones
fail before anything is planned) and rendered per file into a path
relative to the organize root.

Variables:
- {filename}            - Full file name with extension
- {name}                - File name without extension
- {ext}, {extension}    - Lowercase extension without the dot
- {ext_folder}          - Uppercase extension, or NO_EXTENSION
- {category}, {type}    - Category folder (Images, Documents, ...)
- {year} {month} {day} {date} - Modification time (local, zero-padded)
- {size} {size_kb} {size_mb}  - Size in bytes / KiB / MiB
- {now.year} {now.month} {now.day} {now.date} - Time of the run
- {camera} {date_taken} {taken.year} {taken.month} - EXIF (images)
- {artist} {album}      - Audio tags

A known variable without a value renders as "Unknown". A template that
uses neither {filename} nor {name} names a directory, and the file name
is appended.
"""

import re
from datetime import datetime
from pathlib import PurePosixPath

from ..errors import TemplateError
from ..models import FileDescriptor

UNKNOWN = "Unknown"
NO_EXTENSION = "NO_EXTENSION"

FILE_VARIABLES = frozenset({"filename", "name"})

METADATA_VARIABLES = frozenset({
    "camera", "date_taken", "taken.year", "taken.month", "artist", "album",
})

VARIABLES = frozenset({
    "filename", "name", "ext", "extension", "ext_folder", "category", "type",
    "year", "month", "day", "date",
    "size", "size_kb", "size_mb",
    "now.year", "now.month", "now.day", "now.date",
}) | METADATA_VARIABLES

PRESETS = {
    "by-type": "{category}/{filename}",
    "by-date": "{year}/{month}/{filename}",
    "by-extension": "{ext_folder}/{filename}",
    "by-camera": "{camera}/{filename}",
    "by-date-taken": "{taken.year}/{taken.month}/{filename}",
    "by-artist": "{artist}/{filename}",
    "by-album": "{artist}/{album}/{filename}",
    "photos": "{taken.year}/{taken.month}/{filename}",
    "music": "{artist}/{album}/{filename}",
}

# Short aliases accepted for the by-* presets
PRESET_ALIASES = {
    "type": "by-type",
    "date": "by-date",
    "extension": "by-extension",
    "ext": "by-extension",
    "camera": "by-camera",
    "date-taken": "by-date-taken",
    "artist": "by-artist",
    "album": "by-album",
}

_RESERVED = re.compile(r'[/\\:*?"<>|\x00-\x1f]')


def sanitize(value: str) -> str:
    """Make a substituted value safe to use as (part of) one path segment."""
    value = _RESERVED.sub("_", str(value)).strip()
    if not value:
        return UNKNOWN
    if value in (".", ".."):
        return "_"
    return value


class Template:
    """
    A compiled destination template.

    Raises:
        TemplateError: On unbalanced braces, unknown variables, absolute
            templates, or '..' segments.
    """

    def __init__(self, source: str):
        self.source = source
        self.parts: list[tuple[bool, str]] = []  # (is_variable, text)
        self._parse()
        self.variables = frozenset(text for is_var, text in self.parts if is_var)
        self._check_literals()

    @classmethod
    def compile(cls, source: str) -> "Template":
        return cls(source)

    def __repr__(self) -> str:
        return f"Template({self.source!r})"

    @property
    def names_file(self) -> bool:
        return bool(self.variables & FILE_VARIABLES)

    @property
    def uses_metadata(self) -> bool:
        return bool(self.variables & METADATA_VARIABLES)

    def _parse(self):
        text = self.source
        literal = []
        i = 0
        while i < len(text):
            ch = text[i]
            if ch == "{":
                end = text.find("}", i + 1)
                if end == -1 or "{" in text[i + 1:end]:
                    raise TemplateError(f"Unbalanced '{{' in template '{self.source}'")
                name = text[i + 1:end].strip()
                if name not in VARIABLES:
                    raise TemplateError(f"Unknown variable '{{{name}}}' in template '{self.source}'")
                if literal:
                    self.parts.append((False, "".join(literal)))
                    literal = []
                self.parts.append((True, name))
                i = end + 1
            elif ch == "}":
                raise TemplateError(f"Unbalanced '}}' in template '{self.source}'")
            else:
                literal.append(ch)
                i += 1
        if literal:
            self.parts.append((False, "".join(literal)))

    def _check_literals(self):
        skeleton = "".join("x" if is_var else text for is_var, text in self.parts)
        skeleton = skeleton.replace("\\", "/")
        if skeleton.startswith("/") or re.match(r"^[A-Za-z]:", skeleton):
            raise TemplateError(f"Template must be relative: '{self.source}'")
        if ".." in skeleton.split("/"):
            raise TemplateError(f"Template may not contain '..' segments: '{self.source}'")

    def render(self, values: dict[str, str], filename: str | None = None) -> PurePosixPath:
        """
        Render to a path relative to the organize root.

        Args:
            values: Variable values; missing or empty ones become "Unknown".
            filename: Appended when the template does not name the file.
        """
        out = []
        for is_var, text in self.parts:
            if is_var:
                out.append(sanitize(values.get(text) or UNKNOWN))
            else:
                out.append(text.replace("\\", "/"))
        segments = [s.strip() for s in "".join(out).split("/")]
        segments = [s for s in segments if s and s != "."]

        if not self.names_file and filename:
            segments.append(sanitize(filename))
        if not segments:
            raise TemplateError(f"Template '{self.source}' rendered an empty path")
        return PurePosixPath(*segments)


def resolve_template(mode_or_template: str) -> Template:
    """
    Compile a built-in mode, preset, or arbitrary template string.

    Raises:
        TemplateError: If the text is neither a known mode nor a template.
    """
    key = mode_or_template.strip()
    lowered = key.lower()
    lowered = PRESET_ALIASES.get(lowered, lowered)
    if lowered in PRESETS:
        return Template(PRESETS[lowered])
    if "{" in key or "}" in key or "/" in key:
        return Template(key)
    known = ", ".join(sorted(PRESETS))
    raise TemplateError(f"Unknown mode '{mode_or_template}' (expected one of: {known}, or a template)")


def variables_for(descriptor: FileDescriptor, now: datetime | None = None) -> dict[str, str]:
    """Build the variable table for one file."""
    now = now or datetime.now()
    modified = descriptor.modified
    values = {
        "filename": descriptor.name,
        "name": descriptor.stem,
        "ext": descriptor.ext,
        "extension": descriptor.ext,
        "ext_folder": descriptor.ext.upper() or NO_EXTENSION,
        "category": descriptor.category.value,
        "type": descriptor.category.value,
        "year": f"{modified.year:04d}",
        "month": f"{modified.month:02d}",
        "day": f"{modified.day:02d}",
        "date": modified.strftime("%Y-%m-%d"),
        "size": str(descriptor.size),
        "size_kb": str(descriptor.size // 1024),
        "size_mb": str(descriptor.size // (1024 * 1024)),
        "now.year": f"{now.year:04d}",
        "now.month": f"{now.month:02d}",
        "now.day": f"{now.day:02d}",
        "now.date": now.strftime("%Y-%m-%d"),
    }
    for key in METADATA_VARIABLES:
        value = descriptor.metadata.get(key)
        if value:
            values[key] = value
    return values
