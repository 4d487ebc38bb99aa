"""
Exception types for tidytree.

Per-file I/O problems are never raised out of a batch; they are recorded in
reports. The exceptions here cover the fatal cases.
"""


class TidyTreeError(Exception):
    """Base error for the project."""


class ConfigError(TidyTreeError):
    """Invalid settings or rule source."""


class TemplateError(ConfigError):
    """Malformed destination template (unknown variable, bad braces, absolute path)."""


class JournalError(TidyTreeError):
    """The journal could not be read or written."""


class JournalLockedError(JournalError):
    """Another process holds the journal."""
