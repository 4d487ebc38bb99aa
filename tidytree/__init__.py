"""
tidytree
========

Organize files into folders by type, date, camera, artist or custom rules,
find duplicate and similar files, and undo any batch of changes from an
append-only journal.
"""

__version__ = "1.0.0"

from .classifier import Classifier, classify
from .config import Settings, load_rules, load_settings, parse_rules
from .duplicates import DuplicateFinder, hash_file
from .errors import ConfigError, JournalError, JournalLockedError, TemplateError, TidyTreeError
from .executor import Executor
from .journal import Journal
from .models import Category, ConflictStrategy, OperationKind, Rule
from .organizer import Organizer
from .scanner import FileScan, ScanFilters, scan_directory
from .utils import format_size, parse_date, parse_size

__all__ = [
    "Classifier",
    "classify",
    "Settings",
    "load_rules",
    "load_settings",
    "parse_rules",
    "DuplicateFinder",
    "hash_file",
    "ConfigError",
    "JournalError",
    "JournalLockedError",
    "TemplateError",
    "TidyTreeError",
    "Executor",
    "Journal",
    "Category",
    "ConflictStrategy",
    "OperationKind",
    "Rule",
    "Organizer",
    "FileScan",
    "ScanFilters",
    "scan_directory",
    "format_size",
    "parse_date",
    "parse_size",
]
