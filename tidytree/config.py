"""
Settings and rule-source loading.

Settings come from environment variables (optionally from a .env file).
Rules come from a JSON file: either {"rules": [...]} or a bare list of
{name, pattern, destination, priority} objects.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigError
from .models import ConflictStrategy, Rule
from .utils import load_json

DEFAULT_HISTORY_LIMIT = 50
DEFAULT_HISTORY_DAYS = 30
DEFAULT_WORKERS = 8
DEFAULT_SIMILARITY_THRESHOLD = 5
DEFAULT_MODE = "by-type"


@dataclass
class Settings:
    home: Path
    journal_path: Path
    history_limit: int = DEFAULT_HISTORY_LIMIT
    history_days: int = DEFAULT_HISTORY_DAYS
    workers: int = DEFAULT_WORKERS
    similarity_threshold: int = DEFAULT_SIMILARITY_THRESHOLD
    conflict: ConflictStrategy = ConflictStrategy.RENAME
    mode: str = DEFAULT_MODE
    include_hidden: bool = False
    follow_symlinks: bool = False


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean, got '{raw}'")


def load_settings(env_file: Path | None = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env_file: Optional .env file; by default python-dotenv searches
            from the working directory upwards.

    Returns:
        The resolved Settings.

    Raises:
        ConfigError: If any variable has an invalid value.
    """
    load_dotenv(dotenv_path=env_file)

    home = Path(os.environ.get("TIDYTREE_HOME") or Path.home() / ".tidytree").expanduser()
    journal = os.environ.get("TIDYTREE_JOURNAL")
    journal_path = Path(journal).expanduser() if journal else home / "journal.jsonl"

    try:
        conflict = ConflictStrategy.parse(os.environ.get("TIDYTREE_CONFLICT", "rename"))
    except ValueError as e:
        raise ConfigError(str(e))

    threshold = _env_int("TIDYTREE_SIMILARITY_THRESHOLD", DEFAULT_SIMILARITY_THRESHOLD)
    if threshold > 64:
        raise ConfigError(f"TIDYTREE_SIMILARITY_THRESHOLD must be between 0 and 64, got {threshold}")

    return Settings(
        home=home,
        journal_path=journal_path,
        history_limit=_env_int("TIDYTREE_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT, minimum=1),
        history_days=_env_int("TIDYTREE_HISTORY_DAYS", DEFAULT_HISTORY_DAYS, minimum=1),
        workers=_env_int("TIDYTREE_WORKERS", DEFAULT_WORKERS, minimum=1),
        similarity_threshold=threshold,
        conflict=conflict,
        mode=os.environ.get("TIDYTREE_MODE", DEFAULT_MODE),
        include_hidden=_env_bool("TIDYTREE_INCLUDE_HIDDEN", False),
        follow_symlinks=_env_bool("TIDYTREE_FOLLOW_SYMLINKS", False),
    )


def parse_rules(data) -> list[Rule]:
    """
    Parse a rule source into Rule objects, keeping declaration order.

    Args:
        data: A list of rule mappings, or a mapping with a "rules" list.

    Raises:
        ConfigError: If the structure or a rule is invalid.
    """
    if isinstance(data, dict):
        data = data.get("rules", [])
    if not isinstance(data, list):
        raise ConfigError("Rule source must be a list of rules or an object with a 'rules' list")

    rules = []
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise ConfigError(f"Rule #{i + 1} is not an object")
        for key in ("pattern", "destination"):
            if not item.get(key):
                raise ConfigError(f"Rule #{i + 1} is missing '{key}'")
        try:
            rules.append(Rule.from_dict(item, order=i))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Rule #{i + 1} is invalid: {e}")
    return rules


def load_rules(path: Path) -> list[Rule]:
    """Load rules from a JSON file."""
    try:
        data = load_json(path)
    except OSError as e:
        raise ConfigError(f"Failed to read rules file {path}: {e}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse rules file {path}: {e}")
    return parse_rules(data)
