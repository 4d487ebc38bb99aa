"""
Planning module for tidytree.

Provides:
- Destination templates and presets
- Custom rules with priority ordering
- Conflict resolution into executable batches
- Batch validation
"""

from .validator import validate_batch
from .templates import PRESETS, VARIABLES, Template, resolve_template, variables_for
from .rules import DestinationResolver, RuleSet
from .planner import Planner, new_batch_id

__all__ = [
    "validate_batch",
    "PRESETS",
    "VARIABLES",
    "Template",
    "resolve_template",
    "variables_for",
    "DestinationResolver",
    "RuleSet",
    "Planner",
    "new_batch_id",
]
