"""
Rule-based destination resolution.

Custom rules are tried first, highest priority first (ties keep declaration
order); the first rule whose glob pattern matches the file name decides the
destination. Files no rule matches fall through to the built-in mode or
template.
"""

import fnmatch
from datetime import datetime
from pathlib import PurePosixPath
from typing import Iterable

from ..errors import TemplateError
from ..models import FileDescriptor, Rule
from .templates import Template, resolve_template, variables_for


class RuleSet:
    """
    Custom rules sorted for evaluation, with compiled templates.

    Raises:
        TemplateError: If any rule's destination is malformed.
    """

    def __init__(self, rules: Iterable[Rule] = ()):
        ordered = sorted(rules, key=lambda r: (-r.priority, r.order))
        self.rules: list[tuple[Rule, Template]] = []
        for rule in ordered:
            try:
                self.rules.append((rule, Template(rule.destination)))
            except TemplateError as e:
                raise TemplateError(f"Rule '{rule.name}': {e}")

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    @property
    def uses_metadata(self) -> bool:
        return any(t.uses_metadata for _, t in self.rules)

    def match(self, descriptor: FileDescriptor) -> tuple[Rule, Template] | None:
        """Return the first rule whose pattern matches the file name (case-insensitive)."""
        name = descriptor.name.lower()
        for rule, template in self.rules:
            if fnmatch.fnmatchcase(name, rule.pattern.lower()):
                return rule, template
        return None


class DestinationResolver:
    """
    Maps a FileDescriptor to exactly one destination relative to the root.

    Args:
        rules: Custom rules, tried first.
        mode: Built-in mode, preset name, or template string used when no rule matches.
        now: Invocation time for the {now.*} variables.
    """

    def __init__(
        self,
        rules: Iterable[Rule] | RuleSet = (),
        mode: str = "by-type",
        now: datetime | None = None,
    ):
        self.rules = rules if isinstance(rules, RuleSet) else RuleSet(rules)
        self.template = resolve_template(mode)
        self.now = now or datetime.now()

    @property
    def uses_metadata(self) -> bool:
        return self.rules.uses_metadata or self.template.uses_metadata

    def destination(self, descriptor: FileDescriptor) -> tuple[PurePosixPath, str]:
        """
        Returns:
            (relative destination, reason) where reason names the rule or template used.
        """
        values = variables_for(descriptor, self.now)
        matched = self.rules.match(descriptor)
        if matched is not None:
            rule, template = matched
            return template.render(values, descriptor.name), rule.name
        return self.template.render(values, descriptor.name), self.template.source
