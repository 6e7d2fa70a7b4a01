"""
Business layer: host-registered rules.

A rule flags expressions that match its regex or for which its predicate
returns True:

    BusinessRule(
        code="NO_ENV_SECRETS",
        message="Secrets must come from credentials, not $env",
        pattern=r"\\$env\\.\\w*(SECRET|TOKEN)",
    )
    BusinessRule(
        code="PREFER_INPUT",
        message="Prefer $input.item over $json in new workflows",
        check=lambda expression: "$json" in expression,
        severity="warning",
    )
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field

from ..results import Severity, ValidationIssue
from .base import BaseValidator, ValidationContext, node_span


@dataclass(frozen=True)
class BusinessRule:
    code: str
    message: str
    pattern: str | None = None
    check: Callable[[str], bool] | None = None
    severity: Severity = "error"
    suggestion: str | None = None
    _regex: re.Pattern[str] | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if (self.pattern is None) == (self.check is None):
            raise ValueError(f"Business rule {self.code} needs exactly one of pattern or check")
        if self.pattern is not None:
            object.__setattr__(self, "_regex", re.compile(self.pattern))

    def find(self, expression: str) -> tuple[int, int] | None:
        """[start, end) of the flagged text within the expression, or None."""
        if self._regex is not None:
            match = self._regex.search(expression)
            return (match.start(), match.end()) if match else None
        assert self.check is not None
        return (0, len(expression)) if self.check(expression) else None


class BusinessRuleValidator(BaseValidator):
    name = "BusinessRules"
    layer = "business"

    def __init__(self, rules: list[BusinessRule] | None = None):
        self.rules: list[BusinessRule] = list(rules or [])

    def add_rule(self, rule: BusinessRule) -> None:
        self.rules.append(rule)

    def validate(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for expression in context.expressions():
            for rule in self.rules:
                found = rule.find(expression.cleaned)
                if found is None:
                    continue
                start, end = node_span(expression, *found)
                issues.append(
                    self.issue(context, rule.severity, rule.code, rule.message, start, end, rule.suggestion)
                )
        return issues
