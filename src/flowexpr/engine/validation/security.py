"""
Security layer.

    BlockedPatternValidator  configured and always-on blocked patterns (errors,
                             positioned at the match) plus forbidden members
    InjectionValidator       script, SQL and URL injection heuristics and
                             escaped or encoded content (warnings)

The blocked-pattern check is the same policy the evaluator applies before
running anything, so a template that passes here is not rejected for a
pattern at evaluation time.
"""

from __future__ import annotations

import re

from ..resolver.expression_parser import iter_nodes
from ..resolver.security_rules import FORBIDDEN_MEMBERS, SecurityPolicy
from ..results import ValidationIssue
from .base import BaseValidator, ValidationContext, node_span

SCRIPT_INJECTION_RE = re.compile(r"<script|</script|javascript:|vbscript:|data:text/html", re.IGNORECASE)
SQL_INJECTION_RES = (
    re.compile(r"union\s+select", re.IGNORECASE),
    re.compile(r"drop\s+table", re.IGNORECASE),
    re.compile(r"delete\s+from", re.IGNORECASE),
    re.compile(r"insert\s+into", re.IGNORECASE),
    re.compile(r"update\s+\S+\s+set\s", re.IGNORECASE),
    re.compile(r"/\*.*\*/"),
)
URL_INJECTION_RE = re.compile(r"file://|ftp://|data:|blob:", re.IGNORECASE)
ENCODED_CONTENT_RES = (
    re.compile(r"%3c%73%63%72%69%70%74", re.IGNORECASE),
    re.compile(r"\\x[0-9a-f]{2}", re.IGNORECASE),
    re.compile(r"\\u[0-9a-f]{4}", re.IGNORECASE),
    re.compile(r"&#x[0-9a-f]+;", re.IGNORECASE),
)


class BlockedPatternValidator(BaseValidator):
    name = "DangerousCode"
    layer = "security"

    def __init__(self, policy: SecurityPolicy):
        self.policy = policy

    def validate(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        if context.parsed is None:
            # Delimiters do not balance: scan the raw text instead
            for match in self.policy.iter_blocked_matches(context.template):
                issues.append(self._blocked(context, match.name, match.start, match.end))
            return issues

        for expression in context.expressions():
            seen: set[tuple[str, int]] = set()
            for match in self.policy.iter_blocked_matches(expression.cleaned):
                if (match.name, match.start) in seen:
                    continue
                seen.add((match.name, match.start))
                start, end = node_span(expression, match.start, match.end)
                issues.append(self._blocked(context, match.name, start, end))

            if expression.tree is None:
                continue
            for node in iter_nodes(expression.tree):
                member = None
                if node.kind in ("member", "optional_member"):
                    member = node.value
                elif node.kind in ("index", "optional_index") and node.children[1].kind == "string":
                    member = node.children[1].value
                if member in FORBIDDEN_MEMBERS or (isinstance(member, str) and member.startswith("__")):
                    start, end = node_span(expression, node.start, node.end)
                    issues.append(
                        self.error(
                            context,
                            "FORBIDDEN_MEMBER",
                            f"Access to '{member}' is not allowed",
                            start,
                            end,
                        )
                    )
        return issues

    def _blocked(self, context: ValidationContext, name: str, start: int, end: int) -> ValidationIssue:
        return self.error(
            context,
            "BLOCKED_PATTERN",
            f"Expression contains blocked pattern '{name}'",
            start,
            end,
            suggestion="This construct is not allowed in expressions for security reasons",
        )


class InjectionValidator(BaseValidator):
    name = "CodeInjection"
    layer = "security"

    def validate(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for expression in context.expressions():
            text = expression.cleaned
            span = (expression.start, expression.end)
            if SCRIPT_INJECTION_RE.search(text):
                issues.append(
                    self.warning(context, "SCRIPT_INJECTION", "Expression contains script markup or a script URL", *span)
                )
            if any(pattern.search(text) for pattern in SQL_INJECTION_RES):
                issues.append(
                    self.warning(context, "SQL_INJECTION_PATTERN", "Expression contains an SQL injection pattern", *span)
                )
            if URL_INJECTION_RE.search(text):
                issues.append(
                    self.warning(context, "URL_INJECTION", "Expression contains a local or inline URL scheme", *span)
                )
            if any(pattern.search(text) for pattern in ENCODED_CONTENT_RES):
                issues.append(
                    self.warning(
                        context,
                        "ENCODED_CONTENT",
                        "Expression contains escaped or encoded content that may hide its meaning",
                        *span,
                    )
                )
        return issues
