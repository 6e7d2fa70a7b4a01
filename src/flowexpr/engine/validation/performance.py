"""
Performance layer: static thresholds checked before anything runs.

Errors:
    TEMPLATE_TOO_LONG     template longer than max_length
    NESTING_TOO_DEEP      bracket nesting deeper than max_depth
    TOO_COMPLEX           weighted node count above max_complexity
Warnings:
    TOO_MANY_FUNCTION_CALLS, EXPENSIVE_OPERATION, NESTED_ITERATION
"""

from __future__ import annotations

from ..resolver.expression_parser import Node, call_count, iter_nodes
from ..results import ValidationIssue
from ..template_parser import ParsedExpression
from .base import BaseValidator, ValidationContext, node_span

# Literal size arguments above this are flagged
HEAVY_CALL_THRESHOLD = 100_000
SIZE_METHODS = frozenset({"repeat", "padStart", "padEnd"})
ITERATION_METHODS = frozenset(
    {"map", "filter", "find", "findIndex", "some", "every", "reduce", "forEach", "flatMap", "sort"}
)

_OPENERS = "([{"
_CLOSERS = ")]}"
_QUOTES = "'\"`"


def bracket_depth(text: str) -> int:
    """Deepest bracket nesting outside string literals."""
    deepest = level = 0
    quote: str | None = None
    escaped = False
    for char in text:
        if quote is not None:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
        elif char in _QUOTES:
            quote = char
        elif char in _OPENERS:
            level += 1
            deepest = max(deepest, level)
        elif char in _CLOSERS:
            level = max(0, level - 1)
    return deepest


class ThresholdValidator(BaseValidator):
    name = "ResourceLimit"
    layer = "performance"

    def validate(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        thresholds = context.config.validation.performance_thresholds
        if len(context.template) > thresholds.max_length:
            issues.append(
                self.error(
                    context,
                    "TEMPLATE_TOO_LONG",
                    f"Template length {len(context.template)} exceeds the limit of {thresholds.max_length}",
                    0,
                    len(context.template),
                )
            )

        for expression in context.expressions():
            span = (expression.start, expression.end)
            nesting = bracket_depth(expression.cleaned)
            if nesting > thresholds.max_depth:
                issues.append(
                    self.error(
                        context,
                        "NESTING_TOO_DEEP",
                        f"Nesting depth {nesting} exceeds the limit of {thresholds.max_depth}",
                        *span,
                        suggestion="Split the expression or compute intermediate values in earlier nodes",
                    )
                )
            if expression.complexity > thresholds.max_complexity:
                issues.append(
                    self.error(
                        context,
                        "TOO_COMPLEX",
                        f"Complexity {expression.complexity} exceeds the limit of {thresholds.max_complexity}",
                        *span,
                    )
                )
            if expression.tree is not None:
                calls = call_count(expression.tree)
                if calls > thresholds.max_function_calls:
                    issues.append(
                        self.warning(
                            context,
                            "TOO_MANY_FUNCTION_CALLS",
                            f"{calls} function calls (recommended at most {thresholds.max_function_calls})",
                            *span,
                        )
                    )
        return issues


class ExpensiveOperationValidator(BaseValidator):
    name = "ExpensiveOperation"
    layer = "performance"

    def validate(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for expression in context.expressions():
            if expression.tree is None:
                continue
            for node in iter_nodes(expression.tree):
                method = _method_name(node)
                if method in SIZE_METHODS:
                    issues.extend(self._check_size(context, expression, node, method))
                elif method in ITERATION_METHODS and _has_nested_iteration(node):
                    start, end = node_span(expression, node.start, node.end)
                    issues.append(
                        self.warning(
                            context,
                            "NESTED_ITERATION",
                            f"Nested iteration inside .{method}() grows quadratically with the input",
                            start,
                            end,
                        )
                    )
        return issues

    def _check_size(
        self,
        context: ValidationContext,
        expression: ParsedExpression,
        node: Node,
        method: str,
    ) -> list[ValidationIssue]:
        args = node.children[1:]
        if not args or args[0].kind != "number":
            return []
        size = args[0].value
        if size <= HEAVY_CALL_THRESHOLD:
            return []
        start, end = node_span(expression, node.start, node.end)
        return [
            self.warning(
                context,
                "EXPENSIVE_OPERATION",
                f".{method}({size}) builds a very large string",
                start,
                end,
                suggestion=f"Keep the size below {HEAVY_CALL_THRESHOLD}; evaluation is limited by security.maxMemory",
            )
        ]


def _method_name(node: Node) -> str | None:
    if node.kind in ("call", "optional_call"):
        callee = node.children[0]
        if callee.kind in ("member", "optional_member"):
            return callee.value
    return None


def _has_nested_iteration(node: Node) -> bool:
    """True when an iteration call's callback itself iterates."""
    for arg in node.children[1:]:
        if arg.kind != "arrow":
            continue
        for inner in iter_nodes(arg.children[0]):
            if _method_name(inner) in ITERATION_METHODS:
                return True
    return False
