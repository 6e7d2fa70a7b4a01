"""
Validator base class and the state shared by every validation layer.

A validator inspects a ValidationContext and returns the issues it found.
Validators never evaluate expressions: they work from the parsed template,
the expression trees and, when one is supplied, a partial execution context.

Example:
    class NoNowValidator(BaseValidator):
        name = "NoNow"
        layer = "business"

        def validate(self, context: ValidationContext) -> list[ValidationIssue]:
            return [
                self.warning(context, "USES_NOW", "Avoid $now in cached fields", expr.start, expr.end)
                for expr in context.expressions()
                if "$now" in expr.cleaned
            ]
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..config import EngineConfig
from ..exceptions import ParseError
from ..results import Severity, ValidationIssue
from ..template_parser import ParsedExpression, ParsedTemplate, offset_to_position

if TYPE_CHECKING:
    from ..context_manager import ExpressionContext


@dataclass
class ValidationContext:
    """
    Input handed to every validator.

    Attributes:
        template: Raw template text
        config: Engine configuration (validation thresholds, libraries, security)
        parsed: Segmented template, None when the delimiters do not balance
        parse_error: Delimiter error raised while segmenting, if any
        context: Partial execution context used for path and node checks
    """

    template: str
    config: EngineConfig = field(default_factory=EngineConfig)
    parsed: ParsedTemplate | None = None
    parse_error: ParseError | None = None
    context: ExpressionContext | None = None

    def expressions(self, include_empty: bool = False) -> Iterator[ParsedExpression]:
        if self.parsed is None:
            return
        for expression in self.parsed.expressions:
            if include_empty or not expression.is_empty:
                yield expression


class BaseValidator(ABC):
    """One check within a validation layer."""

    name: str
    layer: str

    @abstractmethod
    def validate(self, context: ValidationContext) -> list[ValidationIssue]:
        """Return the issues found; raising is reported as VALIDATOR_ERROR."""

    def issue(
        self,
        context: ValidationContext,
        severity: Severity,
        code: str,
        message: str,
        start: int = 0,
        end: int | None = None,
        suggestion: str | None = None,
    ) -> ValidationIssue:
        return ValidationIssue(
            code=code,
            message=message,
            severity=severity,
            layer=self.layer,
            position=offset_to_position(context.template, start, end),
            suggestion=suggestion,
        )

    def error(
        self,
        context: ValidationContext,
        code: str,
        message: str,
        start: int = 0,
        end: int | None = None,
        suggestion: str | None = None,
    ) -> ValidationIssue:
        return self.issue(context, "error", code, message, start, end, suggestion)

    def warning(
        self,
        context: ValidationContext,
        code: str,
        message: str,
        start: int = 0,
        end: int | None = None,
        suggestion: str | None = None,
    ) -> ValidationIssue:
        return self.issue(context, "warning", code, message, start, end, suggestion)


def node_span(expression: ParsedExpression, start: int, end: int) -> tuple[int, int]:
    """Template offsets for a [start, end) range of an expression's stripped text."""
    base = expression.cleaned_start
    return base + start, base + end
