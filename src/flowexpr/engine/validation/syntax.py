"""
Syntax layer: delimiters, empty spans and expression grammar.

Nothing here evaluates. Expressions are checked with the expression parser,
JMESPath spans with jmespath.compile.
"""

from __future__ import annotations

from ..exceptions import ExpressionError, QueryError
from ..resolver.classifier import ExpressionClassifier, ExpressionKind
from ..resolver.expression_parser import iter_nodes, parse_expression
from ..results import ValidationIssue
from ..template_parser import OPEN, ParsedExpression
from .base import BaseValidator, ValidationContext, node_span


class TemplateSyntaxValidator(BaseValidator):
    """Unbalanced {{ }} delimiters and empty expressions."""

    name = "TemplateSyntax"
    layer = "syntax"

    def validate(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        if context.parse_error is not None:
            error = context.parse_error
            delimiter = context.template[error.offset : error.offset + 2]
            issues.append(
                self.error(
                    context,
                    "TEMPLATE_MISMATCH",
                    error.message,
                    error.offset,
                    error.offset + 2,
                    suggestion="Add the missing '}}'" if delimiter == OPEN else "Remove the stray '}}'",
                )
            )
            return issues

        for expression in context.expressions(include_empty=True):
            if expression.is_empty:
                issues.append(
                    self.warning(
                        context,
                        "EMPTY_EXPRESSION",
                        "Empty template expression",
                        expression.start,
                        expression.end,
                    )
                )
        return issues


class ExpressionSyntaxValidator(BaseValidator):
    """Grammar of each expression; JMESPath spans compile as queries."""

    name = "ExpressionSyntax"
    layer = "syntax"

    def __init__(self, classifier: ExpressionClassifier | None = None):
        self.classifier = classifier or ExpressionClassifier()

    def validate(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        jmespath_enabled = context.config.library_enabled("jmespath")
        for expression in context.expressions():
            if expression.kind is ExpressionKind.JMESPATH:
                if jmespath_enabled:
                    issues.extend(self._check_query(context, expression))
                else:
                    issues.extend(self._check_grammar(context, expression))
                continue
            if expression.syntax_error is not None:
                issues.append(self._syntax_issue(context, expression, expression.syntax_error))
                continue
            issues.extend(self._check_assignments(context, expression))
        return issues

    def _check_query(self, context: ValidationContext, expression: ParsedExpression) -> list[ValidationIssue]:
        try:
            self.classifier.compile(expression.cleaned)
        except QueryError as e:
            return [self.error(context, "SYNTAX_ERROR", e.message, expression.start, expression.end)]
        return []

    def _check_grammar(self, context: ValidationContext, expression: ParsedExpression) -> list[ValidationIssue]:
        try:
            parse_expression(expression.cleaned)
        except ExpressionError as e:
            return [self._syntax_issue(context, expression, e)]
        return []

    def _syntax_issue(
        self,
        context: ValidationContext,
        expression: ParsedExpression,
        error: ExpressionError,
    ) -> ValidationIssue:
        if error.position is not None:
            start, end = node_span(expression, *error.position)
        else:
            start, end = expression.start, expression.end
        return self.error(context, error.code, error.message, start, end, suggestion=error.description)

    def _check_assignments(self, context: ValidationContext, expression: ParsedExpression) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        if expression.tree is None:
            return issues
        for node in iter_nodes(expression.tree):
            if node.kind == "assign":
                start, end = node_span(expression, node.start, node.end)
                issues.append(
                    self.error(
                        context,
                        "ASSIGNMENT_NOT_ALLOWED",
                        f"Assignment with '{node.value}' is not allowed in expressions",
                        start,
                        end,
                        suggestion="Use a comparison ('===') or compute a new value instead",
                    )
                )
        return issues
