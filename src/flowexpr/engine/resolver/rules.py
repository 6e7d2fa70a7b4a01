"""
Rule pipeline that turns expression text into a sandbox program.

Rules are applied in priority order (lower runs first). Each rule reads and
extends a shared RuleContext: the parse rule fills in the tree, security
rules inspect it, and the translation rule emits the Jinja2 program.

Rule Types:
    - SYNTAX: Parsing and translation of the expression grammar
    - SECURITY: Static checks on the parsed tree

Example:
    class NoRegexRule(TransformRule):
        rule_type = RuleType.SECURITY
        priority = 25

        def applies_to(self, context: RuleContext) -> bool:
            return context.tree is not None

        def transform(self, context: RuleContext) -> RuleContext:
            ...
            return context

        @property
        def description(self) -> str:
            return "Reject regular expression helpers"
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .expression_parser import Node


class RuleType(Enum):
    """Types of pipeline rules."""

    SYNTAX = "syntax"
    SECURITY = "security"


@dataclass
class RuleContext:
    """
    State threaded through the rule pipeline.

    Attributes:
        expression: Expression text (braces stripped)
        tree: Parsed expression, set by the parse rule
        program: Jinja2 expression source, set by the translation rule
        metadata: Rule-specific extras (arrow table, dependencies, volatility)
    """

    expression: str
    tree: Node | None = None
    program: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class TransformRule(ABC):
    """
    Base class for pipeline rules.

    Parsing runs first (priority 10), static security checks next (20-29),
    translation last (30+).
    """

    rule_type: RuleType
    priority: int = 0

    @abstractmethod
    def applies_to(self, context: RuleContext) -> bool:
        """Check whether the rule should run for this context."""

    @abstractmethod
    def transform(self, context: RuleContext) -> RuleContext:
        """Apply the rule, raising an ExpressionError subclass to reject."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what this rule does."""


def apply_rules(rules: list[TransformRule], context: RuleContext) -> RuleContext:
    for rule in rules:
        if rule.applies_to(context):
            context = rule.transform(context)
    return context
