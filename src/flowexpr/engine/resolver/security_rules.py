"""
Security policy and static security rules.

The policy is pure configuration plus pure functions: blocked-pattern
matching over raw text, the allowed-global surface and the allowed-method
filter. It never executes anything.

Rules:
    - CodeConstructionRule: Reject constructs that reach code constructors
      (new Function, .constructor, .__proto__, dunder members)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from ..config import SecurityConfig
from ..exceptions import NotDefinedError, SecurityError
from .expression_parser import iter_nodes
from .rules import RuleContext, RuleType, TransformRule

logger = logging.getLogger(__name__)

# Always enforced ahead of configured patterns
CODE_CONSTRUCTION_PATTERNS: tuple[tuple[str, str], ...] = (
    ("eval", r"\beval\b"),
    ("Function", r"\bFunction\b"),
    ("exec", r"\bexec\s*\("),
    ("compile", r"\bcompile\s*\("),
)

FORBIDDEN_MEMBERS = frozenset({"constructor", "__proto__", "prototype"})


@dataclass(frozen=True)
class BlockedMatch:
    name: str
    start: int
    end: int


class SecurityPolicy:
    """
    Immutable rule set built from SecurityConfig.

    Example:
        policy = SecurityPolicy(SecurityConfig())
        policy.matches_blocked_pattern("eval('1')")  # "eval"
        policy.is_allowed_global("Math")  # True
    """

    def __init__(self, config: SecurityConfig, library_globals: Iterable[str] = ()):
        self.config = config
        if config.allow_function_constructor:
            logger.warning(
                "security.allowFunctionConstructor is ignored: "
                "code construction from strings is always blocked"
            )

        configured = [(p.name, p.pattern) for p in config.blocked_patterns]
        always = [(n, p) for n, p in CODE_CONSTRUCTION_PATTERNS]
        always_names = {n for n, _ in always}
        rules = always + [(n, p) for n, p in configured if n not in always_names]
        self._patterns: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
            (name, re.compile(pattern)) for name, pattern in rules
        )
        self.allowed_globals = frozenset(config.allowed_globals) | frozenset(library_globals)
        self.allowed_methods = frozenset(config.allowed_methods)
        self.strict_grammar = config.strict_grammar

    @property
    def pattern_names(self) -> list[str]:
        return [name for name, _ in self._patterns]

    def find_blocked_pattern(self, text: str) -> BlockedMatch | None:
        """First blocked rule (in rule order) matching anywhere in text."""
        for name, regex in self._patterns:
            match = regex.search(text)
            if match:
                return BlockedMatch(name, match.start(), match.end())
        return None

    def iter_blocked_matches(self, text: str) -> Iterator[BlockedMatch]:
        for name, regex in self._patterns:
            for match in regex.finditer(text):
                yield BlockedMatch(name, match.start(), match.end())

    def matches_blocked_pattern(self, text: str) -> str | None:
        found = self.find_blocked_pattern(text)
        return found.name if found else None

    def is_allowed_global(self, name: str) -> bool:
        return name in self.allowed_globals

    def is_allowed_method(self, name: str) -> bool:
        return not self.allowed_methods or name in self.allowed_methods

    def check_identifiers(
        self,
        names: Iterable[str],
        bindings: Iterable[str],
        extra_globals: Iterable[str] = (),
    ) -> None:
        """Raise NotDefinedError for the first free name outside the allowed surface.

        $-names resolve only through bindings. Other names resolve through the
        allowed globals, and through host extra globals unless strict grammar
        is enabled.
        """
        bound = set(bindings)
        extra = set() if self.strict_grammar else set(extra_globals)
        for name in sorted(names):
            if name.startswith("$"):
                if name not in bound:
                    raise NotDefinedError(name)
            elif name not in self.allowed_globals and name not in extra:
                raise NotDefinedError(name)


class CodeConstructionRule(TransformRule):
    """
    Reject static access paths that lead to code constructors.

    Blocked patterns only see raw text, so $json["constructor"] slips past a
    regex on .constructor; this rule inspects the parsed tree instead.
    """

    rule_type = RuleType.SECURITY
    priority = 20

    def applies_to(self, context: RuleContext) -> bool:
        return context.tree is not None

    def transform(self, context: RuleContext) -> RuleContext:
        assert context.tree is not None
        for node in iter_nodes(context.tree):
            if node.kind in ("member", "optional_member"):
                self._check_member(node.value)
            elif node.kind in ("index", "optional_index"):
                key = node.children[1]
                if key.kind == "string":
                    self._check_member(key.value)
            elif node.kind == "new":
                callee = node.children[0]
                if callee.kind == "name" and callee.value == "Function":
                    raise SecurityError(
                        "Constructing functions from strings is not allowed",
                        pattern_name="Function",
                    )
        return context

    @staticmethod
    def _check_member(name: str) -> None:
        if name in FORBIDDEN_MEMBERS:
            raise SecurityError(f"Access to '{name}' is not allowed", pattern_name=name)
        if name.startswith("__"):
            raise SecurityError(
                f"Access to '{name}' is not allowed", pattern_name="__internal__"
            )

    @property
    def description(self) -> str:
        return "Prevent access to constructors and internal members"
