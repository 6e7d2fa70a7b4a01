"""
Expression classification for routing.

Resolvable spans are routed either to the JMESPath library or to the
sandboxed evaluator:

    JMESPATH     {{ $json.items[?price > `10`].name }}
    EXPRESSION   {{ $json.items.filter(i => i.price > 10) }}

A span is a JMESPath query when it uses query-only syntax (filters,
projections, flatten, pipes, literals in backticks, slices, expression
references, or starts with a JMESPath function) and no syntax that only the
expression grammar has (arrow functions, && / ||, optional chaining, strict
equality, method calls, $-function calls, arithmetic, array literals in
operand position).

"[]" is a flatten only after an identifier, "]" or "*"; anywhere else it is
an empty array literal.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from enum import Enum
from functools import lru_cache
from typing import Any

import jmespath
from jmespath.exceptions import JMESPathError

from ..exceptions import NotDefinedError, QueryError
from .values import to_json_compatible


class ExpressionKind(Enum):
    """Evaluation route of a resolvable span."""

    JMESPATH = "jmespath"
    EXPRESSION = "expression"


JMESPATH_FUNCTIONS = frozenset(
    {
        "abs",
        "avg",
        "ceil",
        "contains",
        "ends_with",
        "floor",
        "join",
        "keys",
        "length",
        "map",
        "max",
        "max_by",
        "merge",
        "min",
        "min_by",
        "not_null",
        "reverse",
        "sort",
        "sort_by",
        "starts_with",
        "sum",
        "to_array",
        "to_number",
        "to_string",
        "type",
        "values",
    }
)

_QUOTED_RE = re.compile(r"\"(?:[^\"\\]|\\.)*\"|'(?:[^'\\]|\\.)*'|`(?:[^`\\]|\\.)*`")
_ROOT_RE = re.compile(r"\$[A-Za-z_][A-Za-z0-9_]*")
_FUNCTION_START_RE = re.compile(r"^\s*([a-z_]+)\s*\(")
_SLICE_RE = re.compile(r"\[\s*-?\d*\s*:\s*-?\d*\s*(?::\s*-?\d*\s*)?\]")
_METHOD_CALL_RE = re.compile(r"\.\s*[A-Za-z_$][\w$]*\s*\(")
_SINGLE_PIPE_RE = re.compile(r"(?<!\|)\|(?!\|)")
_SINGLE_AMP_RE = re.compile(r"(?<!&)&(?!&)")
_FLATTEN_RE = re.compile(r"[\w$\]*]\s*\[\]")
_DOLLAR_CALL_RE = re.compile(r"\$[A-Za-z_]\w*\s*\(")
_ARRAY_LITERAL_RE = re.compile(r"(?:^|[(,=!<>+\-/%?:])\s*\[(?![?*])")
_ARITHMETIC_RE = re.compile(r"[+/%]")

JS_ONLY_MARKERS = ("=>", "&&", "||", "?.", "===", "!==", "??", "$(")
QUERY_MARKERS = ("[?", "[*", ".*")


def _mask_literals(text: str) -> tuple[str, bool]:
    """Blank out quoted text; report whether a backtick literal was present."""
    has_backtick = False

    def blank(match: re.Match[str]) -> str:
        nonlocal has_backtick
        token = match.group(0)
        if token.startswith("`"):
            has_backtick = True
        return token[0] + " " * (len(token) - 2) + token[-1]

    return _QUOTED_RE.sub(blank, text), has_backtick


class ExpressionClassifier:
    """
    Classify resolvable spans and run JMESPath queries.

    Example:
        classifier = ExpressionClassifier()
        classifier.classify("$json.items[*].name")  # ExpressionKind.JMESPATH
        classifier.classify("$json.name.toUpperCase()")  # ExpressionKind.EXPRESSION
    """

    def classify(self, text: str) -> ExpressionKind:
        masked, has_backtick = _mask_literals(text)
        if any(marker in masked for marker in JS_ONLY_MARKERS) or self._has_expression_syntax(masked):
            return ExpressionKind.EXPRESSION
        starts_with_function = self._starts_with_query_function(masked)
        if _METHOD_CALL_RE.search(masked) and not starts_with_function:
            return ExpressionKind.EXPRESSION

        if (
            has_backtick
            or starts_with_function
            or any(marker in masked for marker in QUERY_MARKERS)
            or _FLATTEN_RE.search(masked)
            or _SINGLE_PIPE_RE.search(masked)
            or _SINGLE_AMP_RE.search(masked)
            or _SLICE_RE.search(masked)
        ):
            return ExpressionKind.JMESPATH
        return ExpressionKind.EXPRESSION

    @staticmethod
    def _has_expression_syntax(masked: str) -> bool:
        return bool(
            _DOLLAR_CALL_RE.search(masked)
            or _ARRAY_LITERAL_RE.search(masked)
            or _ARITHMETIC_RE.search(masked)
        )

    @staticmethod
    def _starts_with_query_function(masked: str) -> bool:
        match = _FUNCTION_START_RE.match(masked)
        return bool(match and match.group(1) in JMESPATH_FUNCTIONS)

    def referenced_roots(self, query: str) -> list[str]:
        """$-variables the query is rooted at, in order of appearance."""
        masked, _ = _mask_literals(query)
        roots: list[str] = []
        for match in _ROOT_RE.finditer(masked):
            if match.group(0) not in roots:
                roots.append(match.group(0))
        return roots

    def rewrite(self, query: str) -> str:
        """Quote $-variables so they become JMESPath identifiers ($json -> "$json")."""
        masked, _ = _mask_literals(query)
        parts: list[str] = []
        last = 0
        for match in _ROOT_RE.finditer(masked):
            parts.append(query[last : match.start()])
            parts.append(f'"{match.group(0)}"')
            last = match.end()
        parts.append(query[last:])
        return "".join(parts)

    def compile(self, query: str) -> Any:
        return _compile(self.rewrite(query))

    def search(self, query: str, bindings: Mapping[str, Any]) -> Any:
        """
        Run a query against the context.

        Queries without a $-root run against $json; otherwise the data is an
        object holding each referenced root.

        Raises:
            NotDefinedError: If the query references an unknown $-variable
            QueryError: If the query fails to compile or run
        """
        roots = self.referenced_roots(query)
        if roots:
            data: Any = {}
            for name in roots:
                if name not in bindings:
                    raise NotDefinedError(name)
                data[name] = to_json_compatible(bindings[name])
        else:
            data = to_json_compatible(bindings.get("$json", {}))
        compiled = self.compile(query)
        try:
            return compiled.search(data)
        except JMESPathError as e:
            raise QueryError(f"JMESPath query failed: {e}") from e


@lru_cache(maxsize=512)
def _compile(query: str) -> Any:
    try:
        return jmespath.compile(query)
    except JMESPathError as e:
        raise QueryError(f"Invalid JMESPath query: {e}") from e


def search_json(data: Any, query: Any) -> Any:
    """$jmespath(data, query): run a query string against a value."""
    if not isinstance(query, str):
        raise QueryError("$jmespath() expects the query as a string")
    compiled = _compile(query)
    try:
        return compiled.search(to_json_compatible(data))
    except JMESPathError as e:
        raise QueryError(f"JMESPath query failed: {e}") from e
