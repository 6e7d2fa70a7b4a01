"""
Template segmentation.

A template is literal text interleaved with {{ ... }} resolvable spans:

    "Hello {{ $json.name }}, you owe {{ $json.total.toFixed(2) }}"

    literal     [0, 6)    "Hello "
    resolvable  [6, 22)   "{{ $json.name }}"
    literal     [22, 33)  ", you owe "
    ...

Inside a resolvable span the scanner tracks brace depth and string literals
(', " and `), so object literals and quoted "}}" never close the span early.
An unmatched "{{" or a stray "}}" raises ParseError at the offending
delimiter; malformed input is never silently dropped.

Offsets are character offsets into the source, [start, end).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Literal

from .exceptions import ExpressionError, ExpressionSyntaxError, ParseError, ResourceLimitError
from .resolver.classifier import ExpressionClassifier, ExpressionKind
from .resolver.expression_parser import Node, complexity, dependencies, depth, parse_expression
from .results import Position

logger = logging.getLogger(__name__)

OPEN = "{{"
CLOSE = "}}"

_QUOTES = "'\"`"
_QUERY_NESTING_RE = re.compile(r"[\[(]")

_classifier = ExpressionClassifier()


@dataclass(frozen=True)
class ParsedExpression:
    """
    Compiled view of one resolvable span.

    Attributes:
        source: The full span including delimiters ("{{ $json.a }}")
        inner: Text between the delimiters, unstripped
        start, end: Span offsets into the template
        inner_start, inner_end: Offsets of the inner text
        kind: JMESPath query or general expression
        dependencies: Static $-rooted paths the span touches
        complexity: Weighted node count, used by the performance validator
        depth: Nesting depth of the parsed expression
        syntax_error: Grammar or nesting error found while parsing, if any
        tree: Parsed expression tree (None for queries and invalid spans)
    """

    source: str
    inner: str
    start: int
    end: int
    inner_start: int
    inner_end: int
    kind: ExpressionKind
    dependencies: tuple[str, ...] = ()
    complexity: int = 0
    depth: int = 0
    syntax_error: ExpressionError | None = None
    tree: Node | None = field(default=None, compare=False, repr=False)

    @property
    def cleaned(self) -> str:
        return self.inner.strip()

    @property
    def cleaned_start(self) -> int:
        """Template offset of the first character of the stripped inner text."""
        return self.inner_start + (len(self.inner) - len(self.inner.lstrip()))

    @property
    def is_empty(self) -> bool:
        return not self.cleaned


@dataclass(frozen=True)
class Segment:
    kind: Literal["literal", "resolvable"]
    start: int
    end: int
    text: str
    expression: ParsedExpression | None = None

    @property
    def is_resolvable(self) -> bool:
        return self.kind == "resolvable"


@dataclass(frozen=True)
class ParsedTemplate:
    source: str
    segments: tuple[Segment, ...] = ()
    dependencies: tuple[str, ...] = field(default=())

    @property
    def expressions(self) -> list[ParsedExpression]:
        return [s.expression for s in self.segments if s.expression is not None]

    @property
    def is_template(self) -> bool:
        return any(s.is_resolvable for s in self.segments)


def find_span_end(text: str, start: int) -> int | None:
    """
    Offset just past the "}}" closing the span opened at `start`, or None.

    Braces inside the span nest; quoted text is skipped with backslash escapes.
    """
    pos = start + len(OPEN)
    depth_ = 0
    quote: str | None = None
    length = len(text)
    while pos < length:
        char = text[pos]
        if quote is not None:
            if char == "\\":
                pos += 2
                continue
            if char == quote:
                quote = None
        elif char in _QUOTES:
            quote = char
        elif char == "{":
            depth_ += 1
        elif char == "}":
            if depth_ == 0 and text.startswith(CLOSE, pos):
                return pos + len(CLOSE)
            if depth_ > 0:
                depth_ -= 1
        pos += 1
    return None


def analyze_expression(inner: str, start: int, end: int) -> ParsedExpression:
    """Classify a span's inner text and collect its static facts."""
    inner_start = start + len(OPEN)
    inner_end = end - len(CLOSE)
    cleaned = inner.strip()
    kind = _classifier.classify(cleaned) if cleaned else ExpressionKind.EXPRESSION
    facts = {
        "source": OPEN + inner + CLOSE,
        "inner": inner,
        "start": start,
        "end": end,
        "inner_start": inner_start,
        "inner_end": inner_end,
        "kind": kind,
    }
    if not cleaned:
        return ParsedExpression(**facts)

    if kind is ExpressionKind.JMESPATH:
        roots = _classifier.referenced_roots(cleaned) or ["$json"]
        nesting = len(_QUERY_NESTING_RE.findall(cleaned))
        return ParsedExpression(
            **facts,
            dependencies=tuple(roots),
            complexity=1 + nesting + cleaned.count("|"),
            depth=1 + nesting,
        )

    try:
        tree = parse_expression(cleaned)
    except (ExpressionSyntaxError, ResourceLimitError) as e:
        return ParsedExpression(**facts, syntax_error=e)
    return ParsedExpression(
        **facts,
        dependencies=tuple(dependencies(tree)),
        complexity=complexity(tree),
        depth=depth(tree),
        tree=tree,
    )


def parse_template(text: str) -> ParsedTemplate:
    """
    Split template text into contiguous literal and resolvable segments.

    Raises:
        ParseError: At the first unmatched "{{" or stray "}}"
    """
    segments: list[Segment] = []
    literal_start = 0
    pos = 0
    length = len(text)

    while pos < length:
        if text.startswith(OPEN, pos):
            end = find_span_end(text, pos)
            if end is None:
                raise ParseError(f"Unmatched '{OPEN}' at offset {pos}", offset=pos)
            if pos > literal_start:
                segments.append(Segment("literal", literal_start, pos, text[literal_start:pos]))
            inner = text[pos + len(OPEN) : end - len(CLOSE)]
            segments.append(
                Segment("resolvable", pos, end, text[pos:end], analyze_expression(inner, pos, end))
            )
            pos = literal_start = end
        elif text.startswith(CLOSE, pos):
            raise ParseError(f"Unmatched '{CLOSE}' at offset {pos}", offset=pos)
        else:
            pos += 1

    if literal_start < length:
        segments.append(Segment("literal", literal_start, length, text[literal_start:]))

    found: list[str] = []
    for segment in segments:
        if segment.expression is not None:
            found.extend(d for d in segment.expression.dependencies if d not in found)

    logger.debug(f"Parsed template into {len(segments)} segments")
    return ParsedTemplate(source=text, segments=tuple(segments), dependencies=tuple(found))


def offset_to_position(text: str, start: int, end: int | None = None) -> Position:
    """Position (1-based line and column) for a [start, end) range of text."""
    start = max(0, min(start, len(text)))
    end = start if end is None else max(start, min(end, len(text)))
    line = text.count("\n", 0, start) + 1
    column = start - (text.rfind("\n", 0, start) + 1) + 1
    return Position(line=line, column=column, start=start, end=end)
