"""
Expression grammar parsing.

The grammar (grammar.lark) is the JavaScript-flavoured subset workflow authors
write inside {{ }}. Lark parses it with LALR and a Transformer builds an
immutable tree of Node(kind, value, children) with [start, end) offsets into
the parsed text.

Node kinds:
    number, string, boolean, null, undefined, name
    member, optional_member      value=property name, children=(object,)
    index, optional_index        children=(object, key)
    call, optional_call          children=(callee, *args)
    new                          children=(callee, *args)
    unary                        value=operator ("!", "-", "+", "typeof")
    binary, logical              value=operator, children=(left, right)
    conditional                  children=(test, consequent, alternate)
    array                        children=elements
    object                       children=property nodes
    property                     value=key, children=(value,)
    computed_property            children=(key, value)
    arrow                        value=tuple of params, children=(body,)
    assign                       value=operator, children=(target, value)
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Any

from lark import (
    Lark,
    Token,
    Transformer_NonRecursive,
    UnexpectedCharacters,
    UnexpectedInput,
    UnexpectedToken,
    v_args,
)
from lark.exceptions import VisitError

from ..exceptions import ExpressionSyntaxError, ResourceLimitError
from .values import MAX_SAFE_INTEGER, to_string

_GRAMMAR_PATH = Path(__file__).parent / "grammar.lark"

_parser = Lark(
    _GRAMMAR_PATH.read_text(),
    parser="lalr",
    start="start",
    propagate_positions=True,
    maybe_placeholders=False,
)

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
    "\n": "",
}
_ESCAPE_RE = re.compile(r"\\(u\{[0-9a-fA-F]+\}|u[0-9a-fA-F]{4}|x[0-9a-fA-F]{2}|.)", re.DOTALL)

LITERAL_KEYWORDS = {"true", "false", "null", "undefined", "NaN", "Infinity"}
UNSUPPORTED_KEYWORDS = {
    "function",
    "return",
    "var",
    "let",
    "const",
    "for",
    "while",
    "do",
    "if",
    "else",
    "class",
    "this",
    "delete",
    "void",
    "in",
    "instanceof",
    "throw",
    "try",
    "catch",
    "finally",
    "switch",
    "case",
    "yield",
    "await",
    "async",
    "with",
    "debugger",
    "super",
}

ASSIGN_OPS = {"=", "+=", "-=", "*=", "/=", "%=", "**=", "??=", "&&=", "||="}
COMPARISON_OPS = {"==", "!=", "===", "!==", "<", ">", "<=", ">="}
ARITHMETIC_OPS = {"+", "-", "*", "/", "%", "**"}

# Postfix chains continue an expression at the same nesting level
_CHAIN_KINDS = {"member", "optional_member", "index", "optional_index", "call", "optional_call"}


@dataclass(frozen=True)
class Node:
    kind: str
    value: Any = None
    children: tuple[Node, ...] = ()
    start: int = field(default=0, compare=False)
    end: int = field(default=0, compare=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.kind, "start": self.start, "end": self.end}
        if self.value is not None:
            data["value"] = list(self.value) if isinstance(self.value, tuple) else self.value
        if self.children:
            data["children"] = [child.to_dict() for child in self.children]
        return data


@dataclass(frozen=True)
class _Group:
    """Parenthesized or bracketed list before it becomes a node."""

    items: tuple[Node, ...]
    start: int
    end: int


def _unescape(body: str) -> str:
    def replace_escape(match: re.Match[str]) -> str:
        seq = match.group(1)
        if seq.startswith("u{"):
            return chr(int(seq[2:-1], 16))
        if seq[0] == "u" and len(seq) == 5:
            return chr(int(seq[1:], 16))
        if seq[0] == "x" and len(seq) == 3:
            return chr(int(seq[1:], 16))
        return _ESCAPES.get(seq, seq)

    return _ESCAPE_RE.sub(replace_escape, body)


def _number_value(text: str) -> int | float:
    lowered = text.lower()
    if lowered.startswith("0x"):
        value: int | float = int(text[2:], 16)
    elif lowered.startswith("0b"):
        value = int(text[2:], 2)
    elif lowered.startswith("0o"):
        value = int(text[2:], 8)
    elif "." in text or "e" in lowered:
        return float(text)
    else:
        value = int(text)
    if isinstance(value, int) and value > MAX_SAFE_INTEGER:
        return float(value)
    return value


def _token_node(kind: str, value: Any, token: Token) -> Node:
    return Node(kind, value, start=token.start_pos, end=token.end_pos)


@v_args(meta=True)
class _TreeBuilder(Transformer_NonRecursive):
    """Turn the lark parse tree into Node objects."""

    def __init__(self, text: str):
        super().__init__()
        self._text = text

    def start(self, meta, children):
        return children[0]

    # -- literals and names -----------------------------------------------------

    def number(self, meta, children):
        return _token_node("number", _number_value(str(children[0])), children[0])

    def string(self, meta, children):
        return _token_node("string", _unescape(children[0][1:-1]), children[0])

    def true_literal(self, meta, children):
        return Node("boolean", True, start=meta.start_pos, end=meta.end_pos)

    def false_literal(self, meta, children):
        return Node("boolean", False, start=meta.start_pos, end=meta.end_pos)

    def null_literal(self, meta, children):
        return Node("null", start=meta.start_pos, end=meta.end_pos)

    def name(self, meta, children):
        return self._name(children[0])

    def _name(self, token: Token) -> Node:
        name = str(token)
        if name == "undefined":
            return _token_node("undefined", None, token)
        if name == "NaN":
            return _token_node("number", float("nan"), token)
        if name == "Infinity":
            return _token_node("number", float("inf"), token)
        if name in UNSUPPORTED_KEYWORDS:
            raise ExpressionSyntaxError(f"'{name}' is not supported in expressions", token.start_pos)
        return _token_node("name", name, token)

    def prop_name(self, meta, children):
        return children[0]

    # -- grouping ---------------------------------------------------------------

    def paren(self, meta, children):
        return _Group(tuple(children), meta.start_pos, meta.end_pos)

    arguments = paren

    def group(self, meta, children):
        group = children[0]
        if not group.items:
            raise ExpressionSyntaxError("Expected an expression", group.end - 1)
        if len(group.items) > 1:
            raise ExpressionSyntaxError("Unexpected token ','", group.items[0].end)
        return replace(group.items[0], start=group.start, end=group.end)

    def array_literal(self, meta, children):
        return Node("array", None, tuple(children), meta.start_pos, meta.end_pos)

    def object_literal(self, meta, children):
        return Node("object", None, tuple(children), meta.start_pos, meta.end_pos)

    def property_entry(self, meta, children):
        key_token, value = children
        if key_token.type == "STRING":
            key = _unescape(key_token[1:-1])
        elif key_token.type == "NUMBER":
            key = to_string(_number_value(str(key_token)))
        else:
            key = str(key_token)
        return Node("property", key, (value,), meta.start_pos, meta.end_pos)

    def computed_property(self, meta, children):
        return Node("computed_property", None, tuple(children), meta.start_pos, meta.end_pos)

    def shorthand_property(self, meta, children):
        value = self._name(children[0])
        return Node("property", str(children[0]), (value,), meta.start_pos, meta.end_pos)

    # -- access and calls -------------------------------------------------------

    def member(self, meta, children):
        obj, prop = children
        return Node("member", str(prop), (obj,), meta.start_pos, meta.end_pos)

    def optional_member(self, meta, children):
        obj, prop = children
        return Node("optional_member", str(prop), (obj,), meta.start_pos, meta.end_pos)

    def index(self, meta, children):
        return Node("index", None, tuple(children), meta.start_pos, meta.end_pos)

    def optional_index(self, meta, children):
        return Node("optional_index", None, tuple(children), meta.start_pos, meta.end_pos)

    def call(self, meta, children):
        callee, args = children
        return Node("call", None, (callee, *args.items), meta.start_pos, meta.end_pos)

    def optional_call(self, meta, children):
        callee, args = children
        return Node("optional_call", None, (callee, *args.items), meta.start_pos, meta.end_pos)

    def new_callee(self, meta, children):
        head, *props = children
        callee = _token_node("name", str(head), head)
        for prop in props:
            callee = Node("member", str(prop), (callee,), callee.start, prop.end_pos)
        return callee

    def new_expr(self, meta, children):
        callee, *rest = children
        args = rest[0].items if rest else ()
        return Node("new", None, (callee, *args), meta.start_pos, meta.end_pos)

    # -- operators --------------------------------------------------------------

    def not_op(self, meta, children):
        return Node("unary", "!", (children[0],), meta.start_pos, meta.end_pos)

    def typeof_op(self, meta, children):
        return Node("unary", "typeof", (children[0],), meta.start_pos, meta.end_pos)

    def sign_op(self, meta, children):
        op, operand = children
        return Node("unary", str(op), (operand,), meta.start_pos, meta.end_pos)

    def update(self, meta, children):
        op = next(child for child in children if isinstance(child, Token))
        raise ExpressionSyntaxError("Increment and decrement operators are not supported", op.start_pos)

    def binary(self, meta, children):
        left, op, right = children
        return Node("binary", str(op), (left, right), meta.start_pos, meta.end_pos)

    def logical(self, meta, children):
        left, op, right = children
        return Node("logical", str(op), (left, right), meta.start_pos, meta.end_pos)

    def conditional(self, meta, children):
        return Node("conditional", None, tuple(children), meta.start_pos, meta.end_pos)

    def assign(self, meta, children):
        target, op, value = children
        if target.kind not in ("name", "member", "index"):
            raise ExpressionSyntaxError("Invalid assignment target", op.start_pos)
        return Node("assign", str(op), (target, value), meta.start_pos, meta.end_pos)

    def arrow(self, meta, children):
        head, body = children
        params = (self._name(head),) if isinstance(head, Token) else head.items
        names: list[str] = []
        for param in params:
            if param.kind != "name":
                raise ExpressionSyntaxError("Expected a parameter name", param.start)
            if param.value in names:
                raise ExpressionSyntaxError(f"Duplicate parameter '{param.value}'", param.start)
            names.append(param.value)
        if self._text[body.start] == "{":
            raise ExpressionSyntaxError(
                "Arrow function bodies must be expressions; wrap object literals in parentheses",
                body.start,
            )
        return Node("arrow", tuple(names), (body,), meta.start_pos, meta.end_pos)


def _syntax_error(text: str, error: UnexpectedInput) -> ExpressionSyntaxError:
    if isinstance(error, UnexpectedCharacters):
        offset = error.pos_in_stream
        char = text[offset]
        if char == "`":
            return ExpressionSyntaxError(
                "Template literals are not supported, use string concatenation", offset
            )
        if char in "\"'":
            return ExpressionSyntaxError("Unterminated string literal", offset)
        return ExpressionSyntaxError(f"Unexpected character '{char}'", offset)

    if isinstance(error, UnexpectedToken) and error.token.type != "$END":
        token = error.token
        offset = token.start_pos
        if text.startswith("...", offset):
            return ExpressionSyntaxError("Spread syntax is not supported", offset)
        if token.type == "NAME" and str(token) in UNSUPPORTED_KEYWORDS:
            return ExpressionSyntaxError(f"'{token}' is not supported in expressions", offset)
        if token.type == "ASSIGN_OP":
            return ExpressionSyntaxError("Invalid assignment target", offset)
        if str(token) == "=>":
            return ExpressionSyntaxError("Malformed arrow function parameters", offset)
        return ExpressionSyntaxError(f"Unexpected token '{token}'", offset)

    return ExpressionSyntaxError("Unexpected end of expression", len(text))


def nesting(root: Node) -> int:
    """Nesting level of sub-expressions; postfix chains stay on their receiver's level."""
    deepest = 0
    stack = [(root, 1)]
    while stack:
        node, level = stack.pop()
        deepest = max(deepest, level)
        for position, child in enumerate(node.children):
            same_level = node.kind in _CHAIN_KINDS and position == 0
            stack.append((child, level if same_level else level + 1))
    return deepest


def parse_expression(text: str, max_depth: int = 100) -> Node:
    """
    Parse expression text into a Node tree.

    Raises:
        ExpressionSyntaxError: If the text does not match the grammar
        ResourceLimitError: If sub-expressions nest deeper than max_depth

    Example:
        tree = parse_expression("$json.items.map(i => i.price * 2)")
    """
    if not text.strip():
        raise ExpressionSyntaxError("Empty expression", offset=0)
    try:
        parse_tree = _parser.parse(text)
    except UnexpectedInput as e:
        raise _syntax_error(text, e) from e
    try:
        tree = _TreeBuilder(text).transform(parse_tree)
    except VisitError as e:
        raise e.orig_exc from e
    if nesting(tree) > max_depth:
        raise ResourceLimitError(
            "call_stack",
            max_depth,
            message=f"Expression nesting exceeds the maximum depth of {max_depth}",
        )
    return tree


@lru_cache(maxsize=1024)
def normalize(text: str) -> str:
    """Canonical spelling of an expression: tokens joined by single spaces."""
    try:
        return " ".join(str(token) for token in _parser.lex(text))
    except UnexpectedInput:
        return text.strip()


# =============================================================================
# Static analysis helpers
# =============================================================================


def iter_nodes(root: Node) -> Iterator[Node]:
    """Pre-order traversal without recursion."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def free_names(root: Node) -> set[str]:
    """Identifiers referenced but not bound by an enclosing arrow function."""
    names: set[str] = set()
    stack: list[tuple[Node, frozenset[str]]] = [(root, frozenset())]
    while stack:
        node, bound = stack.pop()
        if node.kind == "name":
            if node.value not in bound:
                names.add(node.value)
            continue
        if node.kind == "arrow":
            stack.append((node.children[0], bound | frozenset(node.value)))
            continue
        for child in node.children:
            stack.append((child, bound))
    return names


def static_path(node: Node) -> str | None:
    """Dotted path for chains rooted at a $-variable with literal keys, else None."""
    parts: list[str] = []
    current = node
    while True:
        if current.kind in ("member", "optional_member"):
            parts.append(f".{current.value}")
            current = current.children[0]
        elif current.kind in ("index", "optional_index"):
            key = current.children[1]
            if key.kind == "string":
                parts.append(f'["{key.value}"]')
            elif key.kind == "number":
                parts.append(f"[{key.value}]")
            else:
                return None
            current = current.children[0]
        elif current.kind == "call":
            callee = current.children[0]
            args = current.children[1:]
            if callee.kind == "name" and callee.value == "$" and len(args) == 1:
                if args[0].kind == "string":
                    parts.append(f'$("{args[0].value}")')
                    break
            return None
        elif current.kind == "name" and current.value.startswith("$"):
            parts.append(current.value)
            break
        else:
            return None
    return "".join(reversed(parts))


def dependencies(root: Node) -> list[str]:
    """Static $-rooted paths an expression touches, longest chain only."""
    found: list[str] = []
    stack = [root]
    while stack:
        node = stack.pop()
        path = static_path(node) if node.kind != "name" or node.value.startswith("$") else None
        if path is not None:
            if path not in found:
                found.append(path)
            continue
        if node.kind in ("call", "optional_call") and node.children[0].kind in (
            "member",
            "optional_member",
        ):
            # Method calls depend on the receiver, not on the method name
            receiver = node.children[0].children[0]
            stack.extend(reversed((receiver, *node.children[1:])))
            continue
        stack.extend(reversed(node.children))
    return found


_COMPLEXITY_WEIGHTS = {
    "call": 3,
    "optional_call": 3,
    "new": 3,
    "arrow": 5,
    "conditional": 2,
    "logical": 2,
    "assign": 2,
}


def complexity(root: Node) -> int:
    return sum(_COMPLEXITY_WEIGHTS.get(node.kind, 1) for node in iter_nodes(root))


def depth(root: Node) -> int:
    """Nesting depth of the tree (a single literal has depth 1)."""
    deepest = 0
    stack = [(root, 1)]
    while stack:
        node, level = stack.pop()
        deepest = max(deepest, level)
        stack.extend((child, level + 1) for child in node.children)
    return deepest


def call_count(root: Node) -> int:
    return sum(1 for node in iter_nodes(root) if node.kind in ("call", "optional_call", "new"))
