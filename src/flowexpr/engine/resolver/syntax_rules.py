"""
Syntax rules: parse the expression grammar and translate it to Jinja2.

Rules:
    - ParseExpressionRule: Parse text into a Node tree and collect static facts
    - JavaScriptTranslationRule: Emit an equivalent Jinja2 expression

Translation scheme (every JavaScript operation lands on a sandbox hook or a
helper global, so Jinja2's own semantics never leak through):

    a.b, a[k]          a['b'], a[k]                 -> sandbox getitem
    a?.b, f?.(x)       __fx_opt(a)['b'], __fx_opt(f)(x)
    f(x)               f(x)                         -> sandbox call
    new D(x)           __fx_new(D, x)
    a + b  (- * / % **) (a + b)                     -> sandbox call_binop
    -a, +a             (-a), (+a)                   -> sandbox call_unop
    !a, typeof a       __fx_not(a), __fx_typeof(a)
    a == b (and friends) __fx_eq(a, b), __fx_seq(a, b), __fx_lt(a, b), ...
    a && b             __fx_val(__fx_truthy(a) and __fx_truthy(b))
    a || b             __fx_val(__fx_truthy(a) or __fx_truthy(b))
    a ?? b             __fx_val(__fx_present(a) or __fx_box(b))
    t ? a : b          (a if __fx_test(t) else b)
    x => body          __fx_arrow(n)   (n indexes the program's arrow table)

Identifiers are mangled into a namespace that cannot collide with Jinja2
keywords or helpers: name -> "v_" + name with "_" -> "_u" and "$" -> "_d".
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from ..exceptions import ExpressionSyntaxError
from .expression_parser import (
    ARITHMETIC_OPS,
    Node,
    complexity,
    dependencies,
    free_names,
    iter_nodes,
    parse_expression,
)
from .rules import RuleContext, RuleType, TransformRule

HELPER_PREFIX = "__fx_"

_COMPARISON_HELPERS = {
    "==": "__fx_eq",
    "!=": "__fx_ne",
    "===": "__fx_seq",
    "!==": "__fx_sne",
    "<": "__fx_lt",
    ">": "__fx_gt",
    "<=": "__fx_le",
    ">=": "__fx_ge",
}

# Free names whose value changes between otherwise identical evaluations
VOLATILE_NAMES = frozenset({"$random", "$randomInt", "$uuid", "$timestamp", "Date", "DateTime"})


def mangle(name: str) -> str:
    return "v_" + name.replace("_", "_u").replace("$", "_d")


def demangle(name: str) -> str:
    return name[2:].replace("_d", "$").replace("_u", "_")


@dataclass(frozen=True)
class ArrowSpec:
    """Compiled arrow function: mangled parameters, body program, nested arrows."""

    params: tuple[str, ...]
    program: str
    arrows: tuple[ArrowSpec, ...] = ()


def is_volatile(tree: Node, names: set[str]) -> bool:
    if names & VOLATILE_NAMES:
        return True
    for node in iter_nodes(tree):
        if node.kind == "member" and node.value == "random":
            receiver = node.children[0]
            if receiver.kind == "name" and receiver.value == "Math":
                return True
    return False


class JinjaTranslator:
    """
    Emit Jinja2 expression source for a Node tree.

    Example:
        translator = JinjaTranslator()
        program = translator.translate(parse_expression("$json.a + 1"))
        # "((v__djson['a']) + 1)"
    """

    def __init__(self) -> None:
        self.arrows: list[ArrowSpec] = []

    def translate(self, node: Node) -> str:
        return f"({self.emit(node)})"

    def emit(self, node: Node) -> str:
        handler = getattr(self, f"_emit_{node.kind}", None)
        if handler is None:
            raise ExpressionSyntaxError(f"Unsupported construct '{node.kind}'", node.start)
        return handler(node)

    def _wrapped(self, node: Node) -> str:
        text = self.emit(node)
        if node.kind == "name":
            return text
        return f"({text})"

    def _args(self, nodes: tuple[Node, ...]) -> str:
        return ", ".join(self.emit(arg) for arg in nodes)

    # -- literals -------------------------------------------------------------

    def _emit_number(self, node: Node) -> str:
        value = node.value
        if isinstance(value, int):
            return str(value)
        if math.isnan(value):
            return "__fx_nan"
        if math.isinf(value):
            return "__fx_inf"
        return repr(value)

    def _emit_string(self, node: Node) -> str:
        return repr(node.value)

    def _emit_boolean(self, node: Node) -> str:
        return "true" if node.value else "false"

    def _emit_null(self, node: Node) -> str:
        return "none"

    def _emit_undefined(self, node: Node) -> str:
        return "__fx_undefined"

    def _emit_name(self, node: Node) -> str:
        return mangle(node.value)

    def _emit_array(self, node: Node) -> str:
        return f"[{self._args(node.children)}]"

    def _emit_object(self, node: Node) -> str:
        items = []
        for prop in node.children:
            if prop.kind == "property":
                items.append(f"{prop.value!r}: {self.emit(prop.children[0])}")
            else:
                key, value = prop.children
                items.append(f"__fx_key({self.emit(key)}): {self.emit(value)}")
        return "{" + ", ".join(items) + "}"

    # -- access and calls -----------------------------------------------------

    def _emit_member(self, node: Node) -> str:
        return f"{self._wrapped(node.children[0])}[{node.value!r}]"

    def _emit_optional_member(self, node: Node) -> str:
        return f"__fx_opt({self.emit(node.children[0])})[{node.value!r}]"

    def _emit_index(self, node: Node) -> str:
        obj, key = node.children
        return f"{self._wrapped(obj)}[{self.emit(key)}]"

    def _emit_optional_index(self, node: Node) -> str:
        obj, key = node.children
        return f"__fx_opt({self.emit(obj)})[{self.emit(key)}]"

    def _emit_call(self, node: Node) -> str:
        callee, *args = node.children
        return f"{self._wrapped(callee)}({self._args(tuple(args))})"

    def _emit_optional_call(self, node: Node) -> str:
        callee, *args = node.children
        return f"__fx_opt({self.emit(callee)})({self._args(tuple(args))})"

    def _emit_new(self, node: Node) -> str:
        callee, *args = node.children
        parts = [self.emit(callee), *(self.emit(arg) for arg in args)]
        return f"__fx_new({', '.join(parts)})"

    # -- operators ------------------------------------------------------------

    def _emit_unary(self, node: Node) -> str:
        operand = self._wrapped(node.children[0])
        if node.value == "!":
            return f"__fx_not({operand})"
        if node.value == "typeof":
            return f"__fx_typeof({operand})"
        return f"{node.value}{operand}"

    def _emit_binary(self, node: Node) -> str:
        left, right = (self._wrapped(child) for child in node.children)
        op = node.value
        if op in ARITHMETIC_OPS:
            return f"{left} {op} {right}"
        helper = _COMPARISON_HELPERS.get(op)
        if helper is None:
            raise ExpressionSyntaxError(f"Unsupported operator '{op}'", node.start)
        return f"{helper}({left}, {right})"

    def _emit_logical(self, node: Node) -> str:
        left, right = (self.emit(child) for child in node.children)
        if node.value == "&&":
            return f"__fx_val(__fx_truthy({left}) and __fx_truthy({right}))"
        if node.value == "||":
            return f"__fx_val(__fx_truthy({left}) or __fx_truthy({right}))"
        return f"__fx_val(__fx_present({left}) or __fx_box({right}))"

    def _emit_conditional(self, node: Node) -> str:
        test, consequent, alternate = (self._wrapped(child) for child in node.children)
        return f"{consequent} if __fx_test({test}) else {alternate}"

    def _emit_arrow(self, node: Node) -> str:
        body_translator = JinjaTranslator()
        program = body_translator.translate(node.children[0])
        spec = ArrowSpec(
            params=tuple(mangle(p) for p in node.value),
            program=program,
            arrows=tuple(body_translator.arrows),
        )
        self.arrows.append(spec)
        return f"__fx_arrow({len(self.arrows) - 1})"

    def _emit_assign(self, node: Node) -> str:
        target = node.children[0]
        if target.kind == "name":
            return f"__fx_assign(none, {target.value!r})"
        if target.kind == "member":
            return f"__fx_assign({self.emit(target.children[0])}, {target.value!r})"
        obj, key = target.children
        return f"__fx_assign({self.emit(obj)}, {self.emit(key)})"


class ParseExpressionRule(TransformRule):
    """
    Parse expression text and record static facts about it.

    Metadata written: free_names, dependencies, complexity, volatile.
    """

    rule_type = RuleType.SYNTAX
    priority = 10

    def __init__(self, max_depth: int = 100):
        self.max_depth = max_depth

    def applies_to(self, context: RuleContext) -> bool:
        return context.tree is None

    def transform(self, context: RuleContext) -> RuleContext:
        tree = parse_expression(context.expression, max_depth=self.max_depth)
        names = free_names(tree)
        context.tree = tree
        context.metadata["free_names"] = frozenset(names)
        context.metadata["dependencies"] = dependencies(tree)
        context.metadata["complexity"] = complexity(tree)
        context.metadata["volatile"] = is_volatile(tree, names)
        return context

    @property
    def description(self) -> str:
        return "Parse the expression grammar into a syntax tree"


class JavaScriptTranslationRule(TransformRule):
    """Translate the parsed tree into a Jinja2 expression for the sandbox."""

    rule_type = RuleType.SYNTAX
    priority = 30

    def applies_to(self, context: RuleContext) -> bool:
        return context.tree is not None and context.program is None

    def transform(self, context: RuleContext) -> RuleContext:
        assert context.tree is not None
        translator = JinjaTranslator()
        context.program = translator.translate(context.tree)
        context.metadata["arrows"] = tuple(translator.arrows)
        return context

    @property
    def description(self) -> str:
        return "Translate JavaScript-flavoured expressions to sandboxed Jinja2"
