"""
Semantic layer: names, calls and value types, checked statically.

    VariableValidator         unknown identifiers and $-variables, $binary,
                              property paths missing from a supplied context
    FunctionCallValidator     $-function arity, $("Node") lookups,
                              namespace members, methods on literal receivers
    TypeCompatibilityValidator  string/number arithmetic, literal division by zero

Identifiers are resolved against the same surface the evaluator uses: the
context's $-bindings, the $-functions of the enabled libraries, the allowed
globals and (unless strict grammar is on) the host's extra globals.
"""

from __future__ import annotations

import difflib
from collections.abc import Iterator, Mapping
from typing import Any

from ..context_manager import ExpressionContext
from ..exceptions import ExecutionBaseError
from ..extensions.registry import ExtensionRegistry
from ..resolver.builtins import NAMESPACES, dollar_functions
from ..resolver.expression_parser import ARITHMETIC_OPS, Node, iter_nodes
from ..resolver.security_rules import SecurityPolicy
from ..results import ValidationIssue
from ..template_parser import ParsedExpression
from .base import BaseValidator, ValidationContext, node_span

DEPRECATED_VARIABLES = {"$binary": "$input.item.binary"}

LITERAL_TYPES = {
    "string": "string",
    "number": "number",
    "boolean": "boolean",
    "array": "array",
    "object": "object",
}
DATE_VARIABLES = {"$now", "$today"}

_CALL_KINDS = ("call", "optional_call")
_MEMBER_KINDS = ("member", "optional_member")
_INDEX_KINDS = ("index", "optional_index")


def free_name_nodes(root: Node) -> Iterator[Node]:
    """Name nodes not bound by an enclosing arrow function, in source order."""
    stack: list[tuple[Node, frozenset[str]]] = [(root, frozenset())]
    while stack:
        node, bound = stack.pop()
        if node.kind == "name":
            if node.value not in bound:
                yield node
            continue
        if node.kind == "arrow":
            stack.append((node.children[0], bound | frozenset(node.value)))
            continue
        stack.extend((child, bound) for child in reversed(node.children))


def suggest(name: str, candidates: Any) -> str | None:
    matches = difflib.get_close_matches(name, sorted(candidates), n=1, cutoff=0.6)
    return f"Did you mean '{matches[0]}'?" if matches else None


def binding_names(context: ValidationContext) -> set[str]:
    expression_context = context.context or ExpressionContext()
    return set(expression_context.bindings())


def arity_code(count: int, min_args: int) -> str:
    return "INSUFFICIENT_ARGUMENTS" if count < min_args else "TOO_MANY_ARGUMENTS"


class VariableValidator(BaseValidator):
    name = "VariableDependency"
    layer = "semantic"

    def __init__(self, policy: SecurityPolicy, registry: ExtensionRegistry):
        self.policy = policy
        self.registry = registry

    def validate(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        bindings = binding_names(context)
        functions = set(dollar_functions(context.config.libraries))
        extra: set[str] = set()
        if context.context is not None and not self.policy.strict_grammar:
            extra = set(context.context.extra_globals)

        for expression in context.expressions():
            if expression.tree is None:
                continue
            callees = {
                id(node.children[0])
                for node in iter_nodes(expression.tree)
                if node.kind in _CALL_KINDS and node.children[0].kind == "name"
            }
            reported: set[str] = set()
            for node in free_name_nodes(expression.tree):
                name = node.value
                start, end = node_span(expression, node.start, node.end)
                if name in DEPRECATED_VARIABLES and name in bindings:
                    issues.append(
                        self.warning(
                            context,
                            "DEPRECATED_VARIABLE",
                            f"'{name}' is deprecated",
                            start,
                            end,
                            suggestion=f"Use {DEPRECATED_VARIABLES[name]} instead",
                        )
                    )
                    continue
                if id(node) in callees or name in reported:
                    continue
                if name.startswith("$"):
                    known = name in bindings or name in functions
                    candidates = bindings | functions
                else:
                    known = self.policy.is_allowed_global(name) or name in extra
                    candidates = self.policy.allowed_globals | extra
                if not known:
                    reported.add(name)
                    issues.append(
                        self.error(
                            context,
                            "UNDEFINED_VARIABLE",
                            f"'{name}' is not defined",
                            start,
                            end,
                            suggestion=suggest(name, candidates),
                        )
                    )

            if context.context is not None:
                issues.extend(self._check_paths(context, expression))
        return issues

    def _check_paths(self, context: ValidationContext, expression: ParsedExpression) -> list[ValidationIssue]:
        assert context.context is not None and expression.tree is not None
        issues: list[ValidationIssue] = []
        bindings = context.context.bindings()
        for node, root, keys in _property_chains(expression.tree):
            if root not in bindings:
                continue
            try:
                missing = self._missing_key(bindings[root], keys)
            except ExecutionBaseError:
                # Lineage or node errors surface at evaluation time
                continue
            if missing is None:
                continue
            path = root + "".join(f"[{k}]" if isinstance(k, int) else f".{k}" for k in keys[: missing + 1])
            start, end = node_span(expression, node.start, node.end)
            issues.append(
                self.warning(
                    context,
                    "UNDEFINED_PROPERTY",
                    f"'{path}' does not exist in the supplied context",
                    start,
                    end,
                    suggestion="Use optional chaining (?.) if the property may be missing",
                )
            )
        return issues

    def _missing_key(self, value: Any, keys: list[str | int]) -> int | None:
        """Index of the first key the context value lacks, None when found or unknowable."""
        for position, key in enumerate(keys):
            if isinstance(value, Mapping):
                if key in value:
                    value = value[key]
                    continue
                if isinstance(key, str) and self.registry.has("object", key):
                    return None
                return position
            if isinstance(value, (list, tuple)) and isinstance(key, int):
                if 0 <= key < len(value):
                    value = value[key]
                    continue
                return position
            return None
        return None


def _property_chains(root: Node) -> Iterator[tuple[Node, str, list[str | int]]]:
    """Longest member chains with literal keys rooted at a $-variable."""
    stack = [root]
    while stack:
        node = stack.pop()
        if node.kind in _MEMBER_KINDS or node.kind in _INDEX_KINDS:
            chain = _chain(node)
            if chain is not None:
                yield node, chain[0], chain[1]
                continue
        if node.kind in _CALL_KINDS and node.children[0].kind in _MEMBER_KINDS:
            # The method name is not a property of the receiver
            stack.extend(reversed((node.children[0].children[0], *node.children[1:])))
            continue
        stack.extend(reversed(node.children))


def _chain(node: Node) -> tuple[str, list[str | int]] | None:
    keys: list[str | int] = []
    current = node
    while True:
        if current.kind in _MEMBER_KINDS:
            keys.append(current.value)
        elif current.kind in _INDEX_KINDS:
            key = current.children[1]
            if key.kind == "string":
                keys.append(key.value)
            elif key.kind == "number" and isinstance(key.value, int):
                keys.append(key.value)
            else:
                return None
        elif current.kind == "name" and current.value.startswith("$"):
            keys.reverse()
            return current.value, keys
        else:
            return None
        current = current.children[0]


class FunctionCallValidator(BaseValidator):
    name = "FunctionParameter"
    layer = "semantic"

    def __init__(self, registry: ExtensionRegistry):
        self.registry = registry

    def validate(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        functions = dollar_functions(context.config.libraries)
        bindings = binding_names(context)
        for expression in context.expressions():
            if expression.tree is None:
                continue
            for node in iter_nodes(expression.tree):
                if node.kind not in _CALL_KINDS:
                    continue
                callee, args = node.children[0], node.children[1:]
                span = node_span(expression, node.start, node.end)
                if callee.kind == "name" and callee.value.startswith("$"):
                    issue = self._check_dollar_call(context, callee.value, args, functions, bindings, span)
                elif callee.kind in _MEMBER_KINDS:
                    issue = self._check_member_call(context, callee, len(args), span)
                else:
                    issue = None
                if issue is not None:
                    issues.append(issue)
        return issues

    def _check_dollar_call(
        self,
        context: ValidationContext,
        name: str,
        args: tuple[Node, ...],
        functions: Mapping[str, Any],
        bindings: set[str],
        span: tuple[int, int],
    ) -> ValidationIssue | None:
        if name == "$":
            return self._check_node_lookup(context, args, span)
        function = functions.get(name)
        if function is not None:
            count = len(args)
            if count < function.min_args or (function.max_args is not None and count > function.max_args):
                return self.error(
                    context,
                    arity_code(count, function.min_args),
                    f"{name}() called with {count} argument(s)",
                    *span,
                    suggestion=f"Usage: {function.signature}",
                )
            return None
        if name in bindings:
            return self.error(context, "NOT_A_FUNCTION", f"'{name}' is not a function", *span)
        return self.error(
            context,
            "UNKNOWN_FUNCTION",
            f"Unknown function '{name}'",
            *span,
            suggestion=suggest(name, functions),
        )

    def _check_node_lookup(
        self,
        context: ValidationContext,
        args: tuple[Node, ...],
        span: tuple[int, int],
    ) -> ValidationIssue | None:
        if len(args) != 1:
            return self.error(
                context,
                arity_code(len(args), 1),
                f'$() expects exactly 1 argument, got {len(args)}',
                *span,
                suggestion='Usage: $("Node name")',
            )
        if args[0].kind != "string" or context.context is None:
            return None
        source = context.context.node_source
        names = source.node_names()
        if names and not source.has_node(args[0].value):
            return self.warning(
                context,
                "UNKNOWN_NODE",
                f"Node '{args[0].value}' does not exist in the workflow",
                *span,
                suggestion=suggest(args[0].value, names),
            )
        return None

    def _check_member_call(
        self,
        context: ValidationContext,
        callee: Node,
        count: int,
        span: tuple[int, int],
    ) -> ValidationIssue | None:
        receiver, method_name = callee.children[0], callee.value
        if receiver.kind == "name" and receiver.value in NAMESPACES:
            namespace = NAMESPACES[receiver.value]
            if method_name not in namespace.members:
                return self.error(
                    context,
                    "UNKNOWN_FUNCTION",
                    f"{namespace.name}.{method_name} does not exist",
                    *span,
                    suggestion=suggest(method_name, namespace.members),
                )
            return None

        type_name = LITERAL_TYPES.get(receiver.kind)
        if type_name is None and receiver.kind == "name" and receiver.value in DATE_VARIABLES:
            type_name = "date"
        if type_name is None:
            return None

        method = self.registry.get(type_name, method_name)
        if method is None:
            return self.error(
                context,
                "UNKNOWN_METHOD",
                f"Method '{method_name}' does not exist on type {type_name}",
                *span,
                suggestion=suggest(method_name, [m.name for m in self.registry.methods_for(type_name)]),
            )
        if method.is_property:
            return self.error(
                context,
                "NOT_A_FUNCTION",
                f"'{method_name}' is a property of {type_name}, not a method",
                *span,
                suggestion=f"Use .{method_name} without parentheses",
            )
        if count < method.min_args or (method.max_args is not None and count > method.max_args):
            return self.error(
                context,
                arity_code(count, method.min_args),
                f"{method_name}() called with {count} argument(s)",
                *span,
                suggestion=f"Usage: {method.signature}",
            )
        return None


class TypeCompatibilityValidator(BaseValidator):
    name = "TypeCompatibility"
    layer = "semantic"

    def validate(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for expression in context.expressions():
            if expression.tree is None:
                continue
            for node in iter_nodes(expression.tree):
                if node.kind != "binary" or node.value not in ARITHMETIC_OPS:
                    continue
                left, right = node.children
                start, end = node_span(expression, node.start, node.end)
                kinds = {left.kind, right.kind}
                if kinds == {"string", "number"}:
                    if node.value == "+":
                        message = "Adding a string and a number concatenates them"
                    else:
                        message = f"'{node.value}' between a string and a number converts the string"
                    issues.append(self.warning(context, "MIXED_TYPE_ARITHMETIC", message, start, end))
                if node.value in ("/", "%") and right.kind == "number" and right.value == 0:
                    issues.append(
                        self.warning(
                            context,
                            "DIVISION_BY_ZERO",
                            f"'{node.value} 0' yields Infinity or NaN",
                            start,
                            end,
                        )
                    )
        return issues
