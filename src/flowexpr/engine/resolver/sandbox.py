"""
Sandboxed Jinja2 environment that runs translated expressions.

Every attribute read, item read, call and arithmetic operator of a
translated program goes through this environment, which enforces:

    - the per-evaluation guard (deadline, cancellation, call depth, memory)
    - extension-method dispatch by runtime type tag
    - the allowed-methods filter
    - JavaScript member, arithmetic and truthiness semantics

Python attributes of values are never reachable: member access only sees
mapping keys, sequence indexes, HostObject members and registered
extension methods.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any

from jinja2 import Undefined, pass_context
from jinja2.runtime import Context
from jinja2.sandbox import SandboxedEnvironment

from ..cache import ExpressionCache
from ..exceptions import EvaluationError, SecurityError, VariableAssignmentError
from ..extensions.registry import ExtensionRegistry
from . import guard
from .builtins import construct, create_globals, dollar_functions
from .expression_parser import ARITHMETIC_OPS
from .proxies import is_read_only
from .security_rules import SecurityPolicy
from .syntax_rules import ArrowSpec, mangle
from .values import (
    UNDEFINED,
    Box,
    HostObject,
    JsFunction,
    JsUndefined,
    MissingMember,
    NullMember,
    OptionalUndefined,
    add_strings,
    arithmetic,
    compare,
    ensure_value,
    is_nullish,
    is_stringish,
    js_typeof,
    loose_equals,
    strict_equals,
    to_array_index,
    to_property_key,
    to_string,
    truthy,
    unary,
)

logger = logging.getLogger(__name__)

ARROWS_VAR = "__fx_arrows"


class ArrowFunction(JsFunction):
    """Arrow function value: a compiled body closed over its defining scope."""

    def __init__(self, sandbox: ExpressionSandbox, spec: ArrowSpec, scope: Mapping[str, Any]):
        self.sandbox = sandbox
        self.spec = spec
        self.scope = scope

    def __call__(self, *args: Any) -> Any:
        guard.tick()
        scope = dict(self.scope)
        for index, name in enumerate(self.spec.params):
            scope[name] = args[index] if index < len(args) else UNDEFINED
        scope[ARROWS_VAR] = self.spec.arrows
        with guard.guarded_call():
            return self.sandbox.compiled(self.spec.program)(scope)

    def __repr__(self) -> str:
        return f"<arrow ({', '.join(self.spec.params)})>"


def _optional(value: Any) -> Any:
    ensure_value(value)
    if is_nullish(value):
        return OptionalUndefined()
    return value


def _assign(target: Any, key: Any) -> Any:
    if is_read_only(target):
        raise VariableAssignmentError()
    if target is None and isinstance(key, str) and key.startswith("$"):
        raise VariableAssignmentError()
    raise EvaluationError(
        "Assignment is not supported in expressions",
        description="Expressions are read-only; compute a new value instead",
    )


def _truthy_box(value: Any) -> Box:
    return Box(value, truthy(value))


def _present_box(value: Any) -> Box:
    ensure_value(value)
    return Box(value, not is_nullish(value))


def _comparison(op: str) -> Any:
    def helper(left: Any, right: Any) -> bool:
        guard.tick()
        if op == "==":
            return loose_equals(left, right)
        if op == "!=":
            return not loose_equals(left, right)
        if op == "===":
            return strict_equals(left, right)
        if op == "!==":
            return not strict_equals(left, right)
        return compare(op, left, right)

    return helper


class ExpressionSandbox(SandboxedEnvironment):
    """
    Jinja2 sandbox specialised for translated expressions.

    Example:
        sandbox = ExpressionSandbox(create_default_registry(), SecurityPolicy(SecurityConfig()))
        sandbox.run("((v__djson['a']) + 1)", (), {"$json": {"a": 1}})  # 2
    """

    intercepted_binops = frozenset(ARITHMETIC_OPS)
    intercepted_unops = frozenset({"-", "+"})

    def __init__(
        self,
        registry: ExtensionRegistry,
        policy: SecurityPolicy,
        libraries: Mapping[str, bool] | None = None,
        program_cache_size: int = 512,
    ):
        super().__init__(undefined=JsUndefined, autoescape=False, optimized=False)
        self.registry = registry
        self.policy = policy
        self.libraries = dict(libraries or {"datetime": True, "jmespath": True})
        self._programs = ExpressionCache(max_size=program_cache_size, ttl_ms=None)

        surface = create_globals(include_datetime=self.libraries.get("datetime", False))
        self.global_names = frozenset(surface)
        self.function_names = frozenset(dollar_functions(self.libraries))

        self.globals.clear()
        self.globals.update({mangle(name): value for name, value in surface.items()})
        self.globals.update(
            {mangle(name): fn for name, fn in dollar_functions(self.libraries).items()}
        )
        self.globals.update(self._helpers())

    def _helpers(self) -> dict[str, Any]:
        helpers: dict[str, Any] = {
            "__fx_nan": math.nan,
            "__fx_inf": math.inf,
            "__fx_undefined": UNDEFINED,
            "__fx_opt": _optional,
            "__fx_not": lambda value: not truthy(value),
            "__fx_typeof": js_typeof,
            "__fx_truthy": _truthy_box,
            "__fx_present": _present_box,
            "__fx_box": lambda value: Box(value, True),
            "__fx_val": lambda box: box.value,
            "__fx_test": truthy,
            "__fx_key": lambda key: to_property_key(ensure_value(key)),
            "__fx_new": construct,
            "__fx_assign": _assign,
            "__fx_arrow": self._arrow,
        }
        for op in ("==", "!=", "===", "!==", "<", ">", "<=", ">="):
            name = {
                "==": "__fx_eq",
                "!=": "__fx_ne",
                "===": "__fx_seq",
                "!==": "__fx_sne",
                "<": "__fx_lt",
                ">": "__fx_gt",
                "<=": "__fx_le",
                ">=": "__fx_ge",
            }[op]
            helpers[name] = _comparison(op)
        return helpers

    @pass_context
    def _arrow(self, context: Context, index: int) -> ArrowFunction:
        spec = context.resolve(ARROWS_VAR)[index]
        return ArrowFunction(self, spec, context.get_all())

    # -- programs -------------------------------------------------------------

    def compiled(self, program: str) -> Any:
        """Compiled TemplateExpression for a program, memoized by source."""
        cached = self._programs.get(program)
        if cached is None:
            cached = self.compile_expression(program, undefined_to_none=False)
            self._programs.set(program, cached)
        return cached

    def run(
        self,
        program: str,
        arrows: tuple[ArrowSpec, ...],
        variables: Mapping[str, Any],
    ) -> Any:
        """Evaluate a translated program with unmangled variable names ($json, ...)."""
        scope = {mangle(name): value for name, value in variables.items()}
        scope[ARROWS_VAR] = arrows
        return self.compiled(program)(scope)

    # -- member access ----------------------------------------------------------

    def member(self, obj: Any, key: Any) -> Any:
        guard.tick()
        if isinstance(obj, OptionalUndefined):
            return obj
        if isinstance(obj, NullMember):
            ensure_value(obj)
        key = ensure_value(key)
        if obj is None or isinstance(obj, Undefined):
            return NullMember(name=to_property_key(key), obj=obj)
        name = to_property_key(key)
        if isinstance(obj, HostObject):
            return obj.js_member(name)
        if isinstance(obj, Mapping):
            if name in obj:
                return obj[name]
        elif isinstance(obj, (list, tuple, str)):
            index = to_array_index(key)
            if index is not None:
                return obj[index] if 0 <= index < len(obj) else UNDEFINED
        method = self.registry.resolve(obj, name)
        if method is not None:
            if method.is_property:
                return method.func(obj)
            if not self.policy.is_allowed_method(name):
                raise SecurityError(
                    f"Method '{name}' is not in the allowed methods list",
                    pattern_name="allowed_methods",
                )
            return method.bind(obj)
        return MissingMember(name=name, obj=obj)

    def getitem(self, obj: Any, argument: Any) -> Any:
        return self.member(obj, argument)

    def getattr(self, obj: Any, attribute: str) -> Any:
        return self.member(obj, attribute)

    # -- calls and operators ----------------------------------------------------

    def call(__self, __context: Context, __obj: Any, *args: Any, **kwargs: Any) -> Any:  # noqa: N805
        guard.tick()
        for arg in args:
            ensure_value(arg)
        if isinstance(__obj, Undefined):
            return __obj(*args)
        if not callable(__obj):
            raise EvaluationError(f"{to_string(__obj)} is not a function")
        if not __self.is_safe_callable(__obj):
            raise SecurityError(f"{__obj!r} is not safely callable", pattern_name="unsafe_callable")
        with guard.guarded_call():
            result = __context.call(__obj, *args, **kwargs)
        return guard.check_value(result)

    def call_binop(self, context: Context, operator: str, left: Any, right: Any) -> Any:
        guard.tick()
        ensure_value(left)
        ensure_value(right)
        if operator == "+" and (is_stringish(left) or is_stringish(right)):
            return guard.check_value(add_strings(left, right))
        return arithmetic(operator, left, right)

    def call_unop(self, context: Context, operator: str, arg: Any) -> Any:
        guard.tick()
        return unary(operator, arg)
