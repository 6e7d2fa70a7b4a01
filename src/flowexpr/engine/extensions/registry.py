"""
Extension method registry.

Maps a value's type tag (string, number, boolean, array, object, date) to
its method table. Each entry carries the implementation plus documentation
metadata used by completion, validation and the MCP documentation tool.

Methods are declared in per-type modules with a MethodTable:

    methods = MethodTable("string")

    @methods.method("toUpperCase()", "Converts the string to upper case",
                    example='"abc".toUpperCase() // "ABC"')
    def to_upper_case(value: str) -> str:
        return value.upper()

Argument bounds are derived from the Python signature (parameters after the
receiver); properties take only the receiver.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, PrivateAttr

from ..exceptions import EvaluationError, NullReceiverError
from ..resolver.values import is_nullish, type_name_of

logger = logging.getLogger(__name__)

TYPE_NAMES = ("string", "number", "boolean", "array", "object", "date")


@dataclass(frozen=True)
class ExtensionMethod:
    """One callable or property exposed on a type."""

    name: str
    type_name: str
    func: Callable[..., Any]
    signature: str
    description: str
    example: str = ""
    min_args: int = 0
    max_args: int | None = None
    is_property: bool = False
    returns: str = "any"

    def bind(self, receiver: Any) -> BoundMethod:
        return BoundMethod(self, receiver)

    def check_arity(self, count: int) -> None:
        if count < self.min_args:
            raise EvaluationError(
                f"{self.name}() expects at least {self.min_args} argument(s), got {count}",
                description=f"Usage: {self.signature}",
            )
        if self.max_args is not None and count > self.max_args:
            raise EvaluationError(
                f"{self.name}() expects at most {self.max_args} argument(s), got {count}",
                description=f"Usage: {self.signature}",
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type_name,
            "signature": self.signature,
            "description": self.description,
            "example": self.example,
            "isProperty": self.is_property,
            "returns": self.returns,
        }


class BoundMethod:
    """Extension method bound to its receiver, callable from expressions."""

    def __init__(self, method: ExtensionMethod, receiver: Any):
        self.method = method
        self.receiver = receiver
        self.__name__ = method.name

    def __call__(self, *args: Any) -> Any:
        if is_nullish(self.receiver):
            raise NullReceiverError(self.method.name)
        self.method.check_arity(len(args))
        return self.method.func(self.receiver, *args)

    def __repr__(self) -> str:
        return f"<method {self.method.type_name}.{self.method.name}>"


def arg_bounds(func: Callable[..., Any], skip: int = 1) -> tuple[int, int | None]:
    """Minimum and maximum positional argument counts, ignoring the first skip parameters."""
    params = list(inspect.signature(func).parameters.values())[skip:]
    minimum = 0
    maximum: int | None = 0
    for param in params:
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            maximum = None
            continue
        if param.kind in (inspect.Parameter.KEYWORD_ONLY, inspect.Parameter.VAR_KEYWORD):
            continue
        if param.default is inspect.Parameter.empty:
            minimum += 1
        if maximum is not None:
            maximum += 1
    return minimum, maximum


@dataclass
class MethodTable:
    """Collects the methods of one type as they are declared."""

    type_name: str
    methods: list[ExtensionMethod] = field(default_factory=list)

    def method(
        self,
        signature: str,
        description: str,
        example: str = "",
        aliases: tuple[str, ...] = (),
        returns: str = "any",
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            minimum, maximum = arg_bounds(func)
            name = signature.split("(", 1)[0]
            for method_name in (name, *aliases):
                self.methods.append(
                    ExtensionMethod(
                        name=method_name,
                        type_name=self.type_name,
                        func=func,
                        signature=signature.replace(name, method_name, 1),
                        description=description,
                        example=example,
                        min_args=minimum,
                        max_args=maximum,
                        returns=returns,
                    )
                )
            return func

        return decorator

    def property(
        self, name: str, description: str, example: str = "", returns: str = "any"
    ) -> Callable[[Callable[[Any], Any]], Callable[[Any], Any]]:
        def decorator(func: Callable[[Any], Any]) -> Callable[[Any], Any]:
            self.methods.append(
                ExtensionMethod(
                    name=name,
                    type_name=self.type_name,
                    func=func,
                    signature=name,
                    description=description,
                    example=example,
                    is_property=True,
                    returns=returns,
                )
            )
            return func

        return decorator


class ExtensionRegistry(BaseModel):
    """
    Registry of extension methods by type tag.

    Example:
        registry = create_default_registry()
        registry.get("string", "toUpperCase").func("abc")  # "ABC"
    """

    model_config = {"arbitrary_types_allowed": True}

    _methods: dict[str, dict[str, ExtensionMethod]] = PrivateAttr(default_factory=dict)

    def register(self, method: ExtensionMethod) -> None:
        table = self._methods.setdefault(method.type_name, {})
        if method.name in table:
            raise ValueError(f"Method already registered: {method.type_name}.{method.name}")
        table[method.name] = method

    def register_table(self, table: MethodTable) -> None:
        for method in table.methods:
            self.register(method)

    def get(self, type_name: str, name: str) -> ExtensionMethod | None:
        return self._methods.get(type_name, {}).get(name)

    def has(self, type_name: str, name: str) -> bool:
        return name in self._methods.get(type_name, {})

    def list_types(self) -> list[str]:
        return list(self._methods.keys())

    def methods_for(self, type_name: str) -> list[ExtensionMethod]:
        return sorted(self._methods.get(type_name, {}).values(), key=lambda m: m.name)

    def all_method_names(self) -> set[str]:
        return {name for table in self._methods.values() for name in table}

    def resolve(self, value: Any, name: str) -> ExtensionMethod | None:
        """Find the entry for name on value's runtime type."""
        return self.get(type_name_of(value), name)


def create_default_registry() -> ExtensionRegistry:
    """Create an ExtensionRegistry with every built-in type table registered.

    Each engine gets its own registry so hosts can register additional
    methods without affecting other engines.
    """
    from .arrays import methods as array_methods
    from .booleans import methods as boolean_methods
    from .dates import methods as date_methods
    from .numbers import methods as number_methods
    from .objects import methods as object_methods
    from .strings import methods as string_methods

    registry = ExtensionRegistry()
    for table in (
        string_methods,
        number_methods,
        boolean_methods,
        array_methods,
        object_methods,
        date_methods,
    ):
        registry.register_table(table)
    logger.debug(
        f"Registered extension methods for types: {', '.join(registry.list_types())}"
    )
    return registry
