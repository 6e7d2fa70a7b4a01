"""Boolean methods."""

from __future__ import annotations

from .registry import MethodTable

methods = MethodTable("boolean")


@methods.method("toString()", '"true" or "false"', "true.toString() // \"true\"", returns="string")
def to_string(value: bool) -> str:
    return "true" if value else "false"


@methods.method("toNumber()", "1 for true, 0 for false", aliases=("toInt",), returns="number")
def to_number(value: bool) -> int:
    return 1 if value else 0


@methods.method("valueOf()", "The boolean itself", returns="boolean")
def value_of(value: bool) -> bool:
    return value


@methods.method("isEmpty()", "Always false for booleans", returns="boolean")
def is_empty(value: bool) -> bool:
    return False
