"""Number methods and the JavaScript number parsing helpers."""

from __future__ import annotations

import datetime as dt
import math
import re
from typing import Any

from ..exceptions import EvaluationError
from ..resolver.values import (
    UNDEFINED,
    clamp_int,
    format_number,
    is_undefined,
    to_integer,
    to_number,
    to_string,
)
from .registry import MethodTable

methods = MethodTable("number")

_INT_PREFIX_RE = re.compile(r"^[+-]?[0-9a-zA-Z]+")
_FLOAT_PREFIX_RE = re.compile(r"^[+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def parse_int(value: Any, radix: Any = UNDEFINED) -> int | float:
    """JavaScript parseInt: leading integer in the given radix, else NaN."""
    text = to_string(value).strip()
    base = 0 if is_undefined(radix) else to_integer(radix)
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if base in (0, 16) and text[:2].lower() == "0x":
        text = text[2:]
        base = 16
    if base == 0:
        base = 10
    if not 2 <= base <= 36:
        return math.nan
    digits = ""
    for char in text:
        index = _DIGITS.find(char.lower())
        if index < 0 or index >= base:
            break
        digits += char
    if not digits:
        return math.nan
    return clamp_int(sign * int(digits, base))


def parse_float(value: Any) -> int | float:
    """JavaScript parseFloat: leading decimal literal, else NaN."""
    text = to_string(value).strip()
    match = _FLOAT_PREFIX_RE.match(text)
    if not match:
        return math.nan
    literal = match.group(0)
    if literal.lstrip("+-") == "Infinity":
        return -math.inf if literal.startswith("-") else math.inf
    number = float(literal)
    if number.is_integer() and abs(number) <= 2**53:
        return int(number)
    return number


def js_round(value: float) -> int | float:
    """Math.round: halves round toward positive infinity."""
    if math.isnan(value) or math.isinf(value):
        return value
    return math.floor(value + 0.5)


def to_fixed(value: int | float, digits: Any = 0) -> str:
    places = to_integer(digits)
    if not 0 <= places <= 100:
        raise EvaluationError("toFixed() digits argument must be between 0 and 100")
    if math.isnan(value) or math.isinf(value) or abs(value) >= 1e21:
        return format_number(value)
    text = format(value, f".{places}f")
    if text.startswith("-") and float(text) == 0:
        text = text[1:]
    return text


def to_precision(value: int | float, precision: Any = UNDEFINED) -> str:
    if is_undefined(precision):
        return format_number(value)
    digits = to_integer(precision)
    if not 1 <= digits <= 100:
        raise EvaluationError("toPrecision() argument must be between 1 and 100")
    if math.isnan(value) or math.isinf(value):
        return format_number(value)
    if value == 0:
        return "0" + ("." + "0" * (digits - 1) if digits > 1 else "")
    mantissa, exponent = format(value, f".{digits - 1}e").split("e")
    exp = int(exponent)
    if exp < -6 or exp >= digits:
        return f"{mantissa}e{'+' if exp >= 0 else '-'}{abs(exp)}"
    return format(value, f".{max(0, digits - 1 - exp)}f")


def to_radix_string(value: int | float, radix: Any = 10) -> str:
    base = 10 if is_undefined(radix) else to_integer(radix)
    if not 2 <= base <= 36:
        raise EvaluationError("toString() radix must be between 2 and 36")
    if base == 10 or math.isnan(value) or math.isinf(value):
        return format_number(value)
    negative = value < 0
    whole = int(abs(value))
    fraction = abs(value) - whole
    digits = ""
    while True:
        whole, remainder = divmod(whole, base)
        digits = _DIGITS[remainder] + digits
        if whole == 0:
            break
    if fraction:
        digits += "."
        for _ in range(20):
            fraction *= base
            digit = int(fraction)
            digits += _DIGITS[digit]
            fraction -= digit
            if not fraction:
                break
    return ("-" if negative else "") + digits


# =============================================================================
# Methods
# =============================================================================


@methods.method("toFixed(digits?)", "Formats with a fixed number of decimals", "(3.14159).toFixed(2) // \"3.14\"", returns="string")
def to_fixed_(value: int | float, digits: Any = 0) -> str:
    return to_fixed(value, digits)


@methods.method("toPrecision(precision?)", "Formats to a number of significant digits", returns="string")
def to_precision_(value: int | float, precision: Any = UNDEFINED) -> str:
    return to_precision(value, precision)


@methods.method("toString(radix?)", "String form, optionally in another base", "(255).toString(16) // \"ff\"", returns="string")
def to_string_(value: int | float, radix: Any = 10) -> str:
    return to_radix_string(value, radix)


@methods.method("toLocaleString()", "String with thousands separators", "(1234567.891).toLocaleString() // \"1,234,567.891\"", returns="string")
def to_locale_string(value: int | float) -> str:
    if math.isnan(value) or math.isinf(value):
        return format_number(value)
    rounded = round(value, 3)
    if float(rounded).is_integer():
        return f"{int(rounded):,}"
    return f"{rounded:,.3f}".rstrip("0")


@methods.method("valueOf()", "The number itself")
def value_of(value: int | float) -> int | float:
    return value


@methods.method("round(decimals?)", "Rounds to the given number of decimals", "(1.256).round(2) // 1.26")
def round_(value: int | float, decimals: Any = 0) -> int | float:
    places = to_integer(decimals)
    if places <= 0:
        return js_round(value)
    factor = 10**places
    return js_round(value * factor) / factor


@methods.method("floor()", "Rounds down to an integer")
def floor(value: int | float) -> int | float:
    return value if math.isnan(value) or math.isinf(value) else math.floor(value)


@methods.method("ceil()", "Rounds up to an integer")
def ceil(value: int | float) -> int | float:
    return value if math.isnan(value) or math.isinf(value) else math.ceil(value)


@methods.method("abs()", "Absolute value")
def abs_(value: int | float) -> int | float:
    return abs(value)


@methods.method("isEven()", "Whether the number is an even integer", returns="boolean")
def is_even(value: int | float) -> bool:
    return float(value).is_integer() and int(value) % 2 == 0


@methods.method("isOdd()", "Whether the number is an odd integer", returns="boolean")
def is_odd(value: int | float) -> bool:
    return float(value).is_integer() and int(value) % 2 == 1


@methods.method("isInteger()", "Whether the number has no fractional part", returns="boolean")
def is_integer(value: int | float) -> bool:
    return isinstance(value, int) or (math.isfinite(value) and float(value).is_integer())


@methods.method("isEmpty()", "Always false for numbers", returns="boolean")
def is_empty(value: int | float) -> bool:
    return False


@methods.method("toBoolean()", "False for 0 and NaN, otherwise true", returns="boolean")
def to_boolean(value: int | float) -> bool:
    return not (value == 0 or math.isnan(value))


@methods.method("toDateTime(unit?)", "Interprets the number as an epoch timestamp (ms, s or us)", returns="date")
def to_date_time(value: int | float, unit: Any = "ms") -> dt.datetime:
    from .dates import from_epoch

    scale = {"ms": 1, "s": 1000, "us": 0.001}.get("ms" if is_undefined(unit) else to_string(unit))
    if scale is None:
        raise EvaluationError(f"Unknown timestamp unit: {to_string(unit)}")
    return from_epoch(to_number(value) * scale)


@methods.method("format(decimals?)", "Thousands-separated string with fixed decimals", "(1234.5).format(2) // \"1,234.50\"", returns="string")
def format_(value: int | float, decimals: Any = UNDEFINED) -> str:
    if is_undefined(decimals):
        return to_locale_string(value)
    if math.isnan(value) or math.isinf(value):
        return format_number(value)
    return f"{value:,.{max(0, min(20, to_integer(decimals)))}f}"
