"""
JavaScript value semantics on top of Python values.

Value model:
    null          -> None
    undefined     -> JsUndefined (a jinja2 Undefined subclass)
    boolean       -> bool
    number        -> int (integral, |n| <= 2**53) or float (IEEE-754 double)
    string        -> str
    array         -> list
    object        -> dict
    date          -> timezone-aware datetime

Three undefined flavours drive member access failures:
    MissingMember      property/method absent on a defined receiver
                       (acts as undefined; calling it is UnknownMethodError)
    NullMember         property read on null/undefined
                       (calling it is NullReceiverError; any other use fails)
    OptionalUndefined  result of a short-circuited ?. chain
"""

from __future__ import annotations

import datetime as dt
import math
import re
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, NoReturn

from jinja2 import Undefined

from ..exceptions import EvaluationError, NullReceiverError, UnknownMethodError

MAX_SAFE_INTEGER = 2**53 - 1

_NUMERIC_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_INTEGER_RE = re.compile(r"^[+-]?\d+$")


# =============================================================================
# undefined
# =============================================================================


class JsUndefined(Undefined):
    """JavaScript undefined."""

    __slots__ = ()

    def _fail_with_undefined_error(self, *args: Any, **kwargs: Any) -> NoReturn:
        name = self._undefined_name
        if name:
            raise EvaluationError(f"Cannot read properties of undefined (reading '{name}')")
        raise EvaluationError("Cannot use undefined here")

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        raise EvaluationError("undefined is not a function")

    def __repr__(self) -> str:
        return "undefined"

    def __str__(self) -> str:
        return "undefined"


class MissingMember(JsUndefined):
    __slots__ = ()

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        raise UnknownMethodError(self._undefined_name or "?", type_name_of(self._undefined_obj))


class NullMember(JsUndefined):
    __slots__ = ()

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        raise NullReceiverError(self._undefined_name or "?")

    def _fail_with_undefined_error(self, *args: Any, **kwargs: Any) -> NoReturn:
        receiver = "null" if self._undefined_obj is None else "undefined"
        raise EvaluationError(
            f"Cannot read properties of {receiver} (reading '{self._undefined_name}')",
            description=f"Use optional chaining, e.g. my_var?.{self._undefined_name}",
        )

    def __str__(self) -> str:
        self._fail_with_undefined_error()

    __eq__ = __ne__ = __bool__ = __hash__ = __iter__ = __len__ = _fail_with_undefined_error  # type: ignore[assignment]


class OptionalUndefined(JsUndefined):
    __slots__ = ()

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self


UNDEFINED = JsUndefined()


def is_undefined(value: Any) -> bool:
    return isinstance(value, Undefined)


def is_nullish(value: Any) -> bool:
    return value is None or isinstance(value, Undefined)


def ensure_value(value: Any) -> Any:
    """Raise if value is a failed property read that must not flow further."""
    if isinstance(value, NullMember):
        value._fail_with_undefined_error()
    return value


# =============================================================================
# Host objects
# =============================================================================


class HostObject:
    """Object exposing a curated member surface to expressions.

    Python attributes are never reachable from expressions; only names
    returned by js_member are.
    """

    js_type = "object"

    def js_member(self, name: str) -> Any:
        return MissingMember(name=name, obj=self)

    def js_plain(self) -> Any:
        return f"[object {type(self).__name__}]"


class JsFunction:
    """Expression-defined function; receives every callback argument."""

    js_type = "function"


def call_callback(fn: Any, *args: Any) -> Any:
    """Invoke a callback the way array methods do.

    Expression functions see (item, index, array); host callables such as
    Number or String receive the item only.
    """
    ensure_value(fn)
    if isinstance(fn, JsFunction):
        return fn(*args)
    if isinstance(fn, Undefined):
        raise EvaluationError("undefined is not a function")
    if not callable(fn):
        raise EvaluationError(f"{to_string(fn)} is not a function")
    return fn(*args[:1])


def type_name_of(value: Any) -> str:
    """Extension-registry type tag (string, number, boolean, array, object, date)."""
    if value is None:
        return "null"
    if isinstance(value, Undefined):
        return "undefined"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (dt.datetime, dt.date)):
        return "date"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, HostObject):
        return value.js_type
    if callable(value):
        return "function"
    return "object"


# =============================================================================
# Conversions
# =============================================================================


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def clamp_int(value: int | float) -> int | float:
    """Integers beyond the safe range degrade to doubles."""
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) > MAX_SAFE_INTEGER:
        return float(value)
    return value


def truthy(value: Any) -> bool:
    ensure_value(value)
    if value is None or isinstance(value, Undefined):
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return not (value == 0 or math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def to_number(value: Any) -> int | float:
    ensure_value(value)
    if value is None:
        return 0
    if isinstance(value, Undefined):
        return math.nan
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return clamp_int(value)
    if isinstance(value, str):
        return _string_to_number(value)
    if isinstance(value, dt.datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, (list, tuple)):
        if not value:
            return 0
        if len(value) == 1:
            return to_number(to_string(value[0]))
    return math.nan


def _string_to_number(text: str) -> int | float:
    s = text.strip()
    if s == "":
        return 0
    if _INTEGER_RE.match(s):
        return clamp_int(int(s))
    if _NUMERIC_RE.match(s):
        return float(s)
    lowered = s.lower()
    try:
        if lowered.startswith("0x"):
            return clamp_int(int(s[2:], 16))
        if lowered.startswith("0b"):
            return clamp_int(int(s[2:], 2))
        if lowered.startswith("0o"):
            return clamp_int(int(s[2:], 8))
    except ValueError:
        return math.nan
    if s in ("Infinity", "+Infinity"):
        return math.inf
    if s == "-Infinity":
        return -math.inf
    return math.nan


def format_number(value: int | float) -> str:
    """Number to string the way JavaScript's String(n) does it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    text = repr(value)
    if "e" not in text:
        return text
    mantissa, exponent = text.split("e")
    exp = int(exponent)
    if -7 < exp < 21:
        return format(Decimal(text), "f")
    return f"{mantissa}e{'+' if exp > 0 else '-'}{abs(exp)}"


def to_string(value: Any) -> str:
    """JavaScript String(value)."""
    ensure_value(value)
    if value is None:
        return "null"
    if isinstance(value, Undefined):
        return "undefined"
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return format_number(value)
    if isinstance(value, (list, tuple)):
        return ",".join("" if is_nullish(item) else to_string(item) for item in value)
    if isinstance(value, dt.datetime):
        from ..extensions.dates import to_iso

        return to_iso(value)
    if isinstance(value, dt.date):
        return value.isoformat()
    if isinstance(value, Mapping):
        return "[object Object]"
    if isinstance(value, HostObject):
        plain = value.js_plain()
        return plain if isinstance(plain, str) else to_string(plain)
    if callable(value):
        return f"function {getattr(value, '__name__', 'anonymous')}() {{ [native code] }}"
    return str(value)


def to_property_key(key: Any) -> str:
    if isinstance(key, str):
        return key
    return to_string(key)


def to_array_index(key: Any) -> int | None:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, float) and key.is_integer():
        return int(key)
    if isinstance(key, str) and key.isdigit() and (key == "0" or not key.startswith("0")):
        return int(key)
    return None


def to_integer(value: Any, default: int = 0) -> int:
    """ToIntegerOrInfinity, clamped into int range for indexing."""
    if is_nullish(value):
        return default
    number = to_number(value)
    if isinstance(number, float):
        if math.isnan(number):
            return 0
        if math.isinf(number):
            return MAX_SAFE_INTEGER if number > 0 else -MAX_SAFE_INTEGER
        return int(number)
    return number


def js_typeof(value: Any) -> str:
    ensure_value(value)
    if isinstance(value, Undefined):
        return "undefined"
    if value is None:
        return "object"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, HostObject):
        return "function" if callable(value) else "object"
    if callable(value):
        return "function"
    return "object"


# =============================================================================
# Equality and comparison
# =============================================================================


def strict_equals(a: Any, b: Any) -> bool:
    ensure_value(a)
    ensure_value(b)
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, Undefined) or isinstance(b, Undefined):
        return isinstance(a, Undefined) and isinstance(b, Undefined)
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if is_number(a) and is_number(b):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if isinstance(a, dt.datetime) and isinstance(b, dt.datetime):
        return a is b
    return a is b


def loose_equals(a: Any, b: Any) -> bool:
    ensure_value(a)
    ensure_value(b)
    if is_nullish(a) or is_nullish(b):
        return is_nullish(a) and is_nullish(b)
    if isinstance(a, bool):
        return loose_equals(to_number(a), b)
    if isinstance(b, bool):
        return loose_equals(a, to_number(b))
    if type_name_of(a) == type_name_of(b) and not isinstance(a, (list, tuple, Mapping)):
        if isinstance(a, dt.datetime):
            return a == b
        return strict_equals(a, b)
    if is_number(a) and isinstance(b, str):
        return a == to_number(b)
    if isinstance(a, str) and is_number(b):
        return to_number(a) == b
    if isinstance(a, (list, tuple, Mapping, dt.datetime)) and not isinstance(
        b, (list, tuple, Mapping, dt.datetime)
    ):
        return loose_equals(to_primitive(a), b)
    if isinstance(b, (list, tuple, Mapping, dt.datetime)) and not isinstance(
        a, (list, tuple, Mapping, dt.datetime)
    ):
        return loose_equals(a, to_primitive(b))
    return a is b


def to_primitive(value: Any) -> Any:
    if isinstance(value, dt.datetime):
        return to_string(value)
    if isinstance(value, (list, tuple, Mapping, HostObject)):
        return to_string(value)
    return value


def compare(op: str, a: Any, b: Any) -> bool:
    """Relational operators (<, >, <=, >=)."""
    a = to_primitive(ensure_value(a)) if not isinstance(a, dt.datetime) else a
    b = to_primitive(ensure_value(b)) if not isinstance(b, dt.datetime) else b
    if isinstance(a, str) and isinstance(b, str):
        left: Any = a
        right: Any = b
    else:
        left, right = to_number(a), to_number(b)
        if math.isnan(left) or math.isnan(right):
            return False
    if op == "<":
        return bool(left < right)
    if op == ">":
        return bool(left > right)
    if op == "<=":
        return bool(left <= right)
    if op == ">=":
        return bool(left >= right)
    raise ValueError(f"Unknown comparison operator: {op}")


# =============================================================================
# Arithmetic
# =============================================================================


def is_stringish(value: Any) -> bool:
    return isinstance(value, (str, list, tuple, Mapping, dt.datetime, HostObject))


def add_strings(a: Any, b: Any) -> str:
    return to_string(to_primitive(a)) + to_string(to_primitive(b))


def arithmetic(op: str, a: Any, b: Any) -> int | float:
    x = to_number(a)
    y = to_number(b)
    if op == "+":
        return clamp_int(x + y)
    if op == "-":
        return clamp_int(x - y)
    if op == "*":
        return clamp_int(x * y)
    if op == "/":
        return _divide(x, y)
    if op == "%":
        return _remainder(x, y)
    if op == "**":
        return _power(x, y)
    raise ValueError(f"Unknown arithmetic operator: {op}")


def _divide(x: int | float, y: int | float) -> float:
    if y == 0:
        if x == 0 or math.isnan(x):
            return math.nan
        return math.copysign(math.inf, x) * math.copysign(1.0, y)
    result = x / y
    return float(result)


def _remainder(x: int | float, y: int | float) -> int | float:
    if y == 0 or math.isnan(x) or math.isnan(y) or math.isinf(x):
        return math.nan
    if math.isinf(y):
        return x
    if isinstance(x, int) and isinstance(y, int):
        r = abs(x) % abs(y)
        return r if x >= 0 else -r
    return math.fmod(x, y)


def _power(x: int | float, y: int | float) -> int | float:
    if math.isnan(y) or (abs(x) == 1 and math.isinf(y)):
        return math.nan
    if y == 0:
        return 1
    if x == 0 and y < 0:
        return math.inf
    if isinstance(x, int) and isinstance(y, int) and y > 0:
        if abs(x) <= 1 or x.bit_length() * y <= 64:
            return clamp_int(x**y)
    try:
        return math.pow(x, y)
    except OverflowError:
        negative = x < 0 and float(y).is_integer() and int(y) % 2 == 1
        return -math.inf if negative else math.inf
    except ValueError:
        return math.nan


def unary(op: str, value: Any) -> int | float:
    number = to_number(value)
    if op == "-":
        if number == 0 and isinstance(number, int):
            return 0
        return -number
    if op == "+":
        return number
    raise ValueError(f"Unknown unary operator: {op}")


# =============================================================================
# Logical operator boxes
# =============================================================================


class Box:
    """Carries a value through Python's and/or with JavaScript truthiness."""

    __slots__ = ("value", "flag")

    def __init__(self, value: Any, flag: bool):
        self.value = value
        self.flag = flag

    def __bool__(self) -> bool:
        return self.flag


# =============================================================================
# Output normalization
# =============================================================================


def to_output(value: Any) -> Any:
    """Convert an evaluated value into plain Python data for callers."""
    ensure_value(value)
    if value is None or isinstance(value, Undefined):
        return None
    if isinstance(value, bool) or isinstance(value, str):
        return value
    if isinstance(value, int):
        return clamp_int(value)
    if isinstance(value, float):
        if value.is_integer() and abs(value) <= MAX_SAFE_INTEGER:
            return int(value)
        return value
    if isinstance(value, (list, tuple)):
        return [to_output(item) for item in value]
    if isinstance(value, Mapping):
        return {to_property_key(k): to_output(v) for k, v in value.items()}
    if isinstance(value, (dt.datetime, dt.date)):
        return value
    if isinstance(value, HostObject):
        return to_output(value.js_plain())
    if callable(value):
        return to_string(value)
    return value


def to_json_compatible(value: Any) -> Any:
    """Like to_output, but dates become ISO strings and non-finite numbers null."""
    plain = to_output(value)
    return _jsonify(plain)


def _jsonify(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, list):
        return [_jsonify(item) for item in value]
    if isinstance(value, dict):
        return {k: _jsonify(v) for k, v in value.items()}
    if isinstance(value, (dt.datetime, dt.date)):
        return to_string(value)
    return value
