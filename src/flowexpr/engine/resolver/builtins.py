"""
Global surface of the expression language.

Two families of names resolve without a context binding:

    Globals (allowed through SecurityConfig.allowed_globals)
        Math, JSON, String, Number, Boolean, Array, Object, Date,
        parseInt, parseFloat, isNaN, isFinite, DateTime (datetime library)

    $-functions (always bound, documented for completion and validation)
        $if, $ifEmpty, $isEmpty, $length, $upper, $formatDate, $uuid, ...

Globals are HostObject namespaces: only the members listed here are
reachable, never Python attributes of the implementation.
"""

from __future__ import annotations

import datetime as dt
import json
import math
import random
import re
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from ..exceptions import EvaluationError, InvalidDateError, VariableAssignmentError
from ..extensions import arrays, dates, numbers, strings
from ..extensions.registry import arg_bounds
from . import guard
from .classifier import search_json
from .proxies import is_read_only
from .values import (
    MAX_SAFE_INTEGER,
    UNDEFINED,
    HostObject,
    MissingMember,
    arithmetic,
    call_callback,
    is_nullish,
    is_number,
    is_undefined,
    to_integer,
    to_number,
    to_property_key,
    to_string,
    truthy,
)


class Namespace(HostObject):
    """Read-only bag of members such as Math or JSON."""

    def __init__(self, name: str, members: dict[str, Any], docs: dict[str, str] | None = None):
        self.name = name
        self.members = members
        self.docs = docs or {}

    def js_member(self, name: str) -> Any:
        if name in self.members:
            return self.members[name]
        return MissingMember(name=name, obj=self)

    def js_plain(self) -> Any:
        return f"[object {self.name}]"

    def __repr__(self) -> str:
        return f"<namespace {self.name}>"


class CallableNamespace(Namespace):
    """Namespace that is also a function (String(x), Number(x), Date())."""

    js_type = "function"

    def __init__(
        self,
        name: str,
        func: Callable[..., Any],
        members: dict[str, Any],
        docs: dict[str, str] | None = None,
        construct: Callable[..., Any] | None = None,
    ):
        super().__init__(name, members, docs)
        self.func = func
        self.construct = construct
        self.__name__ = name

    def __call__(self, *args: Any) -> Any:
        return self.func(*args)

    def js_plain(self) -> Any:
        return f"function {self.name}() {{ [native code] }}"


def construct(callee: Any, *args: Any) -> Any:
    """The new operator: only namespaces with a constructor support it."""
    if isinstance(callee, CallableNamespace) and callee.construct is not None:
        return callee.construct(*args)
    raise EvaluationError(f"{to_string(callee) if not is_undefined(callee) else 'undefined'} is not a constructor")


def _arg(args: tuple[Any, ...], index: int) -> Any:
    return args[index] if index < len(args) else UNDEFINED


# =============================================================================
# Math
# =============================================================================


def _math_unary(func: Callable[[float], float]) -> Callable[..., Any]:
    def wrapper(*args: Any) -> Any:
        x = to_number(_arg(args, 0))
        if isinstance(x, float) and math.isnan(x):
            return math.nan
        try:
            result = func(x)
        except ValueError:
            return math.nan
        except OverflowError:
            return math.inf
        if isinstance(result, float) and result.is_integer() and abs(result) <= MAX_SAFE_INTEGER:
            return int(result)
        return result

    return wrapper


def _rounding(func: Callable[[float], int]) -> Callable[..., Any]:
    def wrapper(*args: Any) -> Any:
        x = to_number(_arg(args, 0))
        if isinstance(x, float) and (math.isnan(x) or math.isinf(x)):
            return x
        return func(x)

    return wrapper


def _math_min(*args: Any) -> int | float:
    values = [to_number(a) for a in args]
    if any(isinstance(v, float) and math.isnan(v) for v in values):
        return math.nan
    return min(values) if values else math.inf


def _math_max(*args: Any) -> int | float:
    values = [to_number(a) for a in args]
    if any(isinstance(v, float) and math.isnan(v) for v in values):
        return math.nan
    return max(values) if values else -math.inf


def _math_sign(*args: Any) -> int | float:
    x = to_number(_arg(args, 0))
    if isinstance(x, float) and math.isnan(x):
        return math.nan
    return (x > 0) - (x < 0)


def _math_pow(*args: Any) -> int | float:
    return arithmetic("**", _arg(args, 0), _arg(args, 1))


def _math_atan2(*args: Any) -> float:
    return math.atan2(to_number(_arg(args, 0)), to_number(_arg(args, 1)))


def _math_hypot(*args: Any) -> float:
    return math.hypot(*(to_number(a) for a in args))


def _cbrt(x: float) -> float:
    return math.copysign(abs(x) ** (1 / 3), x)


MATH = Namespace(
    "Math",
    {
        "PI": math.pi,
        "E": math.e,
        "LN2": math.log(2),
        "LN10": math.log(10),
        "LOG2E": 1 / math.log(2),
        "LOG10E": 1 / math.log(10),
        "SQRT2": math.sqrt(2),
        "SQRT1_2": math.sqrt(0.5),
        "abs": _math_unary(abs),
        "ceil": _rounding(math.ceil),
        "floor": _rounding(math.floor),
        "round": _rounding(numbers.js_round),
        "trunc": _rounding(math.trunc),
        "sign": _math_sign,
        "sqrt": _math_unary(math.sqrt),
        "cbrt": _math_unary(_cbrt),
        "exp": _math_unary(math.exp),
        "log": _math_unary(lambda x: math.log(x) if x != 0 else -math.inf),
        "log2": _math_unary(lambda x: math.log2(x) if x != 0 else -math.inf),
        "log10": _math_unary(lambda x: math.log10(x) if x != 0 else -math.inf),
        "sin": _math_unary(math.sin),
        "cos": _math_unary(math.cos),
        "tan": _math_unary(math.tan),
        "asin": _math_unary(math.asin),
        "acos": _math_unary(math.acos),
        "atan": _math_unary(math.atan),
        "atan2": _math_atan2,
        "hypot": _math_hypot,
        "pow": _math_pow,
        "min": _math_min,
        "max": _math_max,
        "random": lambda: random.random(),
    },
    {
        "PI": "Ratio of a circle's circumference to its diameter",
        "abs": "Absolute value",
        "ceil": "Smallest integer >= x",
        "floor": "Largest integer <= x",
        "round": "Nearest integer (halves round up)",
        "max": "Largest of the arguments",
        "min": "Smallest of the arguments",
        "pow": "x raised to y",
        "random": "Pseudo-random number in [0, 1)",
        "sqrt": "Square root",
        "trunc": "Integer part of x",
    },
)


# =============================================================================
# JSON
# =============================================================================


def _json_parse(*args: Any) -> Any:
    text = to_string(_arg(args, 0))
    guard.reserve(len(text))
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise EvaluationError(f"Unexpected token in JSON at position {e.pos}", description=e.msg) from e


def _json_stringify(*args: Any) -> Any:
    return strings.stringify(_arg(args, 0), _arg(args, 2) if len(args) > 2 else None)


JSON_NAMESPACE = Namespace(
    "JSON",
    {"parse": _json_parse, "stringify": _json_stringify},
    {"parse": "Parses a JSON string", "stringify": "Serializes a value to JSON"},
)


# =============================================================================
# String, Number, Boolean
# =============================================================================


def _from_char_code(*codes: Any) -> str:
    return "".join(chr(to_integer(c) & 0xFFFF) for c in codes)


STRING = CallableNamespace(
    "String",
    lambda *args: to_string(args[0]) if args else "",
    {"fromCharCode": _from_char_code},
    {"fromCharCode": "String from UTF-16 code units"},
)


def _number_is_integer(*args: Any) -> bool:
    x = _arg(args, 0)
    return is_number(x) and math.isfinite(x) and float(x).is_integer()


def _number_is_safe_integer(*args: Any) -> bool:
    x = _arg(args, 0)
    return _number_is_integer(x) and abs(x) <= MAX_SAFE_INTEGER


def _number_is_finite(*args: Any) -> bool:
    x = _arg(args, 0)
    return is_number(x) and math.isfinite(x)


def _number_is_nan(*args: Any) -> bool:
    x = _arg(args, 0)
    return isinstance(x, float) and math.isnan(x)


NUMBER = CallableNamespace(
    "Number",
    lambda *args: to_number(args[0]) if args else 0,
    {
        "isInteger": _number_is_integer,
        "isSafeInteger": _number_is_safe_integer,
        "isFinite": _number_is_finite,
        "isNaN": _number_is_nan,
        "parseInt": lambda *args: numbers.parse_int(_arg(args, 0), _arg(args, 1)),
        "parseFloat": lambda *args: numbers.parse_float(_arg(args, 0)),
        "MAX_SAFE_INTEGER": MAX_SAFE_INTEGER,
        "MIN_SAFE_INTEGER": -MAX_SAFE_INTEGER,
        "EPSILON": 2.0**-52,
        "MAX_VALUE": 1.7976931348623157e308,
        "MIN_VALUE": 5e-324,
        "POSITIVE_INFINITY": math.inf,
        "NEGATIVE_INFINITY": -math.inf,
        "NaN": math.nan,
    },
    {
        "isInteger": "Whether the value is an integral number",
        "isFinite": "Whether the value is a finite number",
        "isNaN": "Whether the value is NaN",
        "parseFloat": "Parses a decimal number",
        "parseInt": "Parses an integer in the given radix",
    },
)

BOOLEAN = CallableNamespace("Boolean", lambda *args: truthy(args[0]) if args else False, {})


# =============================================================================
# Array, Object
# =============================================================================


def _array_from(*args: Any) -> list[Any]:
    source, fn = _arg(args, 0), _arg(args, 1)
    if isinstance(source, str):
        items: list[Any] = list(source)
    elif isinstance(source, (list, tuple)):
        items = list(source)
    elif isinstance(source, Mapping) and "length" in source:
        count = to_integer(source["length"])
        guard.reserve(count * 8)
        items = [source.get(str(i), UNDEFINED) for i in range(max(count, 0))]
    else:
        items = []
    if is_undefined(fn):
        return items
    return [call_callback(fn, item, i) for i, item in enumerate(items)]


def _array_call(*args: Any) -> list[Any]:
    if len(args) == 1 and is_number(args[0]):
        count = to_integer(args[0])
        if count < 0 or count != args[0]:
            raise EvaluationError("Invalid array length")
        guard.reserve(count * 8)
        return [UNDEFINED] * count
    return list(args)


ARRAY = CallableNamespace(
    "Array",
    _array_call,
    {
        "isArray": lambda *args: isinstance(_arg(args, 0), (list, tuple)),
        "from": _array_from,
        "of": lambda *args: list(args),
    },
    {
        "isArray": "Whether the value is an array",
        "from": "Array from a string, array or array-like object",
        "of": "Array of the arguments",
    },
    construct=_array_call,
)


def _require_object(value: Any, func: str) -> Mapping[str, Any]:
    if is_nullish(value):
        raise EvaluationError(f"Cannot convert undefined or null to object in Object.{func}()")
    if isinstance(value, Mapping):
        return value
    if isinstance(value, (list, tuple, str)):
        return {str(i): item for i, item in enumerate(value)}
    return {}


def _object_assign(*args: Any) -> dict[str, Any]:
    # The target is copied, not written; a read-only target is still a write attempt
    if args and is_read_only(args[0]):
        raise VariableAssignmentError("Object.assign() cannot modify a read-only binding")
    merged: dict[str, Any] = {}
    for source in args:
        if not is_nullish(source):
            merged.update({to_property_key(k): v for k, v in _require_object(source, "assign").items()})
    return merged


def _object_from_entries(*args: Any) -> dict[str, Any]:
    entries = _arg(args, 0)
    if not isinstance(entries, (list, tuple)):
        raise EvaluationError("Object.fromEntries() expects an array of [key, value] pairs")
    result: dict[str, Any] = {}
    for entry in entries:
        if not isinstance(entry, (list, tuple)):
            raise EvaluationError("Object.fromEntries() expects an array of [key, value] pairs")
        result[to_property_key(_arg(tuple(entry), 0))] = _arg(tuple(entry), 1)
    return result


OBJECT = CallableNamespace(
    "Object",
    lambda *args: dict(_require_object(args[0], "call")) if args and not is_nullish(args[0]) else {},
    {
        "keys": lambda *args: [to_property_key(k) for k in _require_object(_arg(args, 0), "keys")],
        "values": lambda *args: list(_require_object(_arg(args, 0), "values").values()),
        "entries": lambda *args: [
            [to_property_key(k), v] for k, v in _require_object(_arg(args, 0), "entries").items()
        ],
        "assign": _object_assign,
        "fromEntries": _object_from_entries,
        "freeze": lambda *args: _arg(args, 0),
    },
    {
        "keys": "Array of an object's keys",
        "values": "Array of an object's values",
        "entries": "Array of [key, value] pairs",
        "assign": "New object with the sources' keys merged left to right",
        "fromEntries": "Object from [key, value] pairs",
    },
)


# =============================================================================
# Date, DateTime
# =============================================================================


def _now() -> dt.datetime:
    return dt.datetime.now(dates.UTC)


def _date_from_parts(*args: Any) -> dt.datetime:
    parts = [to_integer(a) for a in args] + [0] * (7 - len(args))
    year, month, day, hour, minute, second, ms = parts[:7]
    base = dt.datetime(year, 1, 1, tzinfo=dates.UTC)
    try:
        result = dates.shift(base, {"months": month})
        return result + dt.timedelta(
            days=(day or 1) - 1, hours=hour, minutes=minute, seconds=second, milliseconds=ms
        )
    except (ValueError, OverflowError) as e:
        raise InvalidDateError(list(args)) from e


def _date_construct(*args: Any) -> dt.datetime:
    if not args:
        return _now()
    if len(args) == 1:
        return dates.to_datetime(args[0])
    if len(args) < 3:
        args = (*args, 1)
    return _date_from_parts(*args)


def _date_parse(*args: Any) -> int | float:
    try:
        return dates.to_millis(dates.to_datetime(to_string(_arg(args, 0))))
    except InvalidDateError:
        return math.nan


DATE = CallableNamespace(
    "Date",
    lambda *args: dates.to_iso(_now()),
    {
        "now": lambda: dates.to_millis(_now()),
        "parse": _date_parse,
        "UTC": lambda *args: dates.to_millis(_date_from_parts(*args)),
    },
    {
        "now": "Current time in epoch milliseconds",
        "parse": "Epoch milliseconds of a date string, or NaN",
        "UTC": "Epoch milliseconds of UTC date parts",
    },
    construct=_date_construct,
)


def _from_object(*args: Any) -> dt.datetime:
    fields = _arg(args, 0)
    if not isinstance(fields, Mapping):
        raise EvaluationError("DateTime.fromObject() expects an object such as {year: 2024}")
    base = dt.datetime(1970, 1, 1, tzinfo=dates.UTC)
    defaults = {"year": _now().year, "month": 1, "day": 1}
    return dates.set_(base, {**defaults, **fields})


def _from_seconds(*args: Any) -> dt.datetime:
    return dates.from_epoch(to_number(_arg(args, 0)) * 1000)


def _utc(*args: Any) -> dt.datetime:
    if not args:
        return _now()
    if len(args) < 3:
        args = (*args, 1, 1)[:3]
    parts = [to_integer(a) for a in args]
    # DateTime.utc takes a 1-based month
    return _date_from_parts(parts[0], parts[1] - 1, *parts[2:])


def _extreme(pick: Callable[..., Any]) -> Callable[..., Any]:
    def wrapper(*args: Any) -> Any:
        values = [dates.to_datetime(a) for a in args]
        return pick(values, key=dates.to_millis) if values else UNDEFINED

    return wrapper


DATETIME = Namespace(
    "DateTime",
    {
        "now": _now,
        "local": _utc,
        "utc": _utc,
        "fromISO": lambda *args: dates.to_datetime(to_string(_arg(args, 0))),
        "fromMillis": lambda *args: dates.from_epoch(to_number(_arg(args, 0))),
        "fromSeconds": _from_seconds,
        "fromJSDate": lambda *args: dates.to_datetime(_arg(args, 0)),
        "fromSQL": lambda *args: dates.to_datetime(to_string(_arg(args, 0))),
        "fromHTTP": lambda *args: dates.to_datetime(to_string(_arg(args, 0))),
        "fromRFC2822": lambda *args: dates.to_datetime(to_string(_arg(args, 0))),
        "fromFormat": lambda *args: dates.parse_format(_arg(args, 0), _arg(args, 1)),
        "fromObject": _from_object,
        "isDateTime": lambda *args: isinstance(_arg(args, 0), dt.datetime),
        "min": _extreme(min),
        "max": _extreme(max),
    },
    {
        "now": "Current date and time",
        "utc": "DateTime from UTC parts (year, month, day, ...)",
        "fromISO": "Parses an ISO-8601 string",
        "fromMillis": "DateTime from epoch milliseconds",
        "fromSeconds": "DateTime from epoch seconds",
        "fromSQL": "Parses an SQL timestamp",
        "fromHTTP": "Parses an HTTP-date",
        "fromRFC2822": "Parses an RFC 2822 date",
        "fromFormat": "Parses text with Luxon format tokens",
        "fromObject": "DateTime from {year, month, day, ...}",
    },
)


# =============================================================================
# Global functions
# =============================================================================


def _is_nan(*args: Any) -> bool:
    x = to_number(_arg(args, 0))
    return isinstance(x, float) and math.isnan(x)


def _is_finite(*args: Any) -> bool:
    x = to_number(_arg(args, 0))
    return math.isfinite(x)


def _named(name: str, func: Callable[..., Any]) -> Callable[..., Any]:
    func.__name__ = name
    return func


def create_globals(include_datetime: bool = True) -> dict[str, Any]:
    """Global names an expression may reference (subject to allowed_globals)."""
    surface: dict[str, Any] = {
        "Math": MATH,
        "JSON": JSON_NAMESPACE,
        "String": STRING,
        "Number": NUMBER,
        "Boolean": BOOLEAN,
        "Array": ARRAY,
        "Object": OBJECT,
        "Date": DATE,
        "parseInt": _named("parseInt", lambda *args: numbers.parse_int(_arg(args, 0), _arg(args, 1))),
        "parseFloat": _named("parseFloat", lambda *args: numbers.parse_float(_arg(args, 0))),
        "isNaN": _named("isNaN", _is_nan),
        "isFinite": _named("isFinite", _is_finite),
    }
    if include_datetime:
        surface["DateTime"] = DATETIME
    return surface


NAMESPACES: dict[str, Namespace] = {
    ns.name: ns for ns in (MATH, JSON_NAMESPACE, STRING, NUMBER, BOOLEAN, ARRAY, OBJECT, DATE, DATETIME)
}


# =============================================================================
# $-functions
# =============================================================================


@dataclass(frozen=True)
class BuiltinFunction:
    """A $-function with documentation and argument bounds."""

    name: str
    func: Callable[..., Any]
    signature: str
    description: str
    example: str = ""
    min_args: int = 0
    max_args: int | None = None
    requires: str | None = None
    volatile: bool = False

    @property
    def __name__(self) -> str:  # type: ignore[override]
        return self.name

    def __call__(self, *args: Any) -> Any:
        self.check_arity(len(args))
        return self.func(*args)

    def check_arity(self, count: int) -> None:
        if count < self.min_args or (self.max_args is not None and count > self.max_args):
            if self.max_args is None:
                expected = f"at least {self.min_args}"
            elif self.min_args == self.max_args:
                expected = f"exactly {self.min_args}"
            else:
                expected = f"{self.min_args} to {self.max_args}"
            raise EvaluationError(
                f"{self.name}() expects {expected} argument(s), got {count}",
                description=f"Usage: {self.signature}",
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "signature": self.signature,
            "description": self.description,
            "example": self.example,
        }


DOLLAR_FUNCTIONS: dict[str, BuiltinFunction] = {}


def dollar_function(
    signature: str,
    description: str,
    example: str = "",
    requires: str | None = None,
    volatile: bool = False,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        name = signature.split("(", 1)[0]
        minimum, maximum = arg_bounds(func, skip=0)
        DOLLAR_FUNCTIONS[name] = BuiltinFunction(
            name=name,
            func=func,
            signature=signature,
            description=description,
            example=example,
            min_args=minimum,
            max_args=maximum,
            requires=requires,
            volatile=volatile,
        )
        return func

    return decorator


def dollar_functions(libraries: Mapping[str, bool] | None = None) -> dict[str, BuiltinFunction]:
    """$-functions available with the given library switches."""
    enabled = libraries or {}
    return {
        name: fn
        for name, fn in DOLLAR_FUNCTIONS.items()
        if fn.requires is None or enabled.get(fn.requires, False)
    }


def _is_empty(value: Any) -> bool:
    if is_nullish(value):
        return True
    if isinstance(value, (str, list, tuple, Mapping)):
        return len(value) == 0
    return False


@dollar_function("$if(condition, valueIfTrue, valueIfFalse?)", "Returns one of two values by condition", '$if($json.active, "on", "off")')
def _if(condition: Any, when_true: Any, when_false: Any = None) -> Any:
    return when_true if truthy(condition) else when_false


@dollar_function("$ifEmpty(value, default)", "value, or default when value is empty", '$ifEmpty($json.title, "Untitled")')
def _if_empty(value: Any, default: Any) -> Any:
    return default if _is_empty(value) else value


@dollar_function("$isEmpty(value)", "Whether value is null, undefined, \"\", [] or {}")
def _is_empty_fn(value: Any) -> bool:
    return _is_empty(value)


@dollar_function("$isNotEmpty(value)", "Whether value is not empty")
def _is_not_empty(value: Any) -> bool:
    return not _is_empty(value)


@dollar_function("$length(value)", "Length of a string or array, or key count of an object", "$length($json.items)")
def _length(value: Any) -> int:
    if isinstance(value, (str, list, tuple, Mapping)):
        return len(value)
    return 0


@dollar_function("$keys(object)", "Array of the object's keys")
def _keys(value: Any) -> list[str]:
    return [to_property_key(k) for k in value] if isinstance(value, Mapping) else []


@dollar_function("$values(object)", "Array of the object's values")
def _values(value: Any) -> list[Any]:
    return list(value.values()) if isinstance(value, Mapping) else []


@dollar_function("$unique(array)", "Array without duplicates")
def _unique(value: Any) -> list[Any]:
    return arrays.unique(list(value)) if isinstance(value, (list, tuple)) else []


@dollar_function("$sort(array, key?)", "Sorted copy, optionally by an object key", '$sort($json.items, "name")')
def _sort(value: Any, key: Any = UNDEFINED) -> list[Any]:
    if not isinstance(value, (list, tuple)):
        return []
    field_name = None if is_nullish(key) else to_property_key(key)

    def sort_key(item: Any) -> tuple[int, Any]:
        picked = item.get(field_name) if field_name and isinstance(item, Mapping) else item
        if is_number(picked):
            return (0, picked)
        return (1, to_string(picked))

    return sorted(value, key=sort_key)


@dollar_function("$filter(array, fn)", "Elements for which fn returns truthy", "$filter($json.items, item => item.price > 100)")
def _filter(value: Any, fn: Any) -> list[Any]:
    return arrays.filter_(list(value), fn) if isinstance(value, (list, tuple)) else []


@dollar_function("$map(array, fn)", "New array of fn's results")
def _map(value: Any, fn: Any) -> list[Any]:
    return arrays.map_(list(value), fn) if isinstance(value, (list, tuple)) else []


@dollar_function("$find(array, fn)", "First element for which fn returns truthy, or null")
def _find(value: Any, fn: Any) -> Any:
    if not isinstance(value, (list, tuple)):
        return None
    found = arrays.find(list(value), fn)
    return None if is_undefined(found) else found


@dollar_function("$groupBy(array, key)", "Object of arrays grouped by the key's value", '$groupBy($json.users, "role")')
def _group_by(value: Any, key: Any) -> dict[str, list[Any]]:
    if not isinstance(value, (list, tuple)):
        return {}
    name = to_property_key(key)
    groups: dict[str, list[Any]] = {}
    for item in value:
        picked = item.get(name) if isinstance(item, Mapping) else None
        group = to_string(picked) if truthy(picked) else "undefined"
        groups.setdefault(group, []).append(item)
    return groups


@dollar_function("$sum(array)", "Sum of the numeric elements")
def _sum(value: Any) -> int | float:
    return arrays.sum_(list(value)) if isinstance(value, (list, tuple)) else 0


@dollar_function("$min(...numbers)", "Smallest argument", "$min(1, 5, 3)")
def _min(*values: Any) -> int | float:
    return _math_min(*values)


@dollar_function("$max(...numbers)", "Largest argument", "$max(1, 5, 3)")
def _max(*values: Any) -> int | float:
    return _math_max(*values)


@dollar_function("$upper(text)", "Text in upper case")
def _upper(value: Any) -> str:
    return to_string(value if truthy(value) else "").upper()


@dollar_function("$lower(text)", "Text in lower case")
def _lower(value: Any) -> str:
    return to_string(value if truthy(value) else "").lower()


@dollar_function("$capitalize(text)", "First letter upper case, rest lower case")
def _capitalize(value: Any) -> str:
    text = to_string(value if truthy(value) else "")
    return text[:1].upper() + text[1:].lower()


@dollar_function("$trim(text)", "Text without surrounding whitespace")
def _trim(value: Any) -> str:
    return to_string(value if truthy(value) else "").strip()


@dollar_function("$replace(text, pattern, replacement)", "Replaces every match of a regular expression", '$replace($json.text, "old", "new")')
def _replace(value: Any, pattern: Any, replacement: Any) -> str:
    text = to_string(value if truthy(value) else "")
    try:
        regex = re.compile(to_string(pattern))
    except re.error as e:
        raise EvaluationError(f"Invalid regular expression: {e}") from e
    result = regex.sub(lambda _: to_string(replacement), text)
    guard.reserve(len(result))
    return result


@dollar_function("$split(text, separator)", "Array of substrings", '$split($json.tags, ",")')
def _split(value: Any, separator: Any) -> list[str]:
    return to_string(value if truthy(value) else "").split(to_string(separator))


@dollar_function("$join(array, separator?)", "Elements joined into a string")
def _join(value: Any, separator: Any = ",") -> str:
    if not isinstance(value, (list, tuple)):
        return ""
    return to_string(separator).join(to_string(item) for item in value)


@dollar_function("$number(value, decimals?)", "Value as a number (0 when not numeric), optionally rounded")
def _number(value: Any, decimals: Any = UNDEFINED) -> int | float:
    number = to_number(value)
    if isinstance(number, float) and math.isnan(number):
        return 0
    if is_number(decimals):
        return to_number(numbers.to_fixed(number, decimals))
    return number


@dollar_function("$jmespath(object, query)", "Runs a JMESPath query against a value", '$jmespath($json, "items[*].name")', requires="jmespath")
def _jmespath(value: Any, query: Any) -> Any:
    return search_json(value, query)


@dollar_function("$formatDate(value?, format?)", "Formats a date with YYYY/MM/DD/HH/mm/ss tokens", '$formatDate($json.createdAt, "YYYY-MM-DD HH:mm:ss")')
def _format_date(value: Any = UNDEFINED, fmt: Any = "YYYY-MM-DD") -> str:
    return dates.format_date(value, fmt)


@dollar_function("$random(min?, max?)", "Pseudo-random number in [min, max)", volatile=True)
def _random(low: Any = 0, high: Any = 1) -> float:
    lo, hi = to_number(low), to_number(high)
    return random.random() * (hi - lo) + lo


@dollar_function("$randomInt(min?, max?)", "Pseudo-random integer in [min, max]", "$randomInt(1, 10)", volatile=True)
def _random_int(low: Any = 0, high: Any = 100) -> int:
    lo, hi = to_integer(low), to_integer(high)
    if hi < lo:
        lo, hi = hi, lo
    return random.randint(lo, hi)


@dollar_function("$uuid()", "Random UUID (version 4)", volatile=True)
def _uuid() -> str:
    return str(uuid.uuid4())


@dollar_function("$timestamp()", "Current time in epoch milliseconds", volatile=True)
def _timestamp() -> int:
    return dates.to_millis(_now())
