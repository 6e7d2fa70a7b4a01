"""Array methods. Every method returns a new value; receivers are never mutated."""

from __future__ import annotations

import functools
import json
import math
import random
from collections.abc import Mapping
from typing import Any

from ..exceptions import EvaluationError
from ..resolver import guard
from ..resolver.values import (
    UNDEFINED,
    JsFunction,
    call_callback,
    is_nullish,
    is_undefined,
    strict_equals,
    to_integer,
    to_json_compatible,
    to_number,
    to_property_key,
    to_string,
    truthy,
)
from .registry import MethodTable

methods = MethodTable("array")


def _same_value_zero(a: Any, b: Any) -> bool:
    if isinstance(a, float) and isinstance(b, float) and math.isnan(a) and math.isnan(b):
        return True
    return strict_equals(a, b)


def _identity_key(value: Any) -> str:
    """Deep-equality key used by unique/difference/intersection."""
    return json.dumps(to_json_compatible(value), sort_keys=True, default=str)


def _relative_index(index: Any, length: int, default: int) -> int:
    i = to_integer(index, default)
    if i < 0:
        i = max(length + i, 0)
    return min(i, length)


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, UNDEFINED)
    return UNDEFINED


def _numbers(values: list[Any]) -> list[int | float]:
    return [to_number(v) for v in values if not is_nullish(v)]


def _default_sort_key(value: Any) -> tuple[int, str]:
    # undefined sorts last; everything else by its string form
    if is_undefined(value):
        return (1, "")
    return (0, to_string(value))


# =============================================================================
# Properties
# =============================================================================


@methods.property("length", "Number of elements", "[1, 2, 3].length // 3", "number")
def length(value: list[Any]) -> int:
    return len(value)


# =============================================================================
# JavaScript natives
# =============================================================================


@methods.method("at(index)", "Element at index; negative counts from the end", "[1, 2, 3].at(-1) // 3")
def at(value: list[Any], index: Any = 0) -> Any:
    i = to_integer(index)
    if i < 0:
        i += len(value)
    return value[i] if 0 <= i < len(value) else UNDEFINED


@methods.method("concat(...values)", "New array with values (or their elements) appended", returns="array")
def concat(value: list[Any], *others: Any) -> list[Any]:
    result = list(value)
    for other in others:
        if isinstance(other, (list, tuple)):
            result.extend(other)
        else:
            result.append(other)
    return guard.check_value(result)


@methods.method("every(fn)", "Whether fn returns truthy for every element", "[2, 4].every(n => n % 2 === 0) // true", returns="boolean")
def every(value: list[Any], fn: Any) -> bool:
    return all(truthy(call_callback(fn, item, i, value)) for i, item in enumerate(value))


@methods.method("some(fn)", "Whether fn returns truthy for any element", returns="boolean")
def some(value: list[Any], fn: Any) -> bool:
    return any(truthy(call_callback(fn, item, i, value)) for i, item in enumerate(value))


@methods.method("filter(fn)", "Elements for which fn returns truthy", "[1, 2, 3].filter(n => n > 1) // [2, 3]", returns="array")
def filter_(value: list[Any], fn: Any) -> list[Any]:
    return [item for i, item in enumerate(value) if truthy(call_callback(fn, item, i, value))]


@methods.method("find(fn)", "First element for which fn returns truthy, or undefined")
def find(value: list[Any], fn: Any) -> Any:
    for i, item in enumerate(value):
        if truthy(call_callback(fn, item, i, value)):
            return item
    return UNDEFINED


@methods.method("findIndex(fn)", "Index of the first match, or -1", returns="number")
def find_index(value: list[Any], fn: Any) -> int:
    for i, item in enumerate(value):
        if truthy(call_callback(fn, item, i, value)):
            return i
    return -1


@methods.method("findLast(fn)", "Last element for which fn returns truthy, or undefined")
def find_last(value: list[Any], fn: Any) -> Any:
    for i in range(len(value) - 1, -1, -1):
        if truthy(call_callback(fn, value[i], i, value)):
            return value[i]
    return UNDEFINED


@methods.method("findLastIndex(fn)", "Index of the last match, or -1", returns="number")
def find_last_index(value: list[Any], fn: Any) -> int:
    for i in range(len(value) - 1, -1, -1):
        if truthy(call_callback(fn, value[i], i, value)):
            return i
    return -1


@methods.method("flat(depth?)", "Flattens nested arrays up to depth levels", "[1, [2, [3]]].flat() // [1, 2, [3]]", returns="array")
def flat(value: list[Any], depth: Any = 1) -> list[Any]:
    levels = to_integer(depth, 1)
    result = list(value)
    for _ in range(max(0, levels)):
        if not any(isinstance(item, (list, tuple)) for item in result):
            break
        flattened: list[Any] = []
        for item in result:
            if isinstance(item, (list, tuple)):
                flattened.extend(item)
            else:
                flattened.append(item)
        result = flattened
        guard.check_value(result)
    return result


@methods.method("flatMap(fn)", "Maps each element then flattens one level", returns="array")
def flat_map(value: list[Any], fn: Any) -> list[Any]:
    return flat([call_callback(fn, item, i, value) for i, item in enumerate(value)], 1)


@methods.method("forEach(fn)", "Calls fn for each element; returns undefined")
def for_each(value: list[Any], fn: Any) -> Any:
    for i, item in enumerate(value):
        call_callback(fn, item, i, value)
    return UNDEFINED


@methods.method("includes(value)", "Whether the array contains value", "[1, 2].includes(2) // true", returns="boolean")
def includes(value: list[Any], search: Any) -> bool:
    return any(_same_value_zero(item, search) for item in value)


@methods.method("indexOf(value)", "Index of the first strictly equal element, or -1", returns="number")
def index_of(value: list[Any], search: Any, start: Any = 0) -> int:
    for i in range(_relative_index(start, len(value), 0), len(value)):
        if strict_equals(value[i], search):
            return i
    return -1


@methods.method("lastIndexOf(value)", "Index of the last strictly equal element, or -1", returns="number")
def last_index_of(value: list[Any], search: Any) -> int:
    for i in range(len(value) - 1, -1, -1):
        if strict_equals(value[i], search):
            return i
    return -1


@methods.method("join(separator?)", "Joins elements into a string", '["a", "b"].join("-") // "a-b"', returns="string")
def join(value: list[Any], separator: Any = ",") -> str:
    sep = "," if is_undefined(separator) else to_string(separator)
    text = sep.join("" if is_nullish(item) else to_string(item) for item in value)
    return guard.check_value(text)


@methods.method("keys()", "Array of indexes", returns="array")
def keys(value: list[Any]) -> list[int]:
    return list(range(len(value)))


@methods.method("map(fn)", "New array of fn's results", "[1, 2].map(n => n * 2) // [2, 4]", returns="array")
def map_(value: list[Any], fn: Any) -> list[Any]:
    return [call_callback(fn, item, i, value) for i, item in enumerate(value)]


def _reduce(items: list[tuple[int, Any]], value: list[Any], fn: Any, initial: tuple[Any, ...]) -> Any:
    if initial:
        accumulator = initial[0]
    else:
        if not items:
            raise EvaluationError("Reduce of empty array with no initial value")
        accumulator = items[0][1]
        items = items[1:]
    for i, item in items:
        accumulator = _call_accumulator(fn, accumulator, item, i, value)
    return accumulator


def _call_accumulator(fn: Any, accumulator: Any, item: Any, index: int, value: list[Any]) -> Any:
    if isinstance(fn, JsFunction):
        return fn(accumulator, item, index, value)
    if is_undefined(fn) or not callable(fn):
        raise EvaluationError(f"{to_string(fn)} is not a function")
    return fn(accumulator, item)


@methods.method("reduce(fn, initial?)", "Folds elements left to right", "[1, 2, 3].reduce((a, n) => a + n, 0) // 6")
def reduce(value: list[Any], fn: Any, *initial: Any) -> Any:
    return _reduce(list(enumerate(value)), value, fn, initial[:1])


@methods.method("reduceRight(fn, initial?)", "Folds elements right to left")
def reduce_right(value: list[Any], fn: Any, *initial: Any) -> Any:
    return _reduce(list(reversed(list(enumerate(value)))), value, fn, initial[:1])


@methods.method("reverse()", "New array in reverse order", aliases=("toReversed",), returns="array")
def reverse(value: list[Any]) -> list[Any]:
    return list(reversed(value))


@methods.method("slice(start?, end?)", "Section of the array; negative indexes count from the end", returns="array")
def slice_(value: list[Any], start: Any = 0, end: Any = UNDEFINED) -> list[Any]:
    begin = _relative_index(start, len(value), 0)
    stop = len(value) if is_undefined(end) else _relative_index(end, len(value), len(value))
    return value[begin:stop]


@methods.method("sort(compareFn?)", "New sorted array (string order unless compareFn is given)", "[3, 1, 2].sort((a, b) => a - b) // [1, 2, 3]", aliases=("toSorted",), returns="array")
def sort(value: list[Any], fn: Any = UNDEFINED) -> list[Any]:
    if is_undefined(fn):
        return sorted(value, key=_default_sort_key)

    def compare(a: Any, b: Any) -> int:
        if is_undefined(a) or is_undefined(b):
            return (1 if is_undefined(a) else 0) - (1 if is_undefined(b) else 0)
        result = to_number(_call_accumulator(fn, a, b, 0, value))
        if math.isnan(result):
            return 0
        return (result > 0) - (result < 0)

    return sorted(value, key=functools.cmp_to_key(compare))


@methods.method("toString()", "Elements joined with commas", returns="string")
def to_string_(value: list[Any]) -> str:
    return to_string(value)


# =============================================================================
# Workflow data helpers
# =============================================================================


@methods.method("first()", "First element, or undefined")
def first(value: list[Any]) -> Any:
    return value[0] if value else UNDEFINED


@methods.method("last()", "Last element, or undefined")
def last(value: list[Any]) -> Any:
    return value[-1] if value else UNDEFINED


@methods.method("isEmpty()", "Whether the array has no elements", returns="boolean")
def is_empty(value: list[Any]) -> bool:
    return not value


@methods.method("isNotEmpty()", "Whether the array has elements", returns="boolean")
def is_not_empty(value: list[Any]) -> bool:
    return bool(value)


@methods.method("sum()", "Sum of the numeric elements", "[1, 2, 3].sum() // 6", returns="number")
def sum_(value: list[Any]) -> int | float:
    return sum(_numbers(value))


@methods.method("average()", "Arithmetic mean of the numeric elements (NaN when empty)", aliases=("avg",), returns="number")
def average(value: list[Any]) -> int | float:
    numbers = _numbers(value)
    if not numbers:
        return math.nan
    return sum(numbers) / len(numbers)


@methods.method("min()", "Smallest numeric element", returns="number")
def min_(value: list[Any]) -> int | float:
    numbers = _numbers(value)
    if any(math.isnan(n) for n in numbers):
        return math.nan
    return min(numbers, default=math.inf)


@methods.method("max()", "Largest numeric element", returns="number")
def max_(value: list[Any]) -> int | float:
    numbers = _numbers(value)
    if any(math.isnan(n) for n in numbers):
        return math.nan
    return max(numbers, default=-math.inf)


@methods.method("unique(...fields)", "Removes duplicates (deep equality, or by the given fields)", "[1, 1, 2].unique() // [1, 2]", aliases=("removeDuplicates",), returns="array")
def unique(value: list[Any], *fields: Any) -> list[Any]:
    seen: set[str] = set()
    result = []
    names = [to_string(f) for f in fields]
    for item in value:
        key_source = [_field(item, n) for n in names] if names else item
        key = _identity_key(key_source)
        if key not in seen:
            seen.add(key)
            result.append(item)
    return result


@methods.method("compact()", "Removes null, undefined and empty strings", returns="array")
def compact(value: list[Any]) -> list[Any]:
    return [item for item in value if not is_nullish(item) and item != ""]


@methods.method("chunk(size)", "Splits into arrays of size elements", "[1, 2, 3].chunk(2) // [[1, 2], [3]]", returns="array")
def chunk(value: list[Any], size: Any) -> list[list[Any]]:
    step = to_integer(size)
    if step < 1:
        raise EvaluationError("chunk() size must be a positive integer")
    return [value[i : i + step] for i in range(0, len(value), step)]


@methods.method("pluck(...fields)", "Values of the given fields from each object", '[{"a": 1}].pluck("a") // [1]', returns="array")
def pluck(value: list[Any], *fields: Any) -> list[Any]:
    names = [to_string(f) for f in fields]
    if not names:
        return list(value)
    if len(names) == 1:
        return [_field(item, names[0]) for item in value]
    return [{n: _field(item, n) for n in names} for item in value]


@methods.method("difference(other)", "Elements not present in other", returns="array")
def difference(value: list[Any], other: Any) -> list[Any]:
    excluded = {_identity_key(item) for item in (other if isinstance(other, list) else [])}
    return [item for item in value if _identity_key(item) not in excluded]


@methods.method("intersection(other)", "Elements also present in other", returns="array")
def intersection(value: list[Any], other: Any) -> list[Any]:
    kept = {_identity_key(item) for item in (other if isinstance(other, list) else [])}
    return unique([item for item in value if _identity_key(item) in kept])


@methods.method("union(other)", "Unique elements of both arrays", returns="array")
def union(value: list[Any], other: Any) -> list[Any]:
    return unique(concat(value, other if isinstance(other, list) else [other]))


@methods.method("append(...values)", "New array with values appended", returns="array")
def append(value: list[Any], *items: Any) -> list[Any]:
    return guard.check_value([*value, *items])


@methods.method("randomItem()", "Random element, or undefined when empty")
def random_item(value: list[Any]) -> Any:
    return random.choice(value) if value else UNDEFINED


@methods.method("smartJoin(keyField, valueField)", "Object built from key/value fields of each element", returns="object")
def smart_join(value: list[Any], key_field: Any, value_field: Any) -> dict[str, Any]:
    key_name, value_name = to_string(key_field), to_string(value_field)
    return {
        to_property_key(_field(item, key_name)): _field(item, value_name)
        for item in value
        if isinstance(item, Mapping)
    }


@methods.method("toJsonString()", "JSON representation of the array", returns="string")
def to_json_string(value: list[Any]) -> str:
    from .strings import stringify

    return stringify(value)
