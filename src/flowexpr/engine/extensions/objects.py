"""Object methods. Keys are always strings; receivers are never mutated."""

from __future__ import annotations

import urllib.parse
from collections.abc import Mapping
from typing import Any

from ..resolver.values import is_nullish, to_property_key, to_string
from .registry import MethodTable

methods = MethodTable("object")


def plain(value: Mapping[str, Any]) -> dict[str, Any]:
    return {to_property_key(k): v for k, v in value.items()}


@methods.method("keys()", "Array of the object's keys", '{"a": 1}.keys() // ["a"]', returns="array")
def keys(value: Mapping[str, Any]) -> list[str]:
    return [to_property_key(k) for k in value]


@methods.method("values()", "Array of the object's values", returns="array")
def values(value: Mapping[str, Any]) -> list[Any]:
    return list(value.values())


@methods.method("entries()", "Array of [key, value] pairs", returns="array")
def entries(value: Mapping[str, Any]) -> list[list[Any]]:
    return [[to_property_key(k), v] for k, v in value.items()]


@methods.method("hasField(name)", "Whether the object has the key", aliases=("hasOwnProperty",), returns="boolean")
def has_field(value: Mapping[str, Any], name: Any) -> bool:
    return to_property_key(name) in value


@methods.method("isEmpty()", "Whether the object has no keys", returns="boolean")
def is_empty(value: Mapping[str, Any]) -> bool:
    return len(value) == 0


@methods.method("isNotEmpty()", "Whether the object has keys", returns="boolean")
def is_not_empty(value: Mapping[str, Any]) -> bool:
    return len(value) > 0


@methods.method("removeField(name)", "Copy without the key", returns="object")
def remove_field(value: Mapping[str, Any], name: Any) -> dict[str, Any]:
    key = to_property_key(name)
    return {k: v for k, v in plain(value).items() if k != key}


@methods.method("removeFieldsContaining(text)", "Copy without string fields containing text", returns="object")
def remove_fields_containing(value: Mapping[str, Any], text: Any) -> dict[str, Any]:
    needle = to_string(text)
    return {
        k: v for k, v in plain(value).items() if not (isinstance(v, str) and needle in v)
    }


@methods.method("keepFieldsContaining(text)", "Copy with only string fields containing text", returns="object")
def keep_fields_containing(value: Mapping[str, Any], text: Any) -> dict[str, Any]:
    needle = to_string(text)
    return {k: v for k, v in plain(value).items() if isinstance(v, str) and needle in v}


@methods.method("merge(other)", "Copy with other's keys added where missing", '{"a": 1}.merge({"a": 2, "b": 3}) // {"a": 1, "b": 3}', returns="object")
def merge(value: Mapping[str, Any], other: Any) -> dict[str, Any]:
    merged = plain(other) if isinstance(other, Mapping) else {}
    merged.update(plain(value))
    return merged


@methods.method("compact()", "Copy without null, undefined and empty-string values", returns="object")
def compact(value: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in plain(value).items() if not is_nullish(v) and v != ""}


@methods.method("urlEncode()", "URL query string of the object", returns="string")
def url_encode(value: Mapping[str, Any]) -> str:
    return urllib.parse.urlencode({k: to_string(v) for k, v in plain(value).items()})


@methods.method("toJsonString()", "JSON representation of the object", returns="string")
def to_json_string(value: Mapping[str, Any]) -> str:
    from .strings import stringify

    return stringify(value)


@methods.method("toString()", '"[object Object]"', returns="string")
def to_string_(value: Mapping[str, Any]) -> str:
    return "[object Object]"
