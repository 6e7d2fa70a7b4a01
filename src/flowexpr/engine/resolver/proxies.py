"""
Read-only proxies for bindings expressions must never mutate.

    - ReadOnlyMapping: $env, $vars and node parameters. Reads pass through,
      nested mappings are wrapped on access, every write path raises
      VariableAssignmentError.

Example:
    env = ReadOnlyMapping({"API_URL": "https://example.com"}, label="$env")
    env["API_URL"]        # "https://example.com"
    env["API_URL"] = "x"  # VariableAssignmentError
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, NoReturn

from ..exceptions import VariableAssignmentError


class ProxyBase:
    """Base class for proxy objects."""

    def __init__(self, data: Any, label: str = ""):
        object.__setattr__(self, "_data", data)
        object.__setattr__(self, "_label", label)

    def __setattr__(self, name: str, value: Any) -> NoReturn:
        raise VariableAssignmentError()

    def __delattr__(self, name: str) -> NoReturn:
        raise VariableAssignmentError()


class ReadOnlyMapping(ProxyBase, Mapping[str, Any]):
    """Mapping view whose write path always fails with a typed error."""

    def __getitem__(self, key: str) -> Any:
        data = object.__getattribute__(self, "_data")
        value = data[key]
        if isinstance(value, Mapping) and not isinstance(value, ReadOnlyMapping):
            label = object.__getattribute__(self, "_label")
            return ReadOnlyMapping(value, label=f"{label}.{key}" if label else key)
        return value

    def __iter__(self) -> Iterator[str]:
        return iter(object.__getattribute__(self, "_data"))

    def __len__(self) -> int:
        return len(object.__getattribute__(self, "_data"))

    def __setitem__(self, key: str, value: Any) -> NoReturn:
        raise VariableAssignmentError()

    def __delitem__(self, key: str) -> NoReturn:
        raise VariableAssignmentError()

    def __repr__(self) -> str:
        return f"ReadOnlyMapping({object.__getattribute__(self, '_label') or 'data'})"

    def unwrap(self) -> Mapping[str, Any]:
        return object.__getattribute__(self, "_data")


def is_read_only(value: Any) -> bool:
    return isinstance(value, ProxyBase)
