"""
Extension methods available on expression values.

Public API:
    - ExtensionRegistry: Type tag -> method table
    - ExtensionMethod: One method or property with its documentation
    - MethodTable: Decorator-based declaration of a type's methods
    - create_default_registry: Registry with every built-in table
"""

from .registry import (
    TYPE_NAMES,
    BoundMethod,
    ExtensionMethod,
    ExtensionRegistry,
    MethodTable,
    create_default_registry,
)

__all__ = [
    "TYPE_NAMES",
    "BoundMethod",
    "ExtensionMethod",
    "ExtensionRegistry",
    "MethodTable",
    "create_default_registry",
]
