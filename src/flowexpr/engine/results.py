"""
Result objects returned by the engine's public entry points.

Aligned with the ExecutionResult pattern: factory methods guarantee valid state
combinations, so an EvaluationResult always carries exactly one of value or
error, and a ValidationResult is valid iff it has no errors.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from .exceptions import ExecutionBaseError
from .resolver.values import is_undefined

Severity = Literal["error", "warning", "info"]


def type_tag(value: Any) -> str:
    """Runtime type tag of an evaluated value."""
    if value is None:
        return "null"
    if is_undefined(value):
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
    if isinstance(value, dict):
        return "object"
    if callable(value):
        return "function"
    return "object"


@dataclass
class EvaluationResult:
    """Outcome of evaluating a template.

    Attributes:
        success: True when value is populated
        value: Evaluated value (None is a legitimate value for null)
        error: Failure, populated only when success is False
        type: Type tag of value, or the error class name on failure
        execution_time_ms: Wall-clock time spent; 0.0 for cache hits
        position: [start, end) range in the template of the failing expression
        cached: True when served from the result cache
        metadata: Optional extras (AST, dependencies) when output.includeMetadata is set
    """

    success: bool
    type: str
    execution_time_ms: float = 0.0
    value: Any = None
    error: ExecutionBaseError | None = None
    position: tuple[int, int] | None = None
    cached: bool = False
    metadata: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.success and self.error is not None:
            raise ValueError("Successful EvaluationResult cannot carry an error")
        if not self.success and self.error is None:
            raise ValueError("Failed EvaluationResult must carry an error")

    @classmethod
    def ok(cls, value: Any, execution_time_ms: float = 0.0, **kwargs: Any) -> EvaluationResult:
        return cls(
            success=True,
            value=value,
            type=type_tag(value),
            execution_time_ms=execution_time_ms,
            **kwargs,
        )

    @classmethod
    def fail(
        cls,
        error: ExecutionBaseError,
        execution_time_ms: float = 0.0,
        position: tuple[int, int] | None = None,
    ) -> EvaluationResult:
        return cls(
            success=False,
            error=error,
            type=type(error).__name__,
            execution_time_ms=execution_time_ms,
            position=position if position is not None else getattr(error, "position", None),
        )

    def with_position(self, start: int, end: int) -> EvaluationResult:
        return replace(self, position=(start, end))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "type": self.type,
            "executionTime": round(self.execution_time_ms, 3),
        }
        if self.success:
            data["value"] = self.value
        else:
            assert self.error is not None
            data["error"] = self.error.to_dict()
        if self.position is not None:
            data["position"] = {"start": self.position[0], "end": self.position[1]}
        if self.cached:
            data["cached"] = True
        if self.metadata:
            data["metadata"] = self.metadata
        return data


@dataclass(frozen=True)
class Position:
    line: int  # 1-based
    column: int  # 1-based
    start: int
    end: int

    def to_dict(self) -> dict[str, int]:
        return {"line": self.line, "column": self.column, "start": self.start, "end": self.end}


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message: str
    severity: Severity
    layer: str
    position: Position
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "layer": self.layer,
            "position": self.position.to_dict(),
        }
        if self.suggestion:
            data["suggestion"] = self.suggestion
        return data


@dataclass
class ValidationResult:
    """Merged outcome of the validation layers. Warnings never affect validity."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    layers_run: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "layers": list(self.layers_run),
        }
