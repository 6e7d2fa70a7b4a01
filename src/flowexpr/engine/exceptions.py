"""Error taxonomy for expression evaluation and workflow execution.

Every error surfaced to a host derives from ExecutionBaseError and can be
serialized with to_dict(). Evaluation failures are captured into
EvaluationResult objects by the evaluator; only ApplicationError (programmer
misuse at construction time) is raised across the public API.

Hierarchy:
    ExecutionBaseError
    ├── ExpressionError
    │   ├── ParseError
    │   ├── ExpressionSyntaxError
    │   ├── SecurityError
    │   │   └── NotDefinedError
    │   ├── EvaluationTimeoutError
    │   ├── ResourceLimitError
    │   ├── UnknownMethodError
    │   ├── NullReceiverError
    │   ├── InvalidDateError
    │   ├── QueryError
    │   ├── VariableAssignmentError
    │   ├── EvaluationError
    │   └── PairedItemError (seven lineage kinds + multiple matches)
    ├── ExecutionCancelledError
    ├── WorkflowOperationError
    └── NodeOperationError
    ApplicationError
"""

from __future__ import annotations

import time
from typing import Any, Literal

ErrorLevel = Literal["warning", "error"]


class ApplicationError(Exception):
    """Programmer misuse detected synchronously (invalid arguments, missing node)."""

    def __init__(self, message: str, extra: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}


class ExecutionBaseError(Exception):
    """Base class for all errors surfaced to hosts.

    Attributes:
        message: Short human readable message
        description: Optional longer explanation or remediation hint
        level: Severity ("warning" or "error")
        extra: Free-form structured details
        timestamp: Creation time in epoch milliseconds
    """

    code: str = "EXECUTION_ERROR"
    level: ErrorLevel = "error"

    def __init__(
        self,
        message: str,
        description: str | None = None,
        level: ErrorLevel | None = None,
        extra: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.description = description
        if level is not None:
            self.level = level
        self.extra = extra or {}
        self.timestamp = int(time.time() * 1000)
        self.node: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "level": self.level,
            "timestamp": self.timestamp,
        }
        if self.description:
            data["description"] = self.description
        if self.node:
            data["node"] = self.node
        if self.extra:
            data["extra"] = dict(self.extra)
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


# =============================================================================
# Expression errors
# =============================================================================


class ExpressionError(ExecutionBaseError):
    """Failure while parsing or evaluating a single expression.

    position is a [start, end) character range relative to the evaluated text,
    filled in when the failing construct can be located.
    """

    code = "EXPRESSION_ERROR"

    def __init__(
        self,
        message: str,
        description: str | None = None,
        position: tuple[int, int] | None = None,
        extra: dict[str, Any] | None = None,
    ):
        super().__init__(message, description=description, extra=extra)
        self.position = position

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.position is not None:
            data["position"] = {"start": self.position[0], "end": self.position[1]}
        return data


class ParseError(ExpressionError):
    """Unbalanced template delimiters."""

    code = "PARSE_ERROR"

    def __init__(self, message: str, offset: int, description: str | None = None):
        super().__init__(message, description=description, position=(offset, offset + 2))
        self.offset = offset


class ExpressionSyntaxError(ExpressionError):
    """Expression text does not conform to the expression grammar."""

    code = "SYNTAX_ERROR"

    def __init__(self, message: str, offset: int | None = None, description: str | None = None):
        position = (offset, offset + 1) if offset is not None else None
        super().__init__(message, description=description, position=position)
        self.offset = offset


class SecurityError(ExpressionError):
    """Expression text matched a blocked pattern or a disallowed identifier."""

    code = "SECURITY_ERROR"

    def __init__(self, message: str, pattern_name: str, description: str | None = None):
        super().__init__(message, description=description, extra={"pattern": pattern_name})
        self.pattern_name = pattern_name


class NotDefinedError(SecurityError):
    """Free identifier outside the allowed global surface."""

    code = "NOT_DEFINED"

    def __init__(self, name: str):
        super().__init__(
            f"{name} is not defined",
            pattern_name="allowed_globals",
            description=f"'{name}' is not an allowed global or a known $-variable",
        )
        self.name = name


class EvaluationTimeoutError(ExpressionError):
    """Evaluation exceeded its wall-clock budget."""

    code = "TIMEOUT"

    def __init__(self, timeout_ms: float):
        super().__init__(
            f"Expression evaluation timed out after {timeout_ms:g}ms",
            description="Simplify the expression or raise security.timeout",
        )
        self.timeout_ms = timeout_ms


class ResourceLimitError(ExpressionError):
    """Approximate memory ceiling or call-depth ceiling exceeded."""

    code = "RESOURCE_LIMIT"

    def __init__(self, kind: Literal["memory", "call_stack"], limit: int, message: str | None = None):
        if message is None:
            if kind == "memory":
                message = f"Expression exceeded the memory limit of {limit} bytes"
            else:
                message = f"Maximum call stack size of {limit} exceeded"
        super().__init__(message, extra={"kind": kind, "limit": limit})
        self.kind = kind
        self.limit = limit


class UnknownMethodError(ExpressionError):
    """No extension method with that name exists for the receiver type."""

    code = "UNKNOWN_METHOD"

    def __init__(self, method: str, type_name: str):
        super().__init__(
            f"{method} is not a function on type {type_name}",
            description=f"'{method}' is not a known {type_name} method",
            extra={"method": method, "type": type_name},
        )
        self.method = method
        self.type_name = type_name


class NullReceiverError(ExpressionError):
    """A method was called on null or undefined."""

    code = "NULL_RECEIVER"

    def __init__(self, method: str):
        super().__init__(
            f"{method} can't be used on null value",
            description=f"To ignore this error, add a ? to the variable before this method, "
            f"e.g. my_var?.{method}",
            extra={"method": method},
        )
        self.method = method


class InvalidDateError(ExpressionError):
    """Value could not be normalized into a date-time."""

    code = "INVALID_DATE"

    def __init__(self, value: Any):
        super().__init__(
            f"Invalid date: {value!r}",
            description="Expected a DateTime, ISO-8601, HTTP, RFC 2822 or SQL date, "
            "or epoch milliseconds",
        )
        self.input = value


class QueryError(ExpressionError):
    """JMESPath query failed to compile or run."""

    code = "QUERY_ERROR"


class VariableAssignmentError(ExpressionError):
    """Expression attempted to write to a read-only binding."""

    code = "ASSIGNMENT_ERROR"

    def __init__(self, message: str = "Cannot assign to variables at runtime"):
        super().__init__(message)


class EvaluationError(ExpressionError):
    """Generic runtime failure (type errors, property access on undefined)."""

    code = "EVALUATION_ERROR"


# =============================================================================
# Paired item lineage errors
# =============================================================================


class PairedItemError(ExpressionError):
    """Base class for paired-item lineage failures.

    Attributes:
        error_type: Stable kind identifier callers branch on
        node_cause: Name of the node where the walk failed
    """

    code = "PAIRED_ITEM_ERROR"
    error_type: str = "paired_item"
    functionality = "pairedItem"

    def __init__(self, message: str, node_cause: str | None = None, description: str | None = None):
        super().__init__(
            message,
            description=description,
            extra={"type": self.error_type, "functionality": self.functionality},
        )
        self.node_cause = node_cause
        self.node = node_cause


class NoExecutionDataError(PairedItemError):
    error_type = "no_execution_data"

    def __init__(self, node_cause: str | None = None):
        super().__init__(
            "No execution data available",
            node_cause=node_cause,
            description="The workflow has not run yet; execute previous nodes first",
        )


class NoNodeExecutionDataError(PairedItemError):
    error_type = "no_node_execution_data"

    def __init__(self, node_cause: str):
        super().__init__(
            f"No execution data available for node '{node_cause}'",
            node_cause=node_cause,
            description=f"Execute node '{node_cause}' before referencing its output",
        )


class NoInputConnectionError(PairedItemError):
    error_type = "no_input_connection"

    def __init__(self, node_cause: str):
        super().__init__(
            f"Node '{node_cause}' has no input connection",
            node_cause=node_cause,
            description="Connect the node to an upstream node",
        )


class PairedItemNoConnectionError(PairedItemError):
    error_type = "paired_item_no_connection"

    def __init__(self, node_cause: str, target: str):
        super().__init__(
            f"Connection to node '{target}' not found from '{node_cause}'",
            node_cause=node_cause,
            description=f"'{target}' is not upstream of '{node_cause}' on the paired item chain",
        )
        self.target = target


class PairedItemInvalidInfoError(PairedItemError):
    error_type = "paired_item_invalid_info"

    def __init__(self, node_cause: str, detail: str = ""):
        super().__init__(
            f"Paired item data for node '{node_cause}' is invalid"
            + (f": {detail}" if detail else ""),
            node_cause=node_cause,
            description="The node produced paired item references that point to missing items",
        )


class PairedItemNoInfoError(PairedItemError):
    error_type = "paired_item_no_info"

    def __init__(self, node_cause: str):
        super().__init__(
            f"Paired item data for node '{node_cause}' is unavailable",
            node_cause=node_cause,
            description=f"Node '{node_cause}' did not record which input item produced its output",
        )


class PairedItemIntermediateNodesError(PairedItemError):
    error_type = "paired_item_intermediate_nodes"

    def __init__(self, node_cause: str):
        super().__init__(
            f"Paired item data unavailable: intermediate node '{node_cause}' has not run",
            node_cause=node_cause,
            description="Execute the intermediate nodes between the two nodes first",
        )


class PairedItemMultipleMatchesError(PairedItemError):
    error_type = "paired_item_multiple_matches"

    def __init__(self, node_cause: str):
        super().__init__(
            f"Multiple matching items found in node '{node_cause}'",
            node_cause=node_cause,
            description="Use .first(), .last() or .all() instead of .item",
        )


# =============================================================================
# Run and node scoped errors
# =============================================================================


class ExecutionCancelledError(ExecutionBaseError):
    """Host cancelled the run while an evaluation was in flight."""

    code = "CANCELLED"
    level: ErrorLevel = "warning"

    def __init__(self, execution_id: str | None = None):
        super().__init__("The execution was cancelled", extra={"executionId": execution_id})
        self.execution_id = execution_id


class WorkflowOperationError(ExecutionBaseError):
    """Node-scoped operational failure (for example an evaluation timeout)."""

    code = "WORKFLOW_OPERATION_ERROR"
    level: ErrorLevel = "warning"

    def __init__(self, message: str, node: str | None = None, description: str | None = None):
        super().__init__(message, description=description)
        self.node = node


class NodeOperationError(ExecutionBaseError):
    """Failure while a node resolved its parameters.

    message_mapping lets a host rewrite a message by its original text, e.g.
    {"Invalid date: 'x'": "Please provide a valid due date"}.
    """

    code = "NODE_OPERATION_ERROR"

    def __init__(
        self,
        node: str,
        error: Exception | str,
        run_index: int | None = None,
        item_index: int | None = None,
        description: str | None = None,
        message_mapping: dict[str, str] | None = None,
    ):
        message = error if isinstance(error, str) else getattr(error, "message", str(error))
        if message_mapping and message in message_mapping:
            message = message_mapping[message]
        if description is None and isinstance(error, ExecutionBaseError):
            description = error.description
        super().__init__(message, description=description)
        self.node = node
        self.run_index = run_index
        self.item_index = item_index
        self.cause_error = error if isinstance(error, Exception) else None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.run_index is not None:
            data["runIndex"] = self.run_index
        if self.item_index is not None:
            data["itemIndex"] = self.item_index
        return data
