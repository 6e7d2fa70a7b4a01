"""Tests for the error taxonomy and its serialized form."""

import pytest

from flowexpr.engine import (
    ApplicationError,
    EvaluationError,
    EvaluationTimeoutError,
    ExecutionBaseError,
    ExecutionCancelledError,
    ExpressionError,
    ExpressionSyntaxError,
    InvalidDateError,
    NodeOperationError,
    NotDefinedError,
    NullReceiverError,
    ParseError,
    ResourceLimitError,
    SecurityError,
    UnknownMethodError,
    VariableAssignmentError,
    WorkflowOperationError,
)
from flowexpr.engine.exceptions import (
    PairedItemError,
    PairedItemInvalidInfoError,
    PairedItemMultipleMatchesError,
    PairedItemNoConnectionError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "error",
        [
            ParseError("Unmatched '{{'", 4),
            ExpressionSyntaxError("Unexpected token", 3),
            SecurityError("Blocked", "eval"),
            NotDefinedError("window"),
            EvaluationTimeoutError(100),
            ResourceLimitError("memory", 1024),
            UnknownMethodError("shout", "string"),
            NullReceiverError("trim"),
            InvalidDateError("soon"),
            VariableAssignmentError(),
            EvaluationError("boom"),
            PairedItemMultipleMatchesError("Fetch"),
        ],
    )
    def test_expression_errors(self, error):
        assert isinstance(error, ExpressionError)
        assert isinstance(error, ExecutionBaseError)
        assert error.level == "error"

    def test_not_defined_is_security_error(self):
        assert isinstance(NotDefinedError("window"), SecurityError)

    def test_application_error_is_not_surfaced_type(self):
        error = ApplicationError("Unknown node: X", extra={"node": "X"})

        assert not isinstance(error, ExecutionBaseError)
        assert error.extra == {"node": "X"}

    @pytest.mark.parametrize("error", [ExecutionCancelledError("exec-1"), WorkflowOperationError("slow")])
    def test_warning_level(self, error):
        assert error.level == "warning"


# ---------------------------------------------------------------------------
# Messages and serialization
# ---------------------------------------------------------------------------


class TestSerialization:
    """to_dict() is what tools and hosts receive."""

    def test_base_fields(self):
        data = EvaluationError("boom").to_dict()

        assert data["code"] == "EVALUATION_ERROR"
        assert data["message"] == "boom"
        assert data["level"] == "error"
        assert isinstance(data["timestamp"], int)
        assert "description" not in data
        assert "extra" not in data

    def test_parse_error_position(self):
        data = ParseError("Unmatched '{{'", 6).to_dict()

        assert data["position"] == {"start": 6, "end": 8}

    def test_syntax_error_without_offset(self):
        error = ExpressionSyntaxError("Unexpected end of input")

        assert error.position is None
        assert "position" not in error.to_dict()

    def test_security_error_pattern(self):
        error = SecurityError("Blocked pattern: eval", "eval")

        assert error.to_dict()["extra"] == {"pattern": "eval"}

    def test_messages(self):
        assert NotDefinedError("window").message == "window is not defined"
        assert EvaluationTimeoutError(250).message == "Expression evaluation timed out after 250ms"
        assert ResourceLimitError("call_stack", 100).message == "Maximum call stack size of 100 exceeded"
        assert UnknownMethodError("shout", "array").extra == {"method": "shout", "type": "array"}
        assert "my_var?.trim" in NullReceiverError("trim").description

    def test_invalid_date_keeps_input(self):
        error = InvalidDateError("soon")

        assert error.input == "soon"
        assert error.message == "Invalid date: 'soon'"

    def test_paired_item_error(self):
        error = PairedItemNoConnectionError("Save", "Other")
        data = error.to_dict()

        assert isinstance(error, PairedItemError)
        assert data["node"] == "Save"
        assert data["extra"] == {"type": "paired_item_no_connection", "functionality": "pairedItem"}
        assert error.target == "Other"

    def test_invalid_info_detail(self):
        error = PairedItemInvalidInfoError("Fetch", "item 5 out of range")

        assert error.message == "Paired item data for node 'Fetch' is invalid: item 5 out of range"

    def test_cancelled(self):
        data = ExecutionCancelledError("exec-9").to_dict()

        assert data["code"] == "CANCELLED"
        assert data["extra"] == {"executionId": "exec-9"}

    def test_workflow_operation_error_node(self):
        data = WorkflowOperationError("Timed out", node="Save").to_dict()

        assert data["node"] == "Save"
        assert data["level"] == "warning"


class TestNodeOperationError:
    def test_wraps_expression_error(self):
        cause = InvalidDateError("x")
        error = NodeOperationError("Save", cause, run_index=0, item_index=2)
        data = error.to_dict()

        assert error.message == "Invalid date: 'x'"
        assert error.description == cause.description
        assert error.cause_error is cause
        assert data["node"] == "Save"
        assert data["runIndex"] == 0
        assert data["itemIndex"] == 2

    def test_message_mapping(self):
        error = NodeOperationError(
            "Save",
            InvalidDateError("x"),
            message_mapping={"Invalid date: 'x'": "Please provide a valid due date"},
        )

        assert error.message == "Please provide a valid due date"

    def test_plain_exception_and_string(self):
        assert NodeOperationError("Save", ValueError("bad")).message == "bad"
        assert NodeOperationError("Save", "failed").cause_error is None

    def test_indexes_omitted_when_unset(self):
        data = NodeOperationError("Save", "failed").to_dict()

        assert "runIndex" not in data
        assert "itemIndex" not in data
