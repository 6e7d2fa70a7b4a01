"""Shared test configuration for flowexpr tests.

Provides:
- A default ExpressionEngine and a factory for engines with config overrides
- A three-node lineage workflow (Trigger -> Fetch -> Transform -> Save) with
  run data whose items carry paired-item links
- A mock MCP context for tool tests
"""

import datetime as dt
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from flowexpr.context import AppContext
from flowexpr.engine import (
    ContextManager,
    EngineConfig,
    ExpressionContext,
    ExpressionEngine,
    ItemRecord,
    Node,
    RunExecutionData,
    SourceRef,
    TaskRun,
    Workflow,
)
from flowexpr.engine.workflow import Connection

FIXED_NOW = dt.datetime(2024, 1, 15, 10, 30, tzinfo=dt.UTC)


@pytest.fixture
def engine() -> ExpressionEngine:
    """Engine with default configuration (fresh cache per test)."""
    return ExpressionEngine()


@pytest.fixture
def make_engine() -> Callable[..., ExpressionEngine]:
    """Factory for engines built from camelCase config overrides.

    Usage:
        engine = make_engine(security={"timeout": 50}, cache={"enabled": False})
    """

    def factory(**overrides: Any) -> ExpressionEngine:
        return ExpressionEngine(EngineConfig.model_validate(overrides))

    return factory


@pytest.fixture
def context() -> ExpressionContext:
    """Static context with a typical item and node outputs."""
    return ExpressionContext(
        json={
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "price": 5,
            "qty": 3,
            "tags": ["math", "poetry", "math"],
            "items": [
                {"name": "pen", "price": 2},
                {"name": "book", "price": 30},
                {"name": "lamp", "price": 120},
            ],
            "address": {"city": "London", "zip": None},
        },
        env={"API_URL": "https://api.example.com", "REGION": "eu"},
        variables={"threshold": 100},
        workflow={"id": "wf-1", "name": "Orders", "active": True},
        nodes={"Webhook": {"orderId": 42}, "Lookup": [{"sku": "A"}, {"sku": "B"}]},
        now=FIXED_NOW,
        execution_id="exec-1",
    )


# ---------------------------------------------------------------------------
# Lineage fixtures
# ---------------------------------------------------------------------------


def build_workflow(extra_nodes: list[Node] | None = None, pin_data: dict[str, Any] | None = None) -> Workflow:
    """Trigger -> Fetch -> Transform -> Save, plus optional disconnected nodes."""
    nodes = [
        Node("Trigger", type="trigger"),
        Node("Fetch", type="http", parameters={"url": "https://api.example.com/users"}),
        Node("Transform", type="set"),
        Node(
            "Save",
            type="database",
            parameters={
                "title": "={{ $json.name.toUpperCase() }}",
                "static": "plain",
                "nested": {"list": ["{{ 1 + 2 }}", 5]},
            },
        ),
    ]
    return Workflow(
        nodes=nodes + (extra_nodes or []),
        connections={
            "Trigger": [[Connection("Fetch")]],
            "Fetch": [[Connection("Transform")]],
            "Transform": [[Connection("Save")]],
        },
        name="Lineage",
        id="wf-lineage",
        pin_data=pin_data,
    )


def build_run_data(
    transform_pairs: list[Any] | None = None,
    include_fetch: bool = True,
) -> RunExecutionData:
    """Run data where Fetch fans one trigger item out to two users.

    transform_pairs overrides the paired_item of each Transform output item
    (default: item i came from Fetch item i).
    """
    pairs = transform_pairs if transform_pairs is not None else [0, 1]
    run_data: dict[str, list[TaskRun]] = {
        "Trigger": [TaskRun(outputs=[[ItemRecord({"start": True})]], source=[])],
        "Transform": [
            TaskRun(
                outputs=[
                    [
                        ItemRecord({"name": "a"}, paired_item=pairs[0]),
                        ItemRecord({"name": "b"}, paired_item=pairs[1]),
                    ]
                ],
                source=[SourceRef("Fetch")],
            )
        ],
    }
    if include_fetch:
        run_data["Fetch"] = [
            TaskRun(
                outputs=[[ItemRecord({"id": 1}, paired_item=0), ItemRecord({"id": 2}, paired_item=0)]],
                source=[SourceRef("Trigger")],
            )
        ]
    return RunExecutionData(run_data=run_data, last_node_executed="Transform")


@pytest.fixture
def lineage_workflow() -> Workflow:
    return build_workflow()


@pytest.fixture
def lineage_run_data() -> RunExecutionData:
    return build_run_data()


@pytest.fixture
def manager(lineage_workflow: Workflow, lineage_run_data: RunExecutionData) -> ContextManager:
    """ContextManager over the lineage workflow with env, vars and an execution id."""
    return ContextManager(
        lineage_workflow,
        lineage_run_data,
        env={"API_URL": "https://api.example.com"},
        variables={"retries": 3},
        execution_id="exec-42",
    )


# ---------------------------------------------------------------------------
# MCP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_context() -> MagicMock:
    """Mock MCP Context whose lifespan context holds a fresh engine."""
    app_context = AppContext(engine=ExpressionEngine())
    mock_ctx = MagicMock()
    mock_ctx.request_context.lifespan_context = app_context
    return mock_ctx
