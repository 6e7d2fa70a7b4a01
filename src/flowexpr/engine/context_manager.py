"""
Execution context construction.

An ExpressionContext is what one evaluation sees: the current item, the
node outputs reachable through $node / $("Name") / $input, read-only $env and
$vars, workflow and execution metadata, run and item indexes and the
$now / $today date helpers. A context belongs to exactly one (run, node,
item) and is never shared across runs.

Contexts come from two places:

    ContextManager.create_context(...)  host node graph + run execution data,
                                        with paired-item lineage for .item
    ExpressionContext(json=..., ...)    standalone data (tests, MCP tools);
                                        node outputs given as a plain mapping

Binding objects are built lazily and memoized per context. Node output
lookups only read the execution store; nothing an expression does can write
to it.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .exceptions import (
    ApplicationError,
    EvaluationError,
    EvaluationTimeoutError,
    ExecutionCancelledError,
    NodeOperationError,
    WorkflowOperationError,
)
from .execution_data import ItemRecord, RunExecutionData
from .extensions.dates import UTC, get_zone, start_of
from .paired_items import PairedItemResolver
from .resolver.proxies import ReadOnlyMapping
from .resolver.values import UNDEFINED, HostObject, MissingMember, is_undefined, to_integer, to_json_compatible
from .workflow import Node, Workflow

if TYPE_CHECKING:
    from .engine import ExpressionEngine

logger = logging.getLogger(__name__)

# Bindings that read node outputs; they share one fingerprint component
NODE_DATA_ROOTS = frozenset({"$", "$node", "$input", "$prevNode", "$parameter"})


def _item_view(record: ItemRecord) -> dict[str, Any]:
    view: dict[str, Any] = {"json": ReadOnlyMapping(record.json, label="json")}
    if record.binary is not None:
        view["binary"] = ReadOnlyMapping(record.binary, label="binary")
    return view


def _index_arg(value: Any, default: int) -> int:
    return default if is_undefined(value) or value is None else to_integer(value)


# =============================================================================
# Node data sources
# =============================================================================


class NodeDataSource:
    """Answers node-output questions for one context."""

    def node_names(self) -> list[str]:
        return []

    def has_node(self, name: str) -> bool:
        return name in self.node_names()

    def parameters(self, name: str) -> Mapping[str, Any]:
        return {}

    def node_type(self, name: str) -> str:
        return ""

    def is_executed(self, name: str) -> bool:
        return False

    def items(self, name: str, output_index: int = 0, run_index: int = -1) -> list[ItemRecord]:
        return []

    def paired_item(self, name: str, item_index: int | None = None) -> ItemRecord:
        raise EvaluationError(f"Paired item data is not available for node '{name}'")

    def input_items(self) -> list[ItemRecord]:
        return []

    def previous_node(self) -> dict[str, Any] | None:
        return None

    def fingerprint(self) -> str:
        return ""


class StaticNodeSource(NodeDataSource):
    """Node outputs supplied directly: node name -> JSON object or list of them."""

    def __init__(self, nodes: Mapping[str, Any], current: ItemRecord, item_index: int = 0):
        self.nodes = dict(nodes)
        self.current = current
        self.item_index = item_index

    def node_names(self) -> list[str]:
        return list(self.nodes)

    def is_executed(self, name: str) -> bool:
        return name in self.nodes

    def items(self, name: str, output_index: int = 0, run_index: int = -1) -> list[ItemRecord]:
        data = self.nodes.get(name)
        if data is None or output_index != 0:
            return []
        values = data if isinstance(data, list) else [data]
        return [ItemRecord.from_dict(value) for value in values]

    def paired_item(self, name: str, item_index: int | None = None) -> ItemRecord:
        items = self.items(name)
        if not items:
            raise EvaluationError(f"No data available for node '{name}'")
        index = self.item_index if item_index is None else item_index
        return items[index] if 0 <= index < len(items) else items[0]

    def input_items(self) -> list[ItemRecord]:
        return [self.current]

    def fingerprint(self) -> str:
        payload = json.dumps(to_json_compatible(self.nodes), sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class RunNodeSource(NodeDataSource):
    """Node outputs read from a ContextManager's workflow and execution store."""

    def __init__(self, manager: ContextManager, node_name: str, item_index: int, run_index: int):
        self.manager = manager
        self.node_name = node_name
        self.item_index = item_index
        self.run_index = run_index

    @property
    def store(self) -> RunExecutionData:
        return self.manager.run_execution_data

    def node_names(self) -> list[str]:
        return list(self.manager.workflow.nodes)

    def has_node(self, name: str) -> bool:
        return name in self.manager.workflow.nodes

    def parameters(self, name: str) -> Mapping[str, Any]:
        node = self.manager.workflow.get_node(name)
        return node.parameters if node is not None else {}

    def node_type(self, name: str) -> str:
        node = self.manager.workflow.get_node(name)
        return node.type if node is not None else ""

    def is_executed(self, name: str) -> bool:
        return self.store.has_run(name)

    def items(self, name: str, output_index: int = 0, run_index: int = -1) -> list[ItemRecord]:
        items = self.store.output_items(name, output_index, run_index)
        if not items and self.manager.mode == "manual":
            pinned = self.manager.workflow.get_pin_data(name) or []
            items = [ItemRecord.from_dict(entry) for entry in pinned]
        return items

    def paired_item(self, name: str, item_index: int | None = None) -> ItemRecord:
        index = self.item_index if item_index is None else item_index
        return self.manager.resolver.resolve_input_item(name, self.node_name, index, self.run_index)

    def _parent(self) -> tuple[str, int, int] | None:
        parent = self.manager.workflow.get_parent_main_input_node(self.node_name)
        if parent is None:
            return None
        run = self.manager.resolver.input_run_index(parent.node, self.run_index)
        return parent.node, parent.output_index, run

    def input_items(self) -> list[ItemRecord]:
        parent = self._parent()
        if parent is None:
            return []
        name, output_index, run = parent
        return self.items(name, output_index, run)

    def previous_node(self) -> dict[str, Any] | None:
        parent = self._parent()
        if parent is None:
            return None
        name, output_index, run = parent
        return {"name": name, "outputIndex": output_index, "runIndex": run}

    def fingerprint(self) -> str:
        return self.store.fingerprint()


# =============================================================================
# Expression-facing accessors
# =============================================================================


class NodeAccessor(HostObject):
    """$("Name"): one node's outputs, parameters and paired item."""

    def __init__(self, source: NodeDataSource, name: str):
        self.source = source
        self.name = name

    def js_member(self, name: str) -> Any:
        if name == "item":
            return _item_view(self.source.paired_item(self.name))
        if name == "params":
            return ReadOnlyMapping(self.source.parameters(self.name), label=f"{self.name}.params")
        if name == "isExecuted":
            return self.source.is_executed(self.name)
        members = {
            "first": self.first,
            "last": self.last,
            "all": self.all,
            "pairedItem": self.paired_item,
            "itemMatching": self.paired_item,
        }
        if name in members:
            return members[name]
        return MissingMember(name=name, obj=self)

    def _items(self, branch_index: Any = UNDEFINED, run_index: Any = UNDEFINED) -> list[ItemRecord]:
        return self.source.items(self.name, _index_arg(branch_index, 0), _index_arg(run_index, -1))

    def first(self, branch_index: Any = UNDEFINED, run_index: Any = UNDEFINED) -> Any:
        items = self._items(branch_index, run_index)
        return _item_view(items[0]) if items else UNDEFINED

    def last(self, branch_index: Any = UNDEFINED, run_index: Any = UNDEFINED) -> Any:
        items = self._items(branch_index, run_index)
        return _item_view(items[-1]) if items else UNDEFINED

    def all(self, branch_index: Any = UNDEFINED, run_index: Any = UNDEFINED) -> list[dict[str, Any]]:
        return [_item_view(item) for item in self._items(branch_index, run_index)]

    def paired_item(self, item_index: Any = UNDEFINED) -> dict[str, Any]:
        index = None if is_undefined(item_index) or item_index is None else to_integer(item_index)
        return _item_view(self.source.paired_item(self.name, index))

    def js_plain(self) -> Any:
        return f"[Node: {self.name}]"


class NodeLookup(HostObject):
    """The $ function: $("Name") returns a NodeAccessor."""

    js_type = "function"

    def __init__(self, source: NodeDataSource):
        self.source = source

    def __call__(self, name: Any = UNDEFINED) -> NodeAccessor:
        if not isinstance(name, str):
            raise EvaluationError("$() expects a node name as a string")
        if not self.source.has_node(name):
            raise EvaluationError(
                f"Referenced node '{name}' does not exist",
                description="Check the node name for typos or rename references after renaming nodes",
            )
        return NodeAccessor(self.source, name)

    def js_plain(self) -> Any:
        return "[Function: $]"


class InputAccessor(HostObject):
    """$input: the current node's input items."""

    def __init__(self, source: NodeDataSource, item_index: int, parameters: Mapping[str, Any]):
        self.source = source
        self.item_index = item_index
        self.parameters = parameters

    def js_member(self, name: str) -> Any:
        if name == "item":
            items = self.source.input_items()
            if 0 <= self.item_index < len(items):
                return _item_view(items[self.item_index])
            return UNDEFINED
        if name == "params":
            return ReadOnlyMapping(self.parameters, label="params")
        members = {"first": self.first, "last": self.last, "all": self.all}
        if name in members:
            return members[name]
        return MissingMember(name=name, obj=self)

    def first(self) -> Any:
        items = self.source.input_items()
        return _item_view(items[0]) if items else UNDEFINED

    def last(self) -> Any:
        items = self.source.input_items()
        return _item_view(items[-1]) if items else UNDEFINED

    def all(self) -> list[dict[str, Any]]:
        return [_item_view(item) for item in self.source.input_items()]

    def js_plain(self) -> Any:
        return "[object Input]"


class NodeOutputs(Mapping[str, Any]):
    """$node: node name -> representative output (lazy, read-only)."""

    def __init__(self, source: NodeDataSource, item_index: int):
        self.source = source
        self.item_index = item_index

    def __getitem__(self, name: str) -> Any:
        if not self.source.is_executed(name):
            raise KeyError(name)
        items = self.source.items(name)
        record = items[self.item_index] if 0 <= self.item_index < len(items) else (items[0] if items else ItemRecord())
        view = _item_view(record)
        view.update(
            {
                "name": name,
                "type": self.source.node_type(name),
                "parameter": ReadOnlyMapping(self.source.parameters(name), label=f"{name}.parameter"),
            }
        )
        return ReadOnlyMapping(view, label=name)

    def __iter__(self) -> Iterator[str]:
        return (name for name in self.source.node_names() if self.source.is_executed(name))

    def __len__(self) -> int:
        return sum(1 for _ in self)


# =============================================================================
# Context
# =============================================================================


@dataclass(eq=False)
class ExpressionContext:
    """
    Data one evaluation sees.

    Example:
        context = ExpressionContext(json={"name": "Ada"}, env={"REGION": "eu"})
        engine.evaluate("{{ $json.name }} in {{ $env.REGION }}", context)
    """

    json: Any = field(default_factory=dict)
    binary: Mapping[str, Any] | None = None
    env: Mapping[str, Any] = field(default_factory=dict)
    variables: Mapping[str, Any] = field(default_factory=dict)
    workflow: Mapping[str, Any] = field(default_factory=dict)
    execution: Mapping[str, Any] = field(default_factory=dict)
    nodes: Mapping[str, Any] = field(default_factory=dict)
    parameters: Mapping[str, Any] = field(default_factory=dict)
    node_name: str | None = None
    run_index: int = 0
    item_index: int = 0
    now: dt.datetime | None = None
    extra_globals: dict[str, Any] = field(default_factory=dict)
    execution_id: str | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    node_source: NodeDataSource | None = None

    def __post_init__(self) -> None:
        if self.now is None:
            self.now = dt.datetime.now(UTC)
        elif self.now.tzinfo is None:
            self.now = self.now.replace(tzinfo=UTC)
        if self.node_source is None:
            current = ItemRecord(json=dict(self.json) if isinstance(self.json, Mapping) else {})
            self.node_source = StaticNodeSource(self.nodes, current, self.item_index)
        self._bindings: dict[str, Any] | None = None
        self._fingerprints: dict[tuple[str, ...] | None, str] = {}
        self._lock = threading.Lock()

    @property
    def today(self) -> dt.datetime:
        assert self.now is not None
        return start_of(self.now, "day")

    def cancel(self) -> None:
        """Host-initiated cancellation; in-flight evaluations fail with ExecutionCancelledError."""
        self.cancel_event.set()

    def bindings(self) -> dict[str, Any]:
        """$-bindings visible to expressions (memoized)."""
        with self._lock:
            if self._bindings is None:
                self._bindings = self._build_bindings()
            return self._bindings

    def _build_bindings(self) -> dict[str, Any]:
        assert self.node_source is not None
        json_value = ReadOnlyMapping(self.json, label="$json") if isinstance(self.json, Mapping) else self.json
        previous = self.node_source.previous_node()
        return {
            "$json": json_value,
            "$binary": ReadOnlyMapping(self.binary or {}, label="$binary"),
            "$env": ReadOnlyMapping(self.env, label="$env"),
            "$vars": ReadOnlyMapping(self.variables, label="$vars"),
            "$workflow": ReadOnlyMapping(self.workflow, label="$workflow"),
            "$execution": ReadOnlyMapping(
                {"id": self.execution_id, **self.execution}, label="$execution"
            ),
            "$parameter": ReadOnlyMapping(self.parameters, label="$parameter"),
            "$node": ReadOnlyMapping(NodeOutputs(self.node_source, self.item_index), label="$node"),
            "$": NodeLookup(self.node_source),
            "$input": InputAccessor(self.node_source, self.item_index, self.parameters),
            "$prevNode": ReadOnlyMapping(previous, label="$prevNode") if previous else UNDEFINED,
            "$runIndex": self.run_index,
            "$itemIndex": self.item_index,
            "$now": self.now,
            "$today": self.today,
        }

    def _component(self, root: str) -> Any:
        assert self.node_source is not None
        if root in NODE_DATA_ROOTS:
            return [self.node_name, self.run_index, self.item_index, self.node_source.fingerprint()]
        values = {
            "$json": self.json,
            "$binary": self.binary,
            "$env": self.env,
            "$vars": self.variables,
            "$workflow": self.workflow,
            "$execution": [self.execution_id, self.execution],
            "$runIndex": self.run_index,
            "$itemIndex": self.item_index,
            "$now": self.now,
            "$today": self.today,
        }
        return values.get(root)

    def fingerprint(self, roots: list[str] | None = None) -> str:
        """
        Stable digest of the context data.

        With roots=None the whole context is hashed; otherwise only the
        components those $-roots read (plus host extra globals, which any
        expression may reference by bare name).
        """
        key = tuple(roots) if roots is not None else None
        cached = self._fingerprints.get(key)
        if cached is not None:
            return cached
        names = sorted(set(roots)) if roots is not None else sorted(
            set(self.bindings()) | {"$json"}
        )
        data: dict[str, Any] = {}
        for name in names:
            component = "$node" if name in NODE_DATA_ROOTS else name
            if component not in data:
                data[component] = self._component(name)
        data["__extra__"] = self.extra_globals
        payload = json.dumps(to_json_compatible(data), sort_keys=True, default=str)
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        self._fingerprints[key] = digest
        return digest

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExpressionContext:
        """
        Build a context from its JSON form (camelCase keys):

            {"json": {...}, "binary": {...}, "env": {...}, "vars": {...},
             "nodes": {"Name": {...}}, "workflow": {...}, "execution": {...},
             "runIndex": 0, "itemIndex": 0, "now": "2024-01-01T00:00:00Z"}

        With "workflowData" and "runExecutionData" present the context is
        built through a ContextManager for "nodeName", so lineage works.
        """
        now = data.get("now")
        if isinstance(now, str):
            now = dt.datetime.fromisoformat(now.replace("Z", "+00:00"))
        if "workflowData" in data and "nodeName" in data:
            manager = ContextManager(
                Workflow.from_dict(data["workflowData"]),
                RunExecutionData.from_dict(data.get("runExecutionData") or {}),
                env=data.get("env"),
                variables=data.get("vars"),
                execution_id=data.get("executionId"),
            )
            return manager.create_context(
                data["nodeName"],
                item_index=int(data.get("itemIndex", 0)),
                run_index=int(data.get("runIndex", 0)),
                now=now,
            )
        return cls(
            json=data.get("json", {}),
            binary=data.get("binary"),
            env=data.get("env") or {},
            variables=data.get("vars") or data.get("variables") or {},
            workflow=data.get("workflow") or {},
            execution=data.get("execution") or {},
            nodes=data.get("nodes") or {},
            parameters=data.get("parameters") or {},
            node_name=data.get("nodeName"),
            run_index=int(data.get("runIndex", 0)),
            item_index=int(data.get("itemIndex", 0)),
            now=now,
            execution_id=data.get("executionId"),
        )

    @classmethod
    def coerce(cls, value: ExpressionContext | Mapping[str, Any] | None) -> ExpressionContext:
        if isinstance(value, ExpressionContext):
            return value
        if value is None:
            return cls()
        if isinstance(value, Mapping):
            return cls.from_dict(value)
        raise ApplicationError(
            f"Expected an ExpressionContext or a mapping, got {type(value).__name__}"
        )


# =============================================================================
# Context manager
# =============================================================================


class ContextManager:
    """
    Build per-item contexts for one workflow run.

    Example:
        manager = ContextManager(workflow, run_data, env={"API_URL": "https://api"})
        context = manager.create_context("Transform", item_index=1)
        engine.evaluate('{{ $("Fetch").item.json.id }}', context)
    """

    def __init__(
        self,
        workflow: Workflow,
        run_execution_data: RunExecutionData | None = None,
        env: Mapping[str, Any] | None = None,
        variables: Mapping[str, Any] | None = None,
        execution_id: str | None = None,
        mode: str = "manual",
        engine: ExpressionEngine | None = None,
    ):
        self.workflow = workflow
        self.run_execution_data = run_execution_data or RunExecutionData()
        self.env = dict(env or {})
        self.variables = dict(variables or {})
        self.execution_id = execution_id
        self.mode = mode
        self.engine = engine
        self.resolver = PairedItemResolver(workflow, self.run_execution_data)
        self._lock = threading.Lock()

    def _now(self) -> dt.datetime:
        now = dt.datetime.now(UTC)
        timezone = self.workflow.settings.get("timezone")
        if not timezone:
            return now
        try:
            return now.astimezone(get_zone(timezone))
        except EvaluationError:
            logger.warning(f"Unknown workflow timezone '{timezone}', using UTC")
            return now

    def create_context(
        self,
        node_name: str,
        item_index: int = 0,
        run_index: int = 0,
        now: dt.datetime | None = None,
        extra_globals: dict[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExpressionContext:
        """
        Context for one item of one node run.

        Raises:
            ApplicationError: If the node is not part of the workflow
        """
        node = self.workflow.get_node(node_name)
        if node is None:
            raise ApplicationError(f"Node '{node_name}' does not exist in the workflow")

        source = RunNodeSource(self, node_name, item_index, run_index)
        items = source.input_items()
        current = items[item_index] if 0 <= item_index < len(items) else ItemRecord()

        context = ExpressionContext(
            json=current.json,
            binary=current.binary,
            env=self.env,
            variables=self.variables,
            workflow=self.workflow.to_dict(),
            execution={"mode": self.mode},
            parameters=node.parameters,
            node_name=node_name,
            run_index=run_index,
            item_index=item_index,
            now=now or self._now(),
            extra_globals=dict(extra_globals or {}),
            execution_id=self.execution_id,
            cancel_event=cancel_event or threading.Event(),
            node_source=source,
        )
        logger.debug(f"Created context for node '{node_name}' item {item_index} run {run_index}")
        return context

    def resolve_paired_item(
        self,
        target_node: str,
        from_node: str,
        item_index: int,
        run_index: int = 0,
        output_index: int = 0,
    ) -> ItemRecord:
        """
        Walk lineage from an output item of from_node back to target_node.

        Raises:
            PairedItemError: One of the lineage failure kinds, naming the node
        """
        return self.resolver.resolve(target_node, from_node, item_index, run_index, output_index)

    def get_context(self, scope: str, node: Node | str | None = None) -> dict[str, Any]:
        """
        Mutable key bag scoped to the whole run ("flow") or one node ("node").

        Raises:
            ApplicationError: For node scope without a node, or an unknown scope
        """
        if scope == "flow":
            key = "flow"
        elif scope == "node":
            if node is None:
                raise ApplicationError(
                    'The request data of context type "node" the node parameter has to be set!'
                )
            key = f"node:{node if isinstance(node, str) else node.name}"
        else:
            raise ApplicationError(
                "Unknown context type. Only `flow` and `node` are supported.",
                extra={"contextType": scope},
            )
        with self._lock:
            return self.run_execution_data.context_data.setdefault(key, {})

    def resolve_parameters(
        self,
        node: Node | str,
        context: ExpressionContext,
        engine: ExpressionEngine | None = None,
        message_mapping: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        Evaluate every templated string parameter of a node.

        Raises:
            WorkflowOperationError: If an expression timed out
            ExecutionCancelledError: If the run was cancelled
            NodeOperationError: For any other evaluation failure
        """
        engine = engine or self.engine
        if engine is None:
            raise ApplicationError("resolve_parameters needs an ExpressionEngine")
        resolved_node = self.workflow.get_node(node) if isinstance(node, str) else node
        if resolved_node is None:
            raise ApplicationError(f"Node '{node}' does not exist in the workflow")
        return self._resolve_value(resolved_node.parameters, resolved_node, context, engine, message_mapping)

    def _resolve_value(
        self,
        value: Any,
        node: Node,
        context: ExpressionContext,
        engine: ExpressionEngine,
        message_mapping: dict[str, str] | None,
    ) -> Any:
        if isinstance(value, Mapping):
            return {k: self._resolve_value(v, node, context, engine, message_mapping) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve_value(v, node, context, engine, message_mapping) for v in value]
        if not isinstance(value, str) or "{{" not in value:
            return value

        template = value[1:] if value.startswith("=") else value
        result = engine.evaluate(template, context)
        if result.success:
            return result.value
        error = result.error
        if isinstance(error, ExecutionCancelledError):
            raise error
        if isinstance(error, EvaluationTimeoutError):
            raise WorkflowOperationError(error.message, node=node.name, description=error.description)
        raise NodeOperationError(
            node.name,
            error if error is not None else "Expression evaluation failed",
            run_index=context.run_index,
            item_index=context.item_index,
            message_mapping=message_mapping,
        )
