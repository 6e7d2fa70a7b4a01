"""
Host node graph consumed by the context manager.

The graph is read-only from the engine's point of view: nodes carry a name,
type and parameters; connections run forward from a source node's output
index to a destination node's input index.

    connections = {
        "Fetch": [[Connection("Transform", 0)]],            # output 0 -> Transform input 0
        "Transform": [[Connection("Save", 0)], [Connection("Log", 0)]],
    }

Parent and child queries are breadth-first walks (nearest first) with a
visited set, so cyclic graphs terminate.
"""

from __future__ import annotations

import re
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

_PATH_TOKEN_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


@dataclass(frozen=True)
class Node:
    """Workflow node as supplied by the host."""

    name: str
    type: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)
    id: str = ""
    disabled: bool = False

    def get_parameter(self, path: str, default: Any = None) -> Any:
        """
        Dotted parameter lookup with list indexes.

        Example:
            node.get_parameter("options.headers[0].name")
        """
        current: Any = self.parameters
        for match in _PATH_TOKEN_RE.finditer(path):
            key, index = match.groups()
            if index is not None:
                if not isinstance(current, (list, tuple)) or int(index) >= len(current):
                    return default
                current = current[int(index)]
            elif isinstance(current, Mapping) and key in current:
                current = current[key]
            else:
                return default
        return current

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": self.type, "parameters": dict(self.parameters)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Node:
        return cls(
            name=data["name"],
            type=data.get("type", ""),
            parameters=dict(data.get("parameters") or {}),
            id=str(data.get("id", "")),
            disabled=bool(data.get("disabled", False)),
        )


@dataclass(frozen=True)
class Connection:
    """Forward edge target: destination node and its input index."""

    node: str
    index: int = 0


@dataclass(frozen=True)
class SourceConnection:
    """Backward edge: source node and the output index it feeds from."""

    node: str
    output_index: int = 0


class Workflow:
    """
    Node graph with forward connections and derived connections-by-destination.

    Example:
        workflow = Workflow(
            nodes=[Node("Start"), Node("Set")],
            connections={"Start": [[Connection("Set")]]},
        )
        workflow.get_parent_nodes("Set")  # ["Start"]
    """

    def __init__(
        self,
        nodes: Iterable[Node] = (),
        connections: Mapping[str, list[list[Connection]]] | None = None,
        name: str = "",
        id: str = "",
        active: bool = False,
        settings: Mapping[str, Any] | None = None,
        pin_data: Mapping[str, list[Any]] | None = None,
    ):
        self.nodes: dict[str, Node] = {node.name: node for node in nodes}
        self.connections: dict[str, list[list[Connection]]] = {
            source: [list(targets) for targets in outputs]
            for source, outputs in (connections or {}).items()
        }
        self.name = name
        self.id = id
        self.active = active
        self.settings = dict(settings or {"timezone": "UTC"})
        self.pin_data = dict(pin_data or {})
        self.connections_by_destination = self._index_by_destination()

    def _index_by_destination(self) -> dict[str, list[list[SourceConnection]]]:
        by_destination: dict[str, list[list[SourceConnection]]] = {}
        for source, outputs in self.connections.items():
            for output_index, targets in enumerate(outputs):
                for target in targets:
                    inputs = by_destination.setdefault(target.node, [])
                    while len(inputs) <= target.index:
                        inputs.append([])
                    inputs[target.index].append(SourceConnection(source, output_index))
        return by_destination

    def get_node(self, name: str) -> Node | None:
        return self.nodes.get(name)

    def get_parent_nodes(self, name: str, depth: int = -1) -> list[str]:
        """Ancestors of a node, nearest first. depth=-1 walks the whole graph."""
        return self._walk(name, depth, self._parents_of)

    def get_child_nodes(self, name: str, depth: int = -1) -> list[str]:
        """Descendants of a node, nearest first."""
        return self._walk(name, depth, self._children_of)

    def _parents_of(self, name: str) -> list[str]:
        return [conn.node for inputs in self.connections_by_destination.get(name, []) for conn in inputs]

    def _children_of(self, name: str) -> list[str]:
        return [conn.node for outputs in self.connections.get(name, []) for conn in outputs]

    @staticmethod
    def _walk(name: str, depth: int, neighbours: Any) -> list[str]:
        found: list[str] = []
        visited = {name}
        queue: deque[tuple[str, int]] = deque([(name, 0)])
        while queue:
            current, level = queue.popleft()
            if depth != -1 and level >= depth:
                continue
            for neighbour in neighbours(current):
                if neighbour in visited:
                    continue
                visited.add(neighbour)
                found.append(neighbour)
                queue.append((neighbour, level + 1))
        return found

    def get_parent_main_input_node(self, name: str) -> SourceConnection | None:
        """The node (and output index) feeding input 0 of a node, if connected."""
        inputs = self.connections_by_destination.get(name, [])
        if inputs and inputs[0]:
            return inputs[0][0]
        return None

    def get_node_connection_indexes(self, name: str, parent: str) -> tuple[int, int] | None:
        """
        (source output index, destination input index) linking an ancestor to a node.

        The ancestor does not have to be directly connected: the walk follows
        input connections backward until it reaches the parent.
        """
        if parent not in self.nodes:
            return None
        visited: set[str] = set()
        queue: deque[str] = deque([name])
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            for input_index, sources in enumerate(self.connections_by_destination.get(current, [])):
                for source in sources:
                    if source.node == parent:
                        return source.output_index, input_index
                    queue.append(source.node)
        return None

    def get_pin_data(self, name: str) -> list[Any] | None:
        return self.pin_data.get(name)

    def to_dict(self) -> dict[str, Any]:
        """Metadata exposed to expressions as $workflow."""
        return {"id": self.id, "name": self.name, "active": self.active}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Workflow:
        """
        Build a workflow from its JSON form.

        Connections use the host's wire shape:
            {"A": {"main": [[{"node": "B", "type": "main", "index": 0}]]}}
        """
        connections: dict[str, list[list[Connection]]] = {}
        for source, by_type in (data.get("connections") or {}).items():
            outputs = by_type.get("main", []) if isinstance(by_type, Mapping) else by_type
            connections[source] = [
                [Connection(c["node"], int(c.get("index", 0))) for c in (targets or [])]
                for targets in outputs
            ]
        return cls(
            nodes=[Node.from_dict(n) for n in data.get("nodes", [])],
            connections=connections,
            name=data.get("name", ""),
            id=str(data.get("id", "")),
            active=bool(data.get("active", False)),
            settings=data.get("settings"),
            pin_data=data.get("pinData"),
        )
