"""
Per-run execution data store supplied by the host.

    RunExecutionData
        run_data: node name -> [TaskRun, ...]          (one TaskRun per run index)
            TaskRun.outputs[output_index][item_index]   -> ItemRecord
            TaskRun.source[input_index]                 -> SourceRef | None
        context_data: "flow" | "node:<name>" -> dict   (key bags, see ContextManager.get_context)

Lineage is an explicit index: an ItemRecord's paired_item names item indexes
(and input indexes) in the producing node's input, never Python references
to other records.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class SourceRef:
    """Where one input of a task run came from."""

    previous_node: str
    previous_node_output: int = 0
    previous_node_run: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "previousNode": self.previous_node,
            "previousNodeOutput": self.previous_node_output,
            "previousNodeRun": self.previous_node_run,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SourceRef:
        return cls(
            previous_node=data["previousNode"],
            previous_node_output=int(data.get("previousNodeOutput") or 0),
            previous_node_run=int(data.get("previousNodeRun") or 0),
        )


@dataclass(frozen=True)
class PairedItem:
    """Link from an item to the input item it was produced from."""

    item: int
    input: int = 0
    source_overwrite: SourceRef | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"item": self.item}
        if self.input:
            data["input"] = self.input
        if self.source_overwrite is not None:
            data["sourceOverwrite"] = self.source_overwrite.to_dict()
        return data

    @classmethod
    def coerce(cls, value: Any) -> PairedItem:
        if isinstance(value, PairedItem):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(item=value)
        if isinstance(value, Mapping) and isinstance(value.get("item"), int):
            overwrite = value.get("sourceOverwrite")
            return cls(
                item=value["item"],
                input=int(value.get("input") or 0),
                source_overwrite=SourceRef.from_dict(overwrite) if overwrite else None,
            )
        raise ValueError(f"Invalid paired item: {value!r}")


PairedItemSpec = int | PairedItem | list[int | PairedItem]


@dataclass
class ItemRecord:
    json: dict[str, Any] = field(default_factory=dict)
    binary: dict[str, Any] | None = None
    paired_item: PairedItemSpec | None = None

    def paired_items(self) -> list[PairedItem] | None:
        """Normalized lineage links; None when the item records no lineage."""
        if self.paired_item is None:
            return None
        if isinstance(self.paired_item, list):
            return [PairedItem.coerce(p) for p in self.paired_item]
        return [PairedItem.coerce(self.paired_item)]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"json": self.json}
        if self.binary is not None:
            data["binary"] = self.binary
        pairs = self.paired_items()
        if pairs is not None:
            data["pairedItem"] = [p.to_dict() for p in pairs] if len(pairs) != 1 else pairs[0].to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> ItemRecord:
        """Accept {"json": ..., "pairedItem": ...} records or bare JSON objects."""
        if isinstance(data, ItemRecord):
            return data
        if isinstance(data, Mapping) and "json" in data:
            paired = data.get("pairedItem")
            if isinstance(paired, list):
                paired = [PairedItem.coerce(p) for p in paired]
            elif paired is not None:
                paired = PairedItem.coerce(paired)
            return cls(json=dict(data["json"] or {}), binary=data.get("binary"), paired_item=paired)
        return cls(json=dict(data) if isinstance(data, Mapping) else {"data": data})


@dataclass
class TaskRun:
    """One run of one node."""

    outputs: list[list[ItemRecord]] = field(default_factory=list)
    source: list[SourceRef | None] = field(default_factory=list)
    start_time: float = 0.0
    execution_time: float = 0.0

    def items(self, output_index: int = 0) -> list[ItemRecord]:
        if 0 <= output_index < len(self.outputs):
            return self.outputs[output_index]
        return []

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": {"main": [[item.to_dict() for item in output] for output in self.outputs]},
            "source": [s.to_dict() if s is not None else None for s in self.source],
            "startTime": self.start_time,
            "executionTime": self.execution_time,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TaskRun:
        outputs = (data.get("data") or {}).get("main") or []
        return cls(
            outputs=[[ItemRecord.from_dict(item) for item in (output or [])] for output in outputs],
            source=[SourceRef.from_dict(s) if s else None for s in (data.get("source") or [])],
            start_time=float(data.get("startTime") or 0.0),
            execution_time=float(data.get("executionTime") or 0.0),
        )


@dataclass
class RunExecutionData:
    run_data: dict[str, list[TaskRun]] = field(default_factory=dict)
    context_data: dict[str, dict[str, Any]] = field(default_factory=dict)
    last_node_executed: str | None = None

    def has_run(self, node: str) -> bool:
        return bool(self.run_data.get(node))

    def task_run(self, node: str, run_index: int = -1) -> TaskRun | None:
        """A node's task run; run_index=-1 selects the latest."""
        runs = self.run_data.get(node) or []
        if not runs:
            return None
        if run_index == -1:
            return runs[-1]
        if 0 <= run_index < len(runs):
            return runs[run_index]
        return None

    def output_items(self, node: str, output_index: int = 0, run_index: int = -1) -> list[ItemRecord]:
        task = self.task_run(node, run_index)
        return task.items(output_index) if task is not None else []

    def fingerprint(self) -> str:
        """Stable digest of node outputs and lineage (context bags excluded)."""
        data = {node: [run.to_dict() for run in runs] for node, runs in self.run_data.items()}
        payload = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RunExecutionData:
        """
        Build the store from its JSON form:
            {"runData": {"Node": [{"data": {"main": [[items]]}, "source": [...]}]},
             "contextData": {...}, "lastNodeExecuted": "Node"}
        """
        run_data = {
            node: [TaskRun.from_dict(run) for run in runs]
            for node, runs in (data.get("runData") or {}).items()
        }
        return cls(
            run_data=run_data,
            context_data={k: dict(v) for k, v in (data.get("contextData") or {}).items()},
            last_node_executed=data.get("lastNodeExecuted"),
        )
