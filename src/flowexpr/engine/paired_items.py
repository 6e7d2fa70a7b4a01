"""
Paired-item lineage resolution.

Given an item at (node, output index, item index, run index), walk its
paired_item links backward through the producing task runs until the target
node is reached:

    item ──paired_item──▶ input item of producer ──paired_item──▶ ... ──▶ target item

Each failure is a distinct error class naming the node involved; hosts
branch on the kind (see resolvable_state).
"""

from __future__ import annotations

import logging
from typing import Literal

from .exceptions import (
    NoExecutionDataError,
    NoInputConnectionError,
    NoNodeExecutionDataError,
    PairedItemError,
    PairedItemIntermediateNodesError,
    PairedItemInvalidInfoError,
    PairedItemMultipleMatchesError,
    PairedItemNoConnectionError,
    PairedItemNoInfoError,
)
from .execution_data import ItemRecord, PairedItem, RunExecutionData, SourceRef, TaskRun
from .workflow import Workflow

logger = logging.getLogger(__name__)

ResolvableState = Literal["valid", "pending", "invalid"]

_PENDING_ERRORS = (NoExecutionDataError, NoNodeExecutionDataError, PairedItemIntermediateNodesError)


def resolvable_state(error: BaseException | None, ignore_error: bool = False) -> ResolvableState:
    """
    Classify a lineage failure for the host.

    "pending" means the data may still arrive (nodes not executed yet);
    "invalid" means the lineage itself is broken.
    """
    if error is None:
        return "valid"
    if ignore_error or isinstance(error, _PENDING_ERRORS):
        return "pending"
    return "invalid"


class PairedItemResolver:
    """
    Walk paired-item links backward through a run's execution data.

    Example:
        resolver = PairedItemResolver(workflow, run_data)
        record = resolver.resolve("Fetch", from_node="Transform", item_index=2)
        record.json  # the Fetch item Transform's third item came from
    """

    def __init__(self, workflow: Workflow, run_execution_data: RunExecutionData | None):
        self.workflow = workflow
        self.run_execution_data = run_execution_data

    def _require_data(self, node_cause: str | None) -> RunExecutionData:
        data = self.run_execution_data
        if data is None or not data.run_data:
            raise NoExecutionDataError(node_cause)
        return data

    def resolve(
        self,
        target_node: str,
        from_node: str,
        item_index: int,
        run_index: int = 0,
        output_index: int = 0,
    ) -> ItemRecord:
        """
        Resolve the target node's item that an output item of from_node came from.

        Raises:
            PairedItemError: One of the lineage failure kinds
        """
        data = self._require_data(from_node)
        if not data.has_run(target_node):
            raise NoNodeExecutionDataError(target_node)
        source = SourceRef(from_node, output_index, run_index)
        return self._walk(target_node, source, PairedItem(item_index), origin=from_node)

    def resolve_input_item(
        self,
        target_node: str,
        active_node: str,
        item_index: int,
        run_index: int = 0,
    ) -> ItemRecord:
        """
        Resolve from the active node's input item, which is the item being
        processed while the active node has not produced output yet.
        """
        data = self._require_data(active_node)
        if not data.has_run(target_node):
            raise NoNodeExecutionDataError(target_node)
        parent = self.workflow.get_parent_main_input_node(active_node)
        if parent is None:
            raise NoInputConnectionError(active_node)
        if target_node != active_node and target_node not in self.workflow.get_parent_nodes(active_node):
            raise PairedItemNoConnectionError(active_node, target_node)
        parent_run = self.input_run_index(parent.node, run_index)
        source = SourceRef(parent.node, parent.output_index, parent_run)
        return self._walk(target_node, source, PairedItem(item_index), origin=active_node)

    def input_run_index(self, parent: str, run_index: int) -> int:
        """Run of the parent that fed the active node's run (latest available)."""
        data = self.run_execution_data
        runs = data.run_data.get(parent, []) if data is not None else []
        if not runs:
            return 0
        return min(run_index, len(runs) - 1)

    def _task(self, source: SourceRef, target_node: str) -> TaskRun:
        data = self._require_data(source.previous_node)
        task = data.task_run(source.previous_node, source.previous_node_run)
        if task is None:
            if source.previous_node == target_node:
                raise NoNodeExecutionDataError(target_node)
            raise PairedItemIntermediateNodesError(source.previous_node)
        return task

    def _walk(
        self,
        target_node: str,
        source: SourceRef | None,
        paired: PairedItem,
        origin: str,
        visited: frozenset[tuple[str, int, int, int]] = frozenset(),
    ) -> ItemRecord:
        while True:
            if source is None:
                raise PairedItemNoConnectionError(origin, target_node)
            step = (source.previous_node, source.previous_node_run, source.previous_node_output, paired.item)
            if step in visited:
                raise PairedItemInvalidInfoError(source.previous_node, "lineage forms a cycle")
            visited = visited | {step}

            task = self._task(source, target_node)
            items = task.items(source.previous_node_output)
            if not 0 <= paired.item < len(items):
                raise PairedItemInvalidInfoError(
                    source.previous_node,
                    f"item {paired.item} does not exist in output {source.previous_node_output}",
                )
            item = items[paired.item]
            if source.previous_node == target_node:
                return item

            links = item.paired_items()
            if links is None:
                raise PairedItemNoInfoError(source.previous_node)
            if not links:
                raise PairedItemInvalidInfoError(source.previous_node, "empty paired item list")
            if len(links) > 1:
                return self._resolve_many(target_node, task, links, source, origin, visited)

            paired = links[0]
            source = self._next_source(task, paired, source, target_node)

    def _next_source(
        self,
        task: TaskRun,
        paired: PairedItem,
        current: SourceRef,
        target_node: str,
    ) -> SourceRef | None:
        if paired.source_overwrite is not None:
            return paired.source_overwrite
        if not task.source:
            # The producing node has no inputs: the chain ends before the target
            raise PairedItemNoConnectionError(current.previous_node, target_node)
        if paired.input >= len(task.source):
            raise PairedItemInvalidInfoError(
                current.previous_node, f"input {paired.input} does not exist"
            )
        return task.source[paired.input]

    def _resolve_many(
        self,
        target_node: str,
        task: TaskRun,
        links: list[PairedItem],
        current: SourceRef,
        origin: str,
        visited: frozenset[tuple[str, int, int, int]],
    ) -> ItemRecord:
        matches: list[ItemRecord] = []
        first_error: PairedItemError | None = None
        for link in links:
            try:
                source = self._next_source(task, link, current, target_node)
                match = self._walk(target_node, source, link, origin, visited)
            except PairedItemError as e:
                first_error = first_error or e
                continue
            if not any(match is seen for seen in matches):
                matches.append(match)
        if not matches:
            assert first_error is not None
            raise first_error
        if len(matches) > 1:
            logger.debug(f"Lineage from {origin} fans in to {len(matches)} items of {target_node}")
            raise PairedItemMultipleMatchesError(target_node)
        return matches[0]
