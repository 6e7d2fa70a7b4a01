"""
Per-evaluation resource guard.

One ExecutionGuard is active per evaluation and is found through a
ContextVar, so concurrent evaluations on worker threads never share
budgets. Evaluation code calls tick() at every member access and call,
enter()/exit() around nested calls, and check_value() on produced values.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

from ..exceptions import EvaluationTimeoutError, ExecutionCancelledError, ResourceLimitError

_active_guard: ContextVar[ExecutionGuard | None] = ContextVar("flowexpr_guard", default=None)

# Rough per-slot overhead used by estimate_size
_SLOT_BYTES = 8
_SIZE_SCAN_LIMIT = 10_000


def estimate_size(value: Any) -> int:
    """Approximate byte footprint of a value (strings by length, containers by slots)."""
    if isinstance(value, str):
        return len(value)
    if isinstance(value, (list, tuple)):
        total = len(value) * _SLOT_BYTES
        for item in value[:_SIZE_SCAN_LIMIT]:
            if isinstance(item, str):
                total += len(item)
        return total
    if isinstance(value, dict):
        total = len(value) * _SLOT_BYTES * 2
        for key in list(value)[:_SIZE_SCAN_LIMIT]:
            if isinstance(key, str):
                total += len(key)
        return total
    return _SLOT_BYTES


class ExecutionGuard:
    """Deadline, depth, memory and cancellation budget for one evaluation."""

    def __init__(
        self,
        timeout_ms: float,
        max_memory: int,
        max_depth: int,
        cancel_events: Sequence[threading.Event] = (),
        execution_id: str | None = None,
    ):
        self.timeout_ms = timeout_ms
        self.max_memory = max_memory
        self.max_depth = max_depth
        self.cancel_events = tuple(e for e in cancel_events if e is not None)
        self.execution_id = execution_id
        self.deadline = time.monotonic() + timeout_ms / 1000
        self.depth = 0
        self.steps = 0

    def tick(self) -> None:
        self.steps += 1
        for event in self.cancel_events:
            if event.is_set():
                raise ExecutionCancelledError(self.execution_id)
        if time.monotonic() > self.deadline:
            raise EvaluationTimeoutError(self.timeout_ms)

    def enter(self) -> None:
        if self.depth >= self.max_depth:
            raise ResourceLimitError("call_stack", self.max_depth)
        self.depth += 1

    def exit(self) -> None:
        self.depth -= 1

    def reserve(self, size: int) -> None:
        """Fail before allocating a value of the given approximate size."""
        if size > self.max_memory:
            raise ResourceLimitError("memory", self.max_memory)

    def check_value(self, value: Any) -> Any:
        self.reserve(estimate_size(value))
        return value


def current_guard() -> ExecutionGuard | None:
    return _active_guard.get()


def tick() -> None:
    guard = _active_guard.get()
    if guard is not None:
        guard.tick()


def reserve(size: int) -> None:
    guard = _active_guard.get()
    if guard is not None:
        guard.reserve(size)


def check_value(value: Any) -> Any:
    guard = _active_guard.get()
    if guard is not None:
        guard.check_value(value)
    return value


@contextmanager
def guarded_call() -> Iterator[None]:
    guard = _active_guard.get()
    if guard is None:
        yield
        return
    guard.enter()
    try:
        yield
    finally:
        guard.exit()


@contextmanager
def activate(guard: ExecutionGuard) -> Iterator[ExecutionGuard]:
    token = _active_guard.set(guard)
    try:
        yield guard
    finally:
        _active_guard.reset(token)
