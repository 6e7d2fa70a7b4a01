"""
Expression engine facade.

One engine serves many concurrent evaluate/validate/complete calls. The
only shared mutable state is the result cache and the compiled-expression
memo, both lock-protected; per-evaluation guards live in a ContextVar.

Template results:
    - A template without {{ }} is returned unchanged
    - A template that is exactly one span returns the raw value ("{{ 1 + 1 }}" -> 2)
    - Otherwise every span is converted with String() (null and undefined
      become "") and joined with the literal text

Error positions are [start, end) offsets into the template.

Design Principles:
    - evaluate, validate and complete never raise
    - Async variants run the synchronous path in a worker thread; cancelling
      the awaiting task sets the guard's cancellation event
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

from .completion import CompletionItem, CompletionProvider
from .config import EngineConfig, load_engine_config
from .context_manager import ExpressionContext
from .exceptions import EvaluationError, ParseError
from .extensions.registry import ExtensionRegistry, create_default_registry
from .resolver.builtins import NAMESPACES, dollar_functions
from .resolver.evaluator import ExpressionEvaluator
from .resolver.values import to_string
from .results import EvaluationResult, ValidationResult
from .template_parser import ParsedExpression, ParsedTemplate, parse_template
from .validation import BusinessRule, ValidationEngine

logger = logging.getLogger(__name__)

ContextInput = ExpressionContext | Mapping[str, Any] | None


def interpolate(value: Any) -> str:
    """String() of an evaluated span; null and undefined interpolate as ""."""
    if value is None:
        return ""
    return to_string(value)


class ExpressionEngine:
    """
    Evaluate, validate and complete {{ }} templates.

    Usage:
        engine = ExpressionEngine()
        result = engine.evaluate("Total: {{ $json.price * $json.qty }}", {"json": {"price": 5, "qty": 3}})
        result.value  # "Total: 15"
        engine.validate("{{ $json.name.toUpperCase( }}").is_valid  # False
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        registry: ExtensionRegistry | None = None,
        business_rules: list[BusinessRule] | None = None,
    ):
        self.config = config or EngineConfig()
        self.registry = registry or create_default_registry()
        self.evaluator = ExpressionEvaluator(self.config, self.registry)
        self.validator = ValidationEngine(
            self.config, self.registry, policy=self.evaluator.policy, business_rules=business_rules
        )
        self.completion = CompletionProvider(self.registry, self.config.libraries)
        enabled = [name for name, on in self.config.libraries.items() if on]
        logger.info(f"Expression engine ready (libraries: {', '.join(enabled) or 'none'})")

    @classmethod
    def from_config_file(cls, path: str | Path | None = None) -> ExpressionEngine:
        """Build an engine from YAML config (explicit path, FLOWEXPR_CONFIG or ~/.flowexpr/config.yml)."""
        return cls(load_engine_config(path))

    # -- parsing ----------------------------------------------------------------

    def parse(self, template: str) -> ParsedTemplate:
        """
        Segment a template.

        Raises:
            ParseError: At the first unmatched delimiter
        """
        return parse_template(template)

    def generate_ast(self, template: str) -> list[dict[str, Any]]:
        """
        Tree of every span in a template, for tooling.

        Raises:
            ParseError: At the first unmatched delimiter
        """
        spans = []
        for expression in parse_template(template).expressions:
            entry: dict[str, Any] = {
                "source": expression.source,
                "start": expression.start,
                "end": expression.end,
                "kind": expression.kind.value,
                "dependencies": list(expression.dependencies),
                "complexity": expression.complexity,
            }
            if expression.tree is not None:
                entry["ast"] = expression.tree.to_dict()
            if expression.syntax_error is not None:
                entry["error"] = expression.syntax_error.to_dict()
            spans.append(entry)
        return spans

    # -- evaluation -------------------------------------------------------------

    def evaluate(
        self,
        template: str,
        context: ContextInput = None,
        cancel_event: threading.Event | None = None,
    ) -> EvaluationResult:
        start = time.perf_counter()
        try:
            expression_context = ExpressionContext.coerce(context)
        except Exception as e:
            return EvaluationResult.fail(EvaluationError(f"Invalid context: {e}"), self._elapsed(start))

        try:
            parsed = parse_template(template)
        except ParseError as e:
            return EvaluationResult.fail(e, self._elapsed(start))

        if not parsed.is_template:
            return EvaluationResult.ok(template, self._elapsed(start))

        try:
            return self._evaluate_template(parsed, expression_context, cancel_event, start)
        except Exception as e:
            logger.exception(f"Unexpected error evaluating template {template!r}")
            return EvaluationResult.fail(EvaluationError(str(e) or type(e).__name__), self._elapsed(start))

    def _evaluate_template(
        self,
        parsed: ParsedTemplate,
        context: ExpressionContext,
        cancel_event: threading.Event | None,
        start: float,
    ) -> EvaluationResult:
        if len(parsed.segments) == 1:
            expression = parsed.segments[0].expression
            assert expression is not None
            return self._evaluate_span(expression, context, cancel_event)

        parts: list[str] = []
        results: list[EvaluationResult] = []
        for segment in parsed.segments:
            if segment.expression is None:
                parts.append(segment.text)
                continue
            result = self._evaluate_span(segment.expression, context, cancel_event)
            if not result.success:
                return replace(result, execution_time_ms=self._elapsed(start))
            results.append(result)
            parts.append(interpolate(result.value))

        metadata = None
        if self.config.output.include_metadata or self.config.output.format == "ast":
            metadata = {
                "kind": "template",
                "dependencies": list(parsed.dependencies),
                "expressions": [r.metadata for r in results],
            }
        return EvaluationResult.ok(
            "".join(parts),
            self._elapsed(start),
            cached=bool(results) and all(r.cached for r in results),
            metadata=metadata,
        )

    def _evaluate_span(
        self,
        expression: ParsedExpression,
        context: ExpressionContext,
        cancel_event: threading.Event | None,
    ) -> EvaluationResult:
        if expression.is_empty:
            return EvaluationResult.ok(None)
        result = self.evaluator.evaluate(expression.cleaned, context, cancel_event=cancel_event)
        if result.success:
            return result
        if result.position is not None:
            offset = expression.cleaned_start
            return result.with_position(result.position[0] + offset, result.position[1] + offset)
        return result.with_position(expression.start, expression.end)

    async def evaluate_async(self, template: str, context: ContextInput = None) -> EvaluationResult:
        cancel_event = threading.Event()
        try:
            return await asyncio.to_thread(self.evaluate, template, context, cancel_event)
        except asyncio.CancelledError:
            # Stop the worker thread at its next guard check
            cancel_event.set()
            raise

    # -- validation and completion ------------------------------------------------

    def validate(self, template: str, context: ContextInput = None) -> ValidationResult:
        return self.validator.validate(template, context)

    async def validate_async(self, template: str, context: ContextInput = None) -> ValidationResult:
        return await asyncio.to_thread(self.validate, template, context)

    def complete(
        self,
        template: str,
        cursor: int | None = None,
        context: ContextInput = None,
    ) -> list[CompletionItem]:
        try:
            expression_context = ExpressionContext.coerce(context) if context is not None else None
        except Exception as e:
            logger.debug(f"Ignoring invalid completion context: {e}")
            expression_context = None
        return self.completion.complete(template, cursor, expression_context)

    async def complete_async(
        self,
        template: str,
        cursor: int | None = None,
        context: ContextInput = None,
    ) -> list[CompletionItem]:
        return await asyncio.to_thread(self.complete, template, cursor, context)

    # -- introspection ------------------------------------------------------------

    def describe_functions(self, type_name: str | None = None) -> dict[str, Any]:
        """Extension methods by type, plus $-functions and namespaces when no type is given."""
        types = [type_name] if type_name else self.registry.list_types()
        described: dict[str, Any] = {
            "methods": {t: [m.to_dict() for m in self.registry.methods_for(t)] for t in types}
        }
        if type_name is None:
            described["functions"] = [f.to_dict() for f in dollar_functions(self.config.libraries).values()]
            described["namespaces"] = {
                name: sorted(ns.members)
                for name, ns in NAMESPACES.items()
                if name != "DateTime" or self.config.library_enabled("datetime")
            }
        return described

    def clear_cache(self) -> None:
        self.evaluator.cache.clear()
        logger.debug("Expression cache cleared")

    def cache_stats(self) -> dict[str, int]:
        return {"size": len(self.evaluator.cache), **self.evaluator.cache.stats.to_dict()}

    @staticmethod
    def _elapsed(start: float) -> float:
        return (time.perf_counter() - start) * 1000
