"""
Expression evaluator: one resolvable span against one context.

Steps, strictly ordered:
    1. Blocked-pattern check on the raw text (SecurityError, nothing runs)
    2. Cache lookup by sha256(normalized text, context fingerprint)
    3. Compile through the rule pipeline (parse -> static security -> translate)
    4. Free identifiers checked against allowed globals and context bindings
    5. Execution in the sandbox under an ExecutionGuard
    6. Output normalization; successful, non-volatile results are cached

JMESPath spans skip steps 3-5 and run through the query library instead.
The evaluator never raises: every failure is reported in the result.
"""

from __future__ import annotations

import copy
import hashlib
import logging
import threading
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from ..cache import ExpressionCache
from ..config import EngineConfig
from ..exceptions import (
    EvaluationError,
    ExecutionBaseError,
    ResourceLimitError,
    SecurityError,
)
from ..extensions.registry import ExtensionRegistry, create_default_registry
from ..results import EvaluationResult
from . import guard
from .classifier import ExpressionClassifier, ExpressionKind
from .expression_parser import normalize
from .rules import RuleContext, TransformRule, apply_rules
from .sandbox import ExpressionSandbox
from .security_rules import CodeConstructionRule, SecurityPolicy
from .syntax_rules import JavaScriptTranslationRule, ParseExpressionRule
from .values import to_output

if TYPE_CHECKING:
    from ..context_manager import ExpressionContext

logger = logging.getLogger(__name__)


class ExpressionEvaluator:
    """
    Evaluate expression spans under the security policy, cache and guard.

    Example:
        evaluator = ExpressionEvaluator(EngineConfig())
        result = evaluator.evaluate("$json.price * 2", ExpressionContext(json={"price": 21}))
        # EvaluationResult(success=True, value=42, type="number", ...)
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        registry: ExtensionRegistry | None = None,
        cache: ExpressionCache | None = None,
        rules: list[TransformRule] | None = None,
    ):
        self.config = config or EngineConfig()
        self.registry = registry or create_default_registry()
        library_globals = {"DateTime"} if self.config.library_enabled("datetime") else set()
        self.policy = SecurityPolicy(self.config.security, library_globals=library_globals)
        self.sandbox = ExpressionSandbox(
            self.registry, self.policy, libraries=self.config.libraries
        )
        self.cache = cache or ExpressionCache(
            max_size=self.config.cache.max_size, ttl_ms=self.config.cache.ttl
        )
        self.classifier = ExpressionClassifier()
        self.rules = self._initialize_rules(rules)
        self._compiled = ExpressionCache(max_size=1024, ttl_ms=None)

    def _initialize_rules(self, custom_rules: list[TransformRule] | None) -> list[TransformRule]:
        default_rules: list[TransformRule] = [
            ParseExpressionRule(max_depth=self.config.security.max_call_stack_size),
            CodeConstructionRule(),
            JavaScriptTranslationRule(),
        ]
        return sorted(default_rules + (custom_rules or []), key=lambda r: r.priority)

    # -- compilation ------------------------------------------------------------

    def compile(self, text: str) -> RuleContext:
        """
        Run the rule pipeline over expression text (memoized by text).

        Raises:
            ExpressionSyntaxError: If the text is not a valid expression
            SecurityError: If a static security rule rejects it
        """
        compiled = self._compiled.get(text)
        if compiled is None:
            compiled = apply_rules(self.rules, RuleContext(expression=text))
            self._compiled.set(text, compiled)
        return compiled

    def classify(self, text: str) -> ExpressionKind:
        kind = self.classifier.classify(text)
        if kind is ExpressionKind.JMESPATH and not self.config.library_enabled("jmespath"):
            return ExpressionKind.EXPRESSION
        return kind

    # -- evaluation -------------------------------------------------------------

    def evaluate(
        self,
        text: str,
        context: ExpressionContext,
        kind: ExpressionKind | None = None,
        cancel_event: threading.Event | None = None,
    ) -> EvaluationResult:
        start = time.perf_counter()
        try:
            return self._evaluate(text, context, kind, cancel_event, start)
        except ExecutionBaseError as e:
            if self.config.debug.enabled:
                logger.debug(f"Evaluation of {text!r} failed: {e.message}")
            return EvaluationResult.fail(e, self._elapsed(start))
        except RecursionError:
            limit = self.config.security.max_call_stack_size
            return EvaluationResult.fail(ResourceLimitError("call_stack", limit), self._elapsed(start))
        except Exception as e:
            logger.exception(f"Unexpected error evaluating {text!r}")
            return EvaluationResult.fail(EvaluationError(str(e) or type(e).__name__), self._elapsed(start))

    def _evaluate(
        self,
        text: str,
        context: ExpressionContext,
        kind: ExpressionKind | None,
        cancel_event: threading.Event | None,
        start: float,
    ) -> EvaluationResult:
        blocked = self.policy.find_blocked_pattern(text)
        if blocked is not None:
            error = SecurityError(
                f"Expression contains blocked pattern '{blocked.name}'",
                pattern_name=blocked.name,
                description="This construct is not allowed in expressions for security reasons",
            )
            error.position = (blocked.start, blocked.end)
            raise error

        kind = kind or self.classify(text)
        is_query = kind is ExpressionKind.JMESPATH

        key = None
        if self.config.cache.enabled:
            key = self.fingerprint(text, context, is_query)
            hit = self.cache.get(key)
            if hit is not None:
                return replace(hit, value=copy.deepcopy(hit.value), cached=True, execution_time_ms=0.0)

        compiled: RuleContext | None = None
        if is_query:
            value = self._run_query(text, context, cancel_event)
            volatile = False
        else:
            compiled = self.compile(text)
            self._check_identifiers(compiled, context)
            value = self._execute(compiled, context, cancel_event)
            volatile = bool(compiled.metadata.get("volatile"))

        elapsed = self._elapsed(start)
        result = EvaluationResult.ok(value, elapsed, metadata=self._metadata(kind, compiled))
        if self.config.debug.log_performance:
            logger.info(f"Evaluated {text!r} in {elapsed:.2f}ms")

        if key is not None and not volatile:
            self.cache.set(key, replace(result, value=copy.deepcopy(result.value)))
        return result

    def fingerprint(self, text: str, context: ExpressionContext, is_query: bool = False) -> str:
        """Cache key: the full context by default, the dependency slice when enabled."""
        roots = None
        if self.config.cache.dependency_slicing:
            if is_query:
                roots = self.classifier.referenced_roots(text) or ["$json"]
            else:
                names = self.compile(text).metadata["free_names"]
                roots = sorted(name for name in names if name.startswith("$"))
        digest = hashlib.sha256()
        digest.update(normalize(text).encode("utf-8"))
        digest.update(b"\x00")
        digest.update(context.fingerprint(roots).encode("utf-8"))
        return digest.hexdigest()

    def _check_identifiers(self, compiled: RuleContext, context: ExpressionContext) -> None:
        bindings = set(context.bindings()) | self.sandbox.function_names
        self.policy.check_identifiers(
            compiled.metadata["free_names"],
            bindings=bindings,
            extra_globals=context.extra_globals.keys(),
        )

    def _guard(self, context: ExpressionContext, cancel_event: threading.Event | None) -> guard.ExecutionGuard:
        security = self.config.security
        return guard.ExecutionGuard(
            timeout_ms=security.timeout,
            max_memory=security.max_memory,
            max_depth=security.max_call_stack_size,
            cancel_events=[e for e in (context.cancel_event, cancel_event) if e is not None],
            execution_id=context.execution_id,
        )

    def _execute(
        self,
        compiled: RuleContext,
        context: ExpressionContext,
        cancel_event: threading.Event | None,
    ) -> Any:
        assert compiled.program is not None
        if self.config.debug.trace_execution:
            logger.debug(f"Executing {compiled.expression!r} as {compiled.program}")
        variables = {**context.extra_globals, **context.bindings()}
        with guard.activate(self._guard(context, cancel_event)) as active:
            active.tick()
            value = self.sandbox.run(compiled.program, compiled.metadata["arrows"], variables)
            return to_output(value)

    def _run_query(
        self,
        text: str,
        context: ExpressionContext,
        cancel_event: threading.Event | None,
    ) -> Any:
        if self.config.debug.trace_execution:
            logger.debug(f"Running JMESPath query {text!r}")
        with guard.activate(self._guard(context, cancel_event)) as active:
            active.tick()
            value = self.classifier.search(text, context.bindings())
            return to_output(active.check_value(value))

    def _metadata(self, kind: ExpressionKind, compiled: RuleContext | None) -> dict[str, Any] | None:
        output = self.config.output
        if not output.include_metadata and output.format != "ast":
            return None
        metadata: dict[str, Any] = {"kind": kind.value}
        if compiled is not None and compiled.tree is not None:
            metadata["dependencies"] = list(compiled.metadata.get("dependencies", []))
            metadata["complexity"] = compiled.metadata.get("complexity", 0)
            if output.format == "ast":
                metadata["ast"] = compiled.tree.to_dict()
        return metadata

    @staticmethod
    def _elapsed(start: float) -> float:
        return (time.perf_counter() - start) * 1000
