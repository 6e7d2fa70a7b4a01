"""Tests for the sandbox security surface: blocked patterns, globals and limits."""

import pytest

from flowexpr.engine import (
    EvaluationTimeoutError,
    ExecutionCancelledError,
    ExpressionContext,
    NotDefinedError,
    ResourceLimitError,
    SecurityConfig,
    SecurityError,
)
from flowexpr.engine.resolver.security_rules import SecurityPolicy


class TestBlockedPatterns:
    """Raw-text patterns reject an expression before anything runs."""

    def test_process_is_blocked(self, engine):
        result = engine.evaluate("{{ process.env }}")

        assert not result.success
        assert isinstance(result.error, SecurityError)
        assert result.error.pattern_name == "process"
        assert result.error.code == "SECURITY_ERROR"
        assert result.position == (3, 10)

    @pytest.mark.parametrize(
        "expression,pattern",
        [
            ("eval('1 + 1')", "eval"),
            ("Function('return 1')()", "Function"),
            ("setTimeout(1)", "setTimeout"),
            ("require('fs')", "require"),
            ("window.location", "window"),
            ("document.cookie", "document"),
            ("$json.constructor", "constructor"),
            ("$json.__proto__", "__proto__"),
            ("alert(1)", "alert"),
            ("exec ('ls')", "exec"),
        ],
    )
    def test_default_patterns(self, engine, expression, pattern):
        result = engine.evaluate("{{ " + expression + " }}")

        assert not result.success
        assert isinstance(result.error, SecurityError)
        assert result.error.pattern_name == pattern

    def test_position_points_into_multi_span_template(self, engine):
        template = "ok {{ 1 }} then {{ $json.a + eval('2') }}"
        result = engine.evaluate(template)

        start, end = result.position
        assert template[start:end] == "eval"

    def test_blocked_words_inside_identifiers_pass(self, engine):
        result = engine.evaluate("{{ $json.processed }}", {"json": {"processed": True}})

        assert result.success
        assert result.value is True

    def test_configured_patterns(self, make_engine):
        engine = make_engine(security={"blockedPatterns": [{"name": "fetch", "pattern": r"\bfetch\b"}]})

        result = engine.evaluate("{{ fetch }}")

        assert result.error.pattern_name == "fetch"

    def test_code_construction_cannot_be_configured_away(self, make_engine):
        engine = make_engine(security={"blockedPatterns": [], "allowFunctionConstructor": True})

        result = engine.evaluate("{{ eval('1') }}")

        assert isinstance(result.error, SecurityError)
        assert result.error.pattern_name == "eval"

    def test_policy_reports_pattern_order(self):
        policy = SecurityPolicy(SecurityConfig())

        assert policy.pattern_names[:4] == ["eval", "Function", "exec", "compile"]
        assert policy.matches_blocked_pattern("1 + 1") is None


class TestStaticMemberChecks:
    """Computed access to constructor paths is caught on the parsed tree."""

    def test_bracket_constructor(self, engine):
        result = engine.evaluate('{{ $json["constructor"] }}', {"json": {}})

        assert isinstance(result.error, SecurityError)
        assert result.error.pattern_name == "constructor"

    def test_dunder_members(self, engine):
        result = engine.evaluate('{{ $json["__class__"] }}', {"json": {}})

        assert isinstance(result.error, SecurityError)
        assert result.error.pattern_name == "__internal__"


class TestIdentifiers:
    """Only allowed globals, $-bindings and host globals resolve."""

    def test_unknown_global(self, engine):
        result = engine.evaluate("{{ fetchSecrets() }}")

        assert isinstance(result.error, NotDefinedError)
        assert isinstance(result.error, SecurityError)
        assert result.error.code == "NOT_DEFINED"
        assert result.error.name == "fetchSecrets"

    def test_unknown_dollar_variable(self, engine):
        result = engine.evaluate("{{ $secrets.key }}")

        assert isinstance(result.error, NotDefinedError)

    def test_allowed_globals(self, engine):
        assert engine.evaluate("{{ Math.max(1, 4, 2) }}").value == 4
        assert engine.evaluate("{{ parseInt('42') }}").value == 42

    def test_restricted_allowed_globals(self, make_engine):
        engine = make_engine(security={"allowedGlobals": ["Math"]})

        assert engine.evaluate("{{ Math.abs(-2) }}").value == 2
        assert isinstance(engine.evaluate("{{ JSON.stringify(1) }}").error, NotDefinedError)

    def test_host_extra_globals(self, engine):
        context = ExpressionContext(extra_globals={"taxRate": 0.5})

        assert engine.evaluate("{{ 10 * taxRate }}", context).value == 5

    def test_strict_grammar_rejects_extra_globals(self, make_engine):
        engine = make_engine(security={"strictGrammar": True})
        context = ExpressionContext(extra_globals={"taxRate": 0.5})

        result = engine.evaluate("{{ 10 * taxRate }}", context)

        assert isinstance(result.error, NotDefinedError)


class TestResourceLimits:
    """Timeout, memory, call depth and cancellation are enforced by the guard."""

    def test_memory_limit(self, make_engine):
        engine = make_engine(security={"maxMemory": 1024})

        result = engine.evaluate("{{ 'a'.repeat(5000) }}")

        assert isinstance(result.error, ResourceLimitError)
        assert result.error.kind == "memory"
        assert result.error.code == "RESOURCE_LIMIT"

    def test_call_stack_limit(self, make_engine):
        engine = make_engine(security={"maxCallStackSize": 3})

        result = engine.evaluate("{{ [1].map(a => [1].map(b => [1].map(c => [1].map(d => d)))) }}")

        assert isinstance(result.error, ResourceLimitError)
        assert result.error.kind == "call_stack"

    def test_timeout(self, make_engine):
        engine = make_engine(security={"timeout": 1})
        context = ExpressionContext(json={"n": list(range(400))})

        result = engine.evaluate("{{ $json.n.map(a => $json.n.map(b => a * b)) }}", context)

        assert isinstance(result.error, EvaluationTimeoutError)
        assert result.error.code == "TIMEOUT"

    def test_cancelled_context(self, engine):
        context = ExpressionContext(json={"a": 1})
        context.cancel()

        result = engine.evaluate("{{ $json.a }}", context)

        assert isinstance(result.error, ExecutionCancelledError)
        assert result.error.code == "CANCELLED"
        assert result.error.level == "warning"

    def test_default_limits_allow_large_strings(self, engine):
        result = engine.evaluate("{{ 'x'.repeat(1000) }}")

        assert result.success
        assert len(result.value) == 1000
