"""Tests for layered static validation."""

import pytest

from flowexpr.engine import BusinessRule, ExpressionContext, ExpressionEngine, ValidationEngine
from flowexpr.engine.validation.base import BaseValidator


def codes(issues):
    return [issue.code for issue in issues]


# ---------------------------------------------------------------------------
# Syntax layer
# ---------------------------------------------------------------------------


class TestSyntaxLayer:
    """Delimiters, empty spans, grammar and assignments."""

    def test_unmatched_open(self, engine):
        result = engine.validate("{{ $json.a")

        assert not result.is_valid
        assert codes(result.errors) == ["TEMPLATE_MISMATCH"]
        assert (result.errors[0].position.start, result.errors[0].position.end) == (0, 2)
        assert result.errors[0].suggestion == "Add the missing '}}'"
        assert result.layers_run == ["syntax"]

    def test_stray_close(self, engine):
        result = engine.validate("a }} b")

        assert codes(result.errors) == ["TEMPLATE_MISMATCH"]
        assert result.errors[0].suggestion == "Remove the stray '}}'"

    def test_empty_expression_is_warning(self, engine):
        result = engine.validate("{{ }}")

        assert result.is_valid
        assert codes(result.warnings) == ["EMPTY_EXPRESSION"]

    def test_grammar_error(self, engine):
        result = engine.validate("{{ $json.name.toUpperCase( }}")

        assert codes(result.errors) == ["SYNTAX_ERROR"]
        assert result.errors[0].layer == "syntax"

    def test_assignment_not_allowed(self, engine):
        result = engine.validate("{{ $json.a = 1 }}")

        assert codes(result.errors) == ["ASSIGNMENT_NOT_ALLOWED"]

    def test_invalid_query(self, engine):
        result = engine.validate("{{ $json.items[?price > ] }}")

        assert codes(result.errors) == ["SYNTAX_ERROR"]

    def test_valid_template(self, engine):
        result = engine.validate("Hello {{ $json.name.toUpperCase() }}")

        assert result.is_valid
        assert result.warnings == []
        assert result.layers_run == ["syntax", "semantic", "security", "performance", "business"]


# ---------------------------------------------------------------------------
# Semantic layer
# ---------------------------------------------------------------------------


class TestSemanticLayer:
    """Names, calls and value types."""

    def test_undefined_global(self, engine):
        result = engine.validate("{{ fetchData }}")

        assert codes(result.errors) == ["UNDEFINED_VARIABLE"]
        assert result.layers_run == ["syntax", "semantic"]

    def test_undefined_dollar_variable_suggests_closest(self, engine):
        result = engine.validate("{{ $jsn.name }}")

        assert codes(result.errors) == ["UNDEFINED_VARIABLE"]
        assert result.errors[0].suggestion == "Did you mean '$json'?"

    def test_arrow_parameters_are_bound(self, engine):
        assert engine.validate("{{ $json.items.map(item => item.price) }}").is_valid

    def test_deprecated_binary(self, engine):
        result = engine.validate("{{ $binary.file }}")

        assert result.is_valid
        assert codes(result.warnings) == ["DEPRECATED_VARIABLE"]

    @pytest.mark.parametrize(
        "template,code",
        [
            ("{{ $uppr('a') }}", "UNKNOWN_FUNCTION"),
            ("{{ $json() }}", "NOT_A_FUNCTION"),
            ("{{ $if(true) }}", "INSUFFICIENT_ARGUMENTS"),
            ("{{ $uuid(1) }}", "TOO_MANY_ARGUMENTS"),
            ("{{ 'abc'.shout() }}", "UNKNOWN_METHOD"),
            ("{{ 'abc'.length() }}", "NOT_A_FUNCTION"),
            ("{{ Math.pow2(2) }}", "UNKNOWN_FUNCTION"),
            ("{{ $now.plus() }}", "INSUFFICIENT_ARGUMENTS"),
            ('{{ $("A", "B") }}', "TOO_MANY_ARGUMENTS"),
        ],
    )
    def test_call_checks(self, engine, template, code):
        result = engine.validate(template)

        assert code in codes(result.errors)

    def test_unknown_function_suggestion(self, engine):
        result = engine.validate("{{ $uppr('a') }}")

        assert result.errors[0].suggestion == "Did you mean '$upper'?"

    def test_unknown_node_is_warning(self, engine, context):
        result = engine.validate('{{ $("Nope").item.json }}', context)

        assert result.is_valid
        assert "UNKNOWN_NODE" in codes(result.warnings)

    def test_missing_property_in_context(self, engine, context):
        result = engine.validate("{{ $json.address.country }}", context)

        assert result.is_valid
        assert codes(result.warnings) == ["UNDEFINED_PROPERTY"]
        assert "$json.address.country" in result.warnings[0].message

    def test_present_properties_pass(self, engine, context):
        result = engine.validate("{{ $json.items[0].name }} {{ $json.name.toUpperCase() }}", context)

        assert result.warnings == []

    def test_mixed_type_arithmetic(self, engine):
        result = engine.validate("{{ 'a' + 1 }}")

        assert result.is_valid
        assert codes(result.warnings) == ["MIXED_TYPE_ARITHMETIC"]

    def test_division_by_zero(self, engine):
        assert codes(engine.validate("{{ $json.price / 0 }}").warnings) == ["DIVISION_BY_ZERO"]

    def test_extra_globals(self, engine):
        context = ExpressionContext(extra_globals={"taxRate": 0.5})

        assert engine.validate("{{ taxRate * 2 }}", context).is_valid
        assert not engine.validate("{{ taxRate * 2 }}").is_valid

    def test_invalid_context(self, engine):
        result = engine.validate("{{ 1 }}", 42)

        assert codes(result.errors) == ["INVALID_CONTEXT"]


# ---------------------------------------------------------------------------
# Security layer
# ---------------------------------------------------------------------------


class TestSecurityLayer:
    """Blocked patterns are errors; injection heuristics are warnings."""

    @pytest.fixture
    def security_engine(self, make_engine):
        return make_engine(validation={"layers": ["security"]})

    def test_blocked_pattern_position(self, security_engine):
        result = security_engine.validate("{{ process.env }}")

        assert codes(result.errors) == ["BLOCKED_PATTERN"]
        assert (result.errors[0].position.start, result.errors[0].position.end) == (3, 10)

    def test_forbidden_member(self, security_engine):
        result = security_engine.validate('{{ $json["__class__"] }}')

        assert codes(result.errors) == ["FORBIDDEN_MEMBER"]

    def test_constructor_is_blocked_and_forbidden(self, security_engine):
        result = security_engine.validate("{{ $json.constructor }}")

        assert set(codes(result.errors)) == {"BLOCKED_PATTERN", "FORBIDDEN_MEMBER"}

    def test_unbalanced_template_scans_raw_text(self, engine):
        result = engine.validator.validate_layer("security", "{{ eval('1')")

        assert codes(result.errors) == ["BLOCKED_PATTERN"]

    @pytest.mark.parametrize(
        "template,code",
        [
            ("{{ '<script>x</script>' }}", "SCRIPT_INJECTION"),
            ("{{ 'DROP TABLE users' }}", "SQL_INJECTION_PATTERN"),
            ("{{ 'file:///etc/passwd' }}", "URL_INJECTION"),
            ("{{ '\\x41' }}", "ENCODED_CONTENT"),
        ],
    )
    def test_injection_warnings(self, security_engine, template, code):
        result = security_engine.validate(template)

        assert result.is_valid
        assert codes(result.warnings) == [code]


# ---------------------------------------------------------------------------
# Performance layer
# ---------------------------------------------------------------------------


class TestPerformanceLayer:
    def test_template_too_long(self, make_engine):
        engine = make_engine(validation={"performanceThresholds": {"maxLength": 10}})

        assert codes(engine.validate("{{ 1 + 2 + 3 }}").errors) == ["TEMPLATE_TOO_LONG"]

    def test_nesting_too_deep(self, make_engine):
        engine = make_engine(validation={"performanceThresholds": {"maxDepth": 2}})

        assert codes(engine.validate("{{ ((((1)))) }}").errors) == ["NESTING_TOO_DEEP"]

    def test_brackets_in_strings_do_not_nest(self, make_engine):
        engine = make_engine(validation={"performanceThresholds": {"maxDepth": 2}})

        assert engine.validate("{{ '((((' }}").is_valid

    def test_too_complex(self, make_engine):
        engine = make_engine(validation={"performanceThresholds": {"maxComplexity": 1}})

        assert "TOO_COMPLEX" in codes(engine.validate("{{ $json.a.map(x => x * 2) }}").errors)

    def test_too_many_function_calls(self, make_engine):
        engine = make_engine(validation={"performanceThresholds": {"maxFunctionCalls": 1}})
        result = engine.validate("{{ $json.a.trim().toUpperCase() }}")

        assert result.is_valid
        assert codes(result.warnings) == ["TOO_MANY_FUNCTION_CALLS"]

    def test_nested_iteration(self, engine):
        result = engine.validate("{{ $json.a.map(x => $json.b.filter(y => y === x)) }}")

        assert codes(result.warnings) == ["NESTED_ITERATION"]

    def test_expensive_operation(self, engine):
        result = engine.validate("{{ 'a'.repeat(200000) }}")

        assert codes(result.warnings) == ["EXPENSIVE_OPERATION"]


# ---------------------------------------------------------------------------
# Business rules and merge behaviour
# ---------------------------------------------------------------------------


class TestBusinessRules:
    """Host rules by regex or predicate."""

    def test_pattern_rule(self):
        rule = BusinessRule(code="NO_ENV_SECRETS", message="Use credentials", pattern=r"\$env\.\w*SECRET")
        engine = ExpressionEngine(business_rules=[rule])

        result = engine.validate("{{ $env.API_SECRET }}")

        assert codes(result.errors) == ["NO_ENV_SECRETS"]
        assert result.errors[0].layer == "business"
        assert (result.errors[0].position.start, result.errors[0].position.end) == (3, 18)

    def test_predicate_rule_with_warning(self):
        validator = ValidationEngine()
        validator.add_business_rule(
            BusinessRule(
                code="PREFER_INPUT",
                message="Prefer $input.item",
                check=lambda expression: "$json" in expression,
                severity="warning",
                suggestion="Use $input.item.json",
            )
        )

        result = validator.validate("{{ $json.a }}")

        assert result.is_valid
        assert codes(result.warnings) == ["PREFER_INPUT"]
        assert result.warnings[0].suggestion == "Use $input.item.json"

    @pytest.mark.parametrize("kwargs", [{}, {"pattern": "x", "check": lambda e: True}])
    def test_rule_needs_exactly_one_matcher(self, kwargs):
        with pytest.raises(ValueError, match="exactly one"):
            BusinessRule(code="X", message="x", **kwargs)


class FailingValidator(BaseValidator):
    name = "Failing"
    layer = "business"

    def validate(self, context):
        raise RuntimeError("boom")


class TestMergeRules:
    """Layer ordering, strict mode, error limits and validator failures."""

    def test_strict_runs_every_layer(self, make_engine):
        engine = make_engine(validation={"strict": True})

        result = engine.validate("{{ process.env }}")

        assert result.layers_run == ["syntax", "semantic", "security", "performance", "business"]
        assert {"UNDEFINED_VARIABLE", "BLOCKED_PATTERN"} <= set(codes(result.errors))

    def test_max_errors(self, make_engine):
        engine = make_engine(validation={"maxErrors": 1})

        result = engine.validate("{{ first }} {{ second }}")

        assert len(result.errors) == 1
        assert codes(result.warnings)[-1] == "TOO_MANY_ERRORS"

    def test_disabled_layers_do_not_run(self, make_engine):
        engine = make_engine(validation={"layers": ["syntax"]})

        result = engine.validate("{{ fetchData }}")

        assert result.is_valid
        assert result.layers_run == ["syntax"]

    def test_failing_validator_is_reported(self, engine):
        engine.validator.register_validator(FailingValidator())

        result = engine.validate("{{ 1 }}")

        assert codes(result.errors) == ["VALIDATOR_ERROR"]
        assert "boom" in result.errors[0].message

    def test_unknown_layer_registration(self, engine):
        validator = FailingValidator()
        validator.layer = "styling"

        with pytest.raises(ValueError, match="Unknown validation layer"):
            engine.validator.register_validator(validator)

    def test_validator_info(self):
        info = ValidationEngine().get_validator_info()

        assert [entry["layer"] for entry in info] == ["syntax", "semantic", "security", "performance", "business"]
        assert "TemplateSyntax" in info[0]["validators"]

    def test_to_dict(self, engine):
        data = engine.validate("{{ fetchData }}").to_dict()

        assert data["isValid"] is False
        assert data["errors"][0]["code"] == "UNDEFINED_VARIABLE"
        assert data["errors"][0]["position"]["line"] == 1
        assert data["layers"] == ["syntax", "semantic"]

    @pytest.mark.asyncio
    async def test_validate_async(self, engine):
        result = await engine.validate_async("{{ $json.a }}")

        assert result.is_valid
