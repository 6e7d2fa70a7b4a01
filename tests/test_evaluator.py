"""Tests for template evaluation through ExpressionEngine.evaluate."""

import math

import pytest

from flowexpr.engine import (
    ApplicationError,
    EvaluationError,
    ExpressionContext,
    ExpressionSyntaxError,
    NotDefinedError,
    NullReceiverError,
    ParseError,
    QueryError,
    SecurityError,
    UnknownMethodError,
    VariableAssignmentError,
)


class TestTemplateResults:
    """How span values combine with literal text."""

    def test_single_span_returns_raw_value(self, engine):
        result = engine.evaluate("{{ 1 + 1 }}")

        assert result.success
        assert result.value == 2
        assert result.type == "number"
        assert result.error is None

    def test_text_without_spans_is_unchanged(self, engine):
        result = engine.evaluate("just text")

        assert result.value == "just text"
        assert result.type == "string"

    def test_mixed_template_is_string(self, engine, context):
        result = engine.evaluate("Total: {{ $json.price * $json.qty }}", context)

        assert result.value == "Total: 15"
        assert result.type == "string"

    def test_null_and_undefined_interpolate_as_empty(self, engine, context):
        result = engine.evaluate("a{{ null }}b{{ $json.nothing }}c", context)

        assert result.value == "abc"

    def test_arrays_interpolate_comma_joined(self, engine):
        result = engine.evaluate("list: {{ [1, 2] }}")

        assert result.value == "list: 1,2"

    def test_empty_span(self, engine):
        result = engine.evaluate("{{ }}")

        assert result.success
        assert result.value is None
        assert result.type == "null"

    def test_first_failing_span_fails_the_template(self, engine):
        result = engine.evaluate("ok {{ 1 }} then {{ nope }}")

        assert not result.success
        assert isinstance(result.error, NotDefinedError)
        assert result.position == (16, 26)

    def test_parse_error(self, engine):
        result = engine.evaluate("{{ $json.name")

        assert not result.success
        assert isinstance(result.error, ParseError)
        assert result.position == (0, 2)

    def test_invalid_context_type(self, engine):
        result = engine.evaluate("{{ 1 }}", context=["not", "a", "mapping"])

        assert not result.success
        assert isinstance(result.error, EvaluationError)
        assert "Invalid context" in result.error.message

    def test_coerce_rejects_non_mappings(self):
        with pytest.raises(ApplicationError):
            ExpressionContext.coerce(42)

    def test_to_dict_shape(self, engine):
        data = engine.evaluate("{{ 2 * 3 }}").to_dict()

        assert data["success"] is True
        assert data["value"] == 6
        assert data["type"] == "number"
        assert "executionTime" in data
        assert "error" not in data


class TestOperators:
    """JavaScript operator semantics."""

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("7 / 2", 3.5),
            ("10 / 2", 5),
            ("5 % 3", 2),
            ("2 ** 10", 1024),
            ("(-2) ** 2", 4),
            ("2 ** 3 ** 2", 512),
            ("'a' + 1", "a1"),
            ("1 + 2 + '3'", "33"),
            ("'6' * '7'", 42),
            ("-'3'", -3),
            ("1 == '1'", True),
            ("1 === '1'", False),
            ("null == undefined", True),
            ("null === undefined", False),
            ("2 < 10", True),
            ("'2' < '10'", False),
            ("!''", True),
            ("0 || 'fallback'", "fallback"),
            ("1 && 'yes'", "yes"),
            ("0 ?? 'unused'", 0),
            ("null ?? 'default'", "default"),
            ("3 > 2 ? 'big' : 'small'", "big"),
            ("typeof 'x'", "string"),
            ("typeof undefined", "undefined"),
            ("typeof [1]", "object"),
            ("[].length", 0),
            ("[[1], []].length", 2),
        ],
    )
    def test_operator(self, engine, expression, expected):
        result = engine.evaluate("{{ " + expression + " }}")

        assert result.success, result.error
        assert result.value == expected

    def test_division_by_zero_is_infinity(self, engine):
        assert engine.evaluate("{{ 1 / 0 }}").value == math.inf

    def test_nan(self, engine):
        assert math.isnan(engine.evaluate("{{ 0 / 0 }}").value)

    def test_short_circuit_skips_right_side(self, engine):
        result = engine.evaluate("{{ false && $json.missing.deep }}", {"json": {}})

        assert result.value is False

    def test_comparison_with_empty_array_is_an_expression(self, make_engine):
        engine = make_engine(output={"includeMetadata": True})

        result = engine.evaluate("{{ $json.a == [] }}", {"json": {"a": None}})

        assert result.success, result.error
        assert result.value is False
        assert result.metadata["kind"] == "expression"


class TestDataAccess:
    """$-bindings, literals, arrows and optional chaining."""

    def test_nested_paths(self, engine, context):
        assert engine.evaluate("{{ $json.address.city }}", context).value == "London"
        assert engine.evaluate("{{ $json.items[1].name }}", context).value == "book"
        assert engine.evaluate("{{ $json['email'] }}", context).value == "ada@example.com"

    def test_missing_property_is_null(self, engine, context):
        result = engine.evaluate("{{ $json.nothing }}", context)

        assert result.success
        assert result.value is None

    def test_optional_chaining(self, engine, context):
        result = engine.evaluate("{{ $json.nothing?.deep?.deeper }}", context)

        assert result.success
        assert result.value is None

    def test_nullish_default(self, engine, context):
        assert engine.evaluate("{{ $json.address.zip ?? 'n/a' }}", context).value == "n/a"

    def test_object_and_array_literals(self, engine, context):
        result = engine.evaluate("{{ {total: $json.price * $json.qty, tags: [1, 'two']} }}", context)

        assert result.value == {"total": 15, "tags": [1, "two"]}
        assert result.type == "object"

    def test_arrow_functions(self, engine, context):
        result = engine.evaluate("{{ $json.items.filter(i => i.price > 10).map(i => i.name) }}", context)

        assert result.value == ["book", "lamp"]

    def test_arrow_closes_over_outer_parameter(self, engine):
        result = engine.evaluate("{{ [1, 2].map(a => [10].map(b => a + b)) }}")

        assert result.value == [[11], [12]]

    def test_env_vars_and_workflow(self, engine, context):
        assert engine.evaluate("{{ $env.REGION }}", context).value == "eu"
        assert engine.evaluate("{{ $vars.threshold }}", context).value == 100
        assert engine.evaluate("{{ $workflow.name }}", context).value == "Orders"
        assert engine.evaluate("{{ $execution.id }}", context).value == "exec-1"

    def test_static_node_outputs(self, engine, context):
        assert engine.evaluate('{{ $("Webhook").item.json.orderId }}', context).value == 42
        assert engine.evaluate('{{ $("Lookup").last().json.sku }}', context).value == "B"
        assert engine.evaluate('{{ $node["Webhook"].json.orderId }}', context).value == 42
        assert engine.evaluate('{{ $("Lookup").all().length }}', context).value == 2

    def test_unknown_node(self, engine, context):
        result = engine.evaluate('{{ $("Missing").item.json }}', context)

        assert isinstance(result.error, EvaluationError)
        assert "does not exist" in result.error.message

    def test_input_accessor(self, engine, context):
        assert engine.evaluate("{{ $input.item.json.name }}", context).value == "Ada Lovelace"
        assert engine.evaluate("{{ $input.all().length }}", context).value == 1

    def test_item_and_run_index(self, engine):
        context = ExpressionContext(item_index=3, run_index=1)

        assert engine.evaluate("{{ $itemIndex + $runIndex }}", context).value == 4

    def test_context_from_dict(self, engine):
        context = {
            "json": {"name": "Grace"},
            "env": {"STAGE": "prod"},
            "itemIndex": 2,
            "now": "2024-03-01T12:00:00Z",
        }

        result = engine.evaluate("{{ $json.name }}-{{ $env.STAGE }}-{{ $itemIndex }}-{{ $now.year }}", context)

        assert result.value == "Grace-prod-2-2024"

    def test_results_depend_on_context(self, engine):
        template = "{{ $json.n * 2 }}"

        assert engine.evaluate(template, {"json": {"n": 1}}).value == 2
        assert engine.evaluate(template, {"json": {"n": 5}}).value == 10


class TestEvaluationErrors:
    """Typed failures carry positions and stable codes."""

    def test_syntax_error(self, engine):
        template = "{{ $json.name.toUpperCase( }}"
        result = engine.evaluate(template, {"json": {"name": "x"}})

        assert isinstance(result.error, ExpressionSyntaxError)
        assert result.error.code == "SYNTAX_ERROR"
        start, end = result.position
        assert 0 <= start <= end <= len(template)

    def test_unknown_method(self, engine, context):
        result = engine.evaluate("{{ $json.name.frobnicate() }}", context)

        assert isinstance(result.error, UnknownMethodError)
        assert result.error.message == "frobnicate is not a function on type string"
        assert result.error.code == "UNKNOWN_METHOD"

    def test_method_on_null(self, engine, context):
        result = engine.evaluate("{{ $json.nothing.toUpperCase() }}", context)

        assert isinstance(result.error, NullReceiverError)
        assert result.error.message == "toUpperCase can't be used on null value"

    def test_optional_call_on_null(self, engine, context):
        result = engine.evaluate("{{ $json.nothing?.toUpperCase() }}", context)

        assert result.success
        assert result.value is None

    def test_property_of_undefined(self, engine, context):
        result = engine.evaluate("{{ $json.nothing.deep }}", context)

        assert isinstance(result.error, EvaluationError)
        assert result.error.message == "Cannot read properties of undefined (reading 'deep')"

    def test_assignment_to_env_is_rejected(self, engine, context):
        result = engine.evaluate("{{ $env.REGION = 'us' }}", context)

        assert isinstance(result.error, VariableAssignmentError)
        assert result.error.code == "ASSIGNMENT_ERROR"
        assert context.env["REGION"] == "eu"

    def test_allowed_methods(self, make_engine):
        engine = make_engine(security={"allowedMethods": ["toUpperCase"]})

        assert engine.evaluate("{{ 'a'.toUpperCase() }}").value == "A"
        result = engine.evaluate("{{ 'A'.toLowerCase() }}")
        assert isinstance(result.error, SecurityError)
        assert result.error.pattern_name == "allowed_methods"

    def test_errors_serialize(self, engine, context):
        data = engine.evaluate("{{ $json.name.frobnicate() }}", context).to_dict()

        assert data["success"] is False
        assert data["error"]["code"] == "UNKNOWN_METHOD"
        assert data["type"] == "UnknownMethodError"
        assert "position" in data


class TestDollarFunctions:
    """$-prefixed helper functions."""

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("$if(true, 'a', 'b')", "a"),
            ("$if(0, 'a', 'b')", "b"),
            ("$ifEmpty('', 'default')", "default"),
            ("$ifEmpty('set', 'default')", "set"),
            ("$isEmpty([])", True),
            ("$isNotEmpty({a: 1})", True),
            ("$length('hello')", 5),
            ("$keys({a: 1, b: 2})", ["a", "b"]),
            ("$unique([1, 1, 2])", [1, 2]),
            ("$sum([1, 2, 3])", 6),
            ("$max(1, 5, 3)", 5),
            ("$min(4, 2)", 2),
            ("$upper('abc')", "ABC"),
            ("$capitalize('hELLO')", "Hello"),
            ("$split('a,b', ',')", ["a", "b"]),
            ("$join(['a', 'b'], '-')", "a-b"),
            ("$number('12.5')", 12.5),
            ("$filter([1, 2, 3], x => x > 1)", [2, 3]),
            ("$map([1, 2], x => x * 10)", [10, 20]),
        ],
    )
    def test_function(self, engine, expression, expected):
        result = engine.evaluate("{{ " + expression + " }}")

        assert result.success, result.error
        assert result.value == expected

    def test_group_by(self, engine):
        result = engine.evaluate("{{ $groupBy([{r: 'a', n: 1}, {r: 'b', n: 2}, {r: 'a', n: 3}], 'r') }}")

        assert result.value == {"a": [{"r": "a", "n": 1}, {"r": "a", "n": 3}], "b": [{"r": "b", "n": 2}]}

    def test_random_int_bounds(self, engine):
        value = engine.evaluate("{{ $randomInt(1, 3) }}").value

        assert value in (1, 2, 3)

    def test_uuid_shape(self, engine):
        value = engine.evaluate("{{ $uuid() }}").value

        assert len(value) == 36
        assert value.count("-") == 4


class TestJmespathQueries:
    """Query-syntax spans run through JMESPath."""

    def test_filter_projection(self, engine, context):
        result = engine.evaluate("{{ $json.items[?price > `10`].name }}", context)

        assert result.value == ["book", "lamp"]

    def test_wildcard_projection(self, engine, context):
        assert engine.evaluate("{{ $json.items[*].price }}", context).value == [2, 30, 120]

    def test_query_function(self, engine, context):
        assert engine.evaluate("{{ length($json.items) }}", context).value == 3

    def test_jmespath_function(self, engine, context):
        result = engine.evaluate("{{ $jmespath($json, 'items[*].name') }}", context)

        assert result.value == ["pen", "book", "lamp"]

    def test_invalid_query(self, engine, context):
        result = engine.evaluate("{{ $json.items[?price > ] }}", context)

        assert isinstance(result.error, QueryError)

    def test_unknown_root_in_query(self, engine):
        result = engine.evaluate("{{ $nope.items[*].a }}")

        assert isinstance(result.error, NotDefinedError)

    def test_disabled_library_routes_to_expressions(self, make_engine):
        engine = make_engine(libraries={"jmespath": False})

        result = engine.evaluate("{{ $json.items[*].a }}", {"json": {"items": []}})

        assert not result.success
        assert isinstance(result.error, ExpressionSyntaxError)


class TestMetadata:
    """Optional metadata and AST output."""

    def test_include_metadata(self, make_engine):
        engine = make_engine(output={"includeMetadata": True})

        result = engine.evaluate("{{ $json.a + 1 }}", {"json": {"a": 1}})

        assert result.metadata["kind"] == "expression"
        assert result.metadata["dependencies"] == ["$json.a"]
        assert "ast" not in result.metadata

    def test_ast_format(self, make_engine):
        engine = make_engine(output={"format": "ast"})

        result = engine.evaluate("{{ 1 + 2 }}")

        assert result.value == 3
        assert result.metadata["ast"]["type"] == "binary"

    def test_no_metadata_by_default(self, engine):
        assert engine.evaluate("{{ 1 }}").metadata is None

    def test_generate_ast(self, engine):
        spans = engine.generate_ast("a {{ $json.x }} b {{ $json.items[*].id }}")

        assert [s["kind"] for s in spans] == ["expression", "jmespath"]
        assert spans[0]["dependencies"] == ["$json.x"]
        assert "ast" in spans[0]
        assert "ast" not in spans[1]
