"""Tests for template segmentation and span analysis."""

import pytest

from flowexpr.engine import ExpressionSyntaxError, ParseError, ResourceLimitError, parse_template
from flowexpr.engine.resolver.classifier import ExpressionClassifier, ExpressionKind
from flowexpr.engine.resolver.expression_parser import nesting, normalize, parse_expression
from flowexpr.engine.template_parser import offset_to_position


class TestSegmentation:
    """Literal and resolvable segments cover the template contiguously."""

    def test_plain_text_is_single_literal(self):
        parsed = parse_template("no expressions here")

        assert not parsed.is_template
        assert len(parsed.segments) == 1
        assert parsed.segments[0].kind == "literal"
        assert parsed.segments[0].text == "no expressions here"

    def test_empty_template_has_no_segments(self):
        parsed = parse_template("")

        assert parsed.segments == ()
        assert not parsed.is_template

    def test_mixed_template_offsets(self):
        parsed = parse_template("Hello {{ $json.name }}!")

        kinds = [(s.kind, s.start, s.end) for s in parsed.segments]
        assert kinds == [("literal", 0, 6), ("resolvable", 6, 22), ("literal", 22, 23)]
        assert parsed.segments[1].text == "{{ $json.name }}"

    def test_segments_are_contiguous(self):
        template = "a {{ 1 }} b {{ 2 }}{{ 3 }} c"
        parsed = parse_template(template)

        assert parsed.segments[0].start == 0
        for previous, current in zip(parsed.segments, parsed.segments[1:]):
            assert previous.end == current.start
        assert parsed.segments[-1].end == len(template)
        assert "".join(s.text for s in parsed.segments) == template

    def test_object_literal_does_not_close_span(self):
        parsed = parse_template("{{ {a: {b: 1}} }}")

        assert len(parsed.segments) == 1
        assert parsed.segments[0].expression.cleaned == "{a: {b: 1}}"

    def test_quoted_closing_delimiter_does_not_close_span(self):
        parsed = parse_template("{{ '}}' }} tail")

        assert parsed.segments[0].expression.cleaned == "'}}'"
        assert parsed.segments[1].text == " tail"


class TestDelimiterErrors:
    """Unbalanced delimiters raise ParseError at the offending offset."""

    def test_unmatched_open(self):
        with pytest.raises(ParseError) as exc_info:
            parse_template("abc {{ $json.name")

        assert exc_info.value.offset == 4
        assert exc_info.value.position == (4, 6)
        assert exc_info.value.code == "PARSE_ERROR"

    def test_stray_close(self):
        with pytest.raises(ParseError) as exc_info:
            parse_template("a }} b")

        assert exc_info.value.offset == 2

    def test_second_span_unmatched(self):
        with pytest.raises(ParseError) as exc_info:
            parse_template("{{ 1 }} and {{ 2")

        assert exc_info.value.offset == 12


class TestParsedExpression:
    """Static facts collected for each span."""

    def test_cleaned_and_offsets(self):
        parsed = parse_template("x {{   $json.a  }}")
        expression = parsed.expressions[0]

        assert expression.inner == "   $json.a  "
        assert expression.cleaned == "$json.a"
        assert expression.inner_start == 4
        assert expression.cleaned_start == 7
        assert not expression.is_empty

    def test_empty_span(self):
        expression = parse_template("{{   }}").expressions[0]

        assert expression.is_empty
        assert expression.tree is None
        assert expression.syntax_error is None

    def test_dependencies_are_collected(self):
        parsed = parse_template("{{ $json.user.name }} {{ $env.REGION }}")

        assert parsed.dependencies == ("$json.user.name", "$env.REGION")

    def test_method_call_depends_on_receiver(self):
        expression = parse_template("{{ $json.name.toUpperCase() }}").expressions[0]

        assert expression.dependencies == ("$json.name",)

    def test_syntax_error_is_recorded_not_raised(self):
        expression = parse_template("{{ $json.name.toUpperCase( }}").expressions[0]

        assert expression.syntax_error is not None
        assert expression.syntax_error.code == "SYNTAX_ERROR"
        assert expression.tree is None

    def test_complexity_grows_with_calls(self):
        simple = parse_template("{{ $json.a }}").expressions[0]
        busy = parse_template("{{ $json.a.map(x => x * 2).filter(x => x > 1) }}").expressions[0]

        assert busy.complexity > simple.complexity
        assert busy.depth >= simple.depth


class TestClassification:
    """Spans route to JMESPath or the expression evaluator."""

    @pytest.mark.parametrize(
        "text",
        [
            "$json.items[*].name",
            "$json.items[?price > `10`].name",
            "$json.matrix[]",
            "$json.matrix[*][]",
            "$json.items[0:2]",
            "length($json.items)",
            "$json.items | [0]",
        ],
    )
    def test_query_syntax_is_jmespath(self, text):
        assert ExpressionClassifier().classify(text) is ExpressionKind.JMESPATH

    @pytest.mark.parametrize(
        "text",
        [
            "$json.items.map(i => i.name)",
            "$json.a && $json.b",
            "$json.a?.b",
            "$json.name.toUpperCase()",
            "$json.a === 1",
            '$("Fetch").item.json',
            "$json.items[0]",
            "[].length",
            "$isEmpty([])",
            "$json.a == []",
            "$json.a.concat([1])",
        ],
    )
    def test_expression_syntax_is_expression(self, text):
        assert ExpressionClassifier().classify(text) is ExpressionKind.EXPRESSION

    def test_quoted_markers_are_ignored(self):
        assert ExpressionClassifier().classify("$json.note + '[*]'") is ExpressionKind.EXPRESSION

    def test_template_span_kind(self):
        parsed = parse_template("{{ $json.items[*].name }}")

        assert parsed.expressions[0].kind is ExpressionKind.JMESPATH
        assert parsed.expressions[0].dependencies == ("$json",)


class TestOffsetToPosition:
    def test_first_line(self):
        position = offset_to_position("hello", 2, 4)

        assert (position.line, position.column, position.start, position.end) == (1, 3, 2, 4)

    def test_later_line(self):
        position = offset_to_position("ab\ncd", 4)

        assert position.line == 2
        assert position.column == 2
        assert position.end == 4

    def test_offsets_are_clamped(self):
        position = offset_to_position("abc", 10, 20)

        assert position.start == 3
        assert position.end == 3


# ---------------------------------------------------------------------------
# Expression grammar
# ---------------------------------------------------------------------------


class TestExpressionGrammar:
    """Expression text parses into Node trees with source spans."""

    def test_binary_over_member_chain(self):
        tree = parse_expression("$json.items[0].price * 2")

        assert (tree.kind, tree.value, tree.start, tree.end) == ("binary", "*", 0, 24)
        left, right = tree.children
        assert (left.kind, left.value, left.start, left.end) == ("member", "price", 0, 20)
        assert left.children[0].kind == "index"
        assert right.value == 2

    def test_conditional(self):
        tree = parse_expression("$json.a ? 'yes' : 'no'")

        assert tree.kind == "conditional"
        assert [child.value for child in tree.children[1:]] == ["yes", "no"]

    def test_new_expression(self):
        tree = parse_expression("new Date(1)")

        assert tree.kind == "new"
        assert (tree.children[0].kind, tree.children[0].value) == ("name", "Date")
        assert tree.children[1].value == 1

    def test_object_literal_keys(self):
        tree = parse_expression("{a, 'b c': 1, [k]: 2, 3: 4}")

        assert tree.kind == "object"
        assert [child.value for child in tree.children] == ["a", "b c", None, "3"]
        assert tree.children[2].kind == "computed_property"

    def test_reserved_words_as_property_names(self):
        assert parse_expression("{new: 1}").children[0].value == "new"
        assert parse_expression("$json.default.new").value == "new"

    def test_typeof(self):
        tree = parse_expression("typeof x")

        assert (tree.kind, tree.value) == ("unary", "typeof")

    def test_arrow_with_parenthesized_object_body(self):
        tree = parse_expression("x => ({a: 1})")

        assert (tree.kind, tree.value) == ("arrow", ("x",))
        assert tree.children[0].kind == "object"

    def test_empty_array_literal(self):
        tree = parse_expression("[].length")

        assert tree.kind == "member"
        assert (tree.children[0].kind, tree.children[0].children) == ("array", ())

    @pytest.mark.parametrize(
        "text,message,offset",
        [
            ("$json.a +", "Unexpected end of expression", 9),
            ("[...a]", "Spread syntax is not supported", 1),
            ("'abc", "Unterminated string literal", 0),
            ("`x`", "Template literals are not supported, use string concatenation", 0),
            ("a in b", "'in' is not supported in expressions", 2),
            ("$json.a++", "Increment and decrement operators are not supported", 7),
            ("x => {a: 1}", "Arrow function bodies must be expressions; wrap object literals in parentheses", 5),
            ("(a, a) => a", "Duplicate parameter 'a'", 4),
            ("()", "Expected an expression", 1),
            ("1 = 2", "Invalid assignment target", 2),
            ("   ", "Empty expression", 0),
            ("-2 ** 2", "Unexpected token '**'", 3),
        ],
    )
    def test_syntax_errors(self, text, message, offset):
        with pytest.raises(ExpressionSyntaxError) as excinfo:
            parse_expression(text)

        assert excinfo.value.message == message
        assert excinfo.value.position == (offset, offset + 1)

    def test_nesting_limit(self):
        with pytest.raises(ResourceLimitError) as excinfo:
            parse_expression("[[[[1]]]]", max_depth=3)

        assert excinfo.value.kind == "call_stack"
        assert nesting(parse_expression("$json.a.b.c.d")) == 1

    def test_normalize_ignores_spacing(self):
        assert normalize("$json.a+1") == normalize("$json.a  +  1")
        assert normalize("$json.a+1") != normalize("$json.a+2")
