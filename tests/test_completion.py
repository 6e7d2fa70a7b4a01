"""Tests for cursor-position completion."""

import pytest

from flowexpr.engine import CompletionProvider, create_default_registry


def labels(items):
    return [item.label for item in items]


class TestCompletionSources:
    """Which items are offered for each cursor position."""

    def test_outside_expression_offers_snippet(self, engine):
        items = engine.complete("plain text")

        assert labels(items) == ["{{ }}"]
        assert items[0].kind == "snippet"
        assert items[0].insert_text == "{{ $json }}"

    def test_after_closed_expression_offers_snippet(self, engine):
        assert labels(engine.complete("{{ $json }} and ")) == ["{{ }}"]

    def test_dollar_prefix(self, engine):
        items = engine.complete("Hello {{ $js")

        assert labels(items) == ["$json"]
        assert items[0].kind == "variable"

    def test_dollar_functions_insert_call(self, engine):
        items = engine.complete("{{ $upp")

        assert labels(items) == ["$upper"]
        assert items[0].insert_text == "$upper()"
        assert items[0].detail == "$upper(text)"

    def test_blank_expression_offers_variables_then_globals(self, engine):
        items = engine.complete("{{ ")
        names = labels(items)

        assert items[0].kind == "variable"
        assert "$json" in names
        assert "Math" in names
        assert "true" in names
        assert names.index("$json") < names.index("Math")

    def test_string_methods(self, engine):
        items = engine.complete("{{ 'abc'.toUp")

        assert "toUpperCase" in labels(items)
        method = next(item for item in items if item.label == "toUpperCase")
        assert method.kind == "method"
        assert method.insert_text == "toUpperCase()"

    def test_property_inserts_without_parentheses(self, engine):
        items = engine.complete("{{ 'abc'.len")
        length = next(item for item in items if item.label == "length")

        assert length.kind == "property"
        assert length.insert_text == "length"

    def test_namespace_members(self, engine):
        items = engine.complete("{{ Math.ro")

        assert labels(items)[0] == "round"
        assert items[0].insert_text == "round()"

    def test_date_receiver(self, engine):
        assert "plus" in labels(engine.complete("{{ $now.plu"))

    def test_unknown_receiver_offers_every_type(self, engine):
        names = labels(engine.complete("{{ something."))

        assert "toUpperCase" in names
        assert "sum" in names
        assert len(names) == len(set(names))

    def test_json_root_without_context_offers_object_methods(self, engine):
        names = labels(engine.complete("{{ $json."))

        assert "keys" in names
        assert "isEmpty" in names
        assert "day" not in names

    def test_unknown_receiver_lists_common_types_first(self, engine):
        names = labels(engine.complete("{{ something."))

        assert names.index("keys") < names.index("toUpperCase") < names.index("day")

    def test_cursor_in_the_middle(self, engine):
        template = "{{ $js }} tail"

        assert labels(engine.complete(template, cursor=6)) == ["$json"]

    def test_datetime_namespace_follows_library_switch(self):
        registry = create_default_registry()
        enabled = CompletionProvider(registry)
        disabled = CompletionProvider(registry, {"datetime": False, "jmespath": True})

        assert "DateTime" in labels(enabled.complete("{{ DateT"))
        assert "DateTime" not in labels(disabled.complete("{{ DateT"))


class TestContextAwareCompletion:
    """Receivers walked against the supplied context."""

    def test_object_keys_before_methods(self, engine, context):
        items = engine.complete("{{ $json.address.", context=context)

        assert labels(items)[:2] == ["city", "zip"]
        assert items[0].detail == "string"
        assert "keys" in labels(items)

    def test_string_value_in_context(self, engine, context):
        names = labels(engine.complete("{{ $json.name.to", context=context))

        assert "toUpperCase" in names
        assert "sum" not in names

    def test_array_index_path(self, engine, context):
        names = labels(engine.complete("{{ $json.items[0].", context=context))

        assert names[:2] == ["name", "price"]

    def test_node_names_are_offered(self, engine, context):
        names = labels(engine.complete("{{ $", context=context))

        assert '$("Webhook")' in names
        assert '$("Lookup")' in names

    def test_node_accessor_members(self, engine, context):
        names = labels(engine.complete('{{ $("Webhook").', context=context))

        assert set(names) == {"item", "first", "last", "all", "params", "isExecuted", "pairedItem"}

    def test_node_item_json(self, engine, context):
        names = labels(engine.complete('{{ $("Webhook").item.', context=context))

        assert "json" in names

    def test_invalid_context_is_ignored(self, engine):
        assert labels(engine.complete("{{ $js", context=42)) == ["$json"]


class TestRanking:
    def test_sort_text_is_sequential(self, engine):
        items = engine.complete("{{ 'abc'.to")

        assert [item.sort_text for item in items] == [f"{i:04d}" for i in range(len(items))]

    def test_prefix_matches_rank_first(self, engine):
        items = engine.complete("{{ 'abc'.case")

        assert all("case" in item.label.lower() for item in items)

    def test_to_dict(self, engine):
        data = engine.complete("{{ $js")[0].to_dict()

        assert data["label"] == "$json"
        assert data["insertText"] == "$json"
        assert data["sortText"] == "0000"
        assert "documentation" in data


@pytest.mark.asyncio
async def test_complete_async(engine):
    items = await engine.complete_async("{{ $js")

    assert labels(items) == ["$json"]
