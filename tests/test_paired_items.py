"""Tests for paired-item lineage resolution and its failure kinds."""

import pytest

from conftest import FIXED_NOW, build_run_data, build_workflow
from flowexpr.engine import (
    ContextManager,
    ItemRecord,
    Node,
    PairedItem,
    PairedItemError,
    PairedItemResolver,
    RunExecutionData,
    SourceRef,
    TaskRun,
    resolvable_state,
)
from flowexpr.engine.exceptions import (
    NoExecutionDataError,
    NoInputConnectionError,
    NoNodeExecutionDataError,
    PairedItemIntermediateNodesError,
    PairedItemInvalidInfoError,
    PairedItemMultipleMatchesError,
    PairedItemNoConnectionError,
    PairedItemNoInfoError,
)


def resolver_for(run_data: RunExecutionData, extra_nodes=None) -> PairedItemResolver:
    return PairedItemResolver(build_workflow(extra_nodes=extra_nodes), run_data)


class TestResolve:
    """Successful walks through the lineage chain."""

    def test_one_hop(self, lineage_run_data):
        record = resolver_for(lineage_run_data).resolve("Fetch", "Transform", 1)

        assert record.json == {"id": 2}

    def test_two_hops(self, lineage_run_data):
        record = resolver_for(lineage_run_data).resolve("Trigger", "Transform", 0)

        assert record.json == {"start": True}

    def test_target_is_origin(self, lineage_run_data):
        record = resolver_for(lineage_run_data).resolve("Transform", "Transform", 1)

        assert record.json == {"name": "b"}

    def test_dict_paired_item(self):
        run_data = build_run_data(transform_pairs=[{"item": 1}, PairedItem(0)])

        record = resolver_for(run_data).resolve("Fetch", "Transform", 0)

        assert record.json == {"id": 2}

    def test_fan_in_to_same_item_is_single_match(self):
        run_data = build_run_data(transform_pairs=[[0, 0], 1])

        assert resolver_for(run_data).resolve("Fetch", "Transform", 0).json == {"id": 1}

    def test_multiple_links_converge_on_one_ancestor(self):
        run_data = build_run_data(transform_pairs=[[0, 1], 1])

        assert resolver_for(run_data).resolve("Trigger", "Transform", 0).json == {"start": True}

    def test_source_overwrite(self):
        run_data = build_run_data(
            transform_pairs=[PairedItem(0, source_overwrite=SourceRef("Trigger")), 1]
        )

        assert resolver_for(run_data).resolve("Trigger", "Transform", 0).json == {"start": True}

    def test_input_item_of_active_node(self, lineage_run_data):
        record = resolver_for(lineage_run_data).resolve_input_item("Fetch", "Save", 1)

        assert record.json == {"id": 2}


class TestLineageFailures:
    """Each broken chain raises the kind naming the node involved."""

    def test_no_execution_data(self):
        with pytest.raises(NoExecutionDataError) as exc_info:
            resolver_for(RunExecutionData()).resolve("Fetch", "Transform", 0)

        assert exc_info.value.error_type == "no_execution_data"

    def test_target_not_executed(self, lineage_run_data):
        with pytest.raises(NoNodeExecutionDataError) as exc_info:
            resolver_for(lineage_run_data).resolve("Save", "Transform", 0)

        assert exc_info.value.node_cause == "Save"

    def test_missing_paired_info(self):
        run_data = build_run_data(transform_pairs=[None, 1])

        with pytest.raises(PairedItemNoInfoError) as exc_info:
            resolver_for(run_data).resolve("Fetch", "Transform", 0)

        assert exc_info.value.node_cause == "Transform"
        assert exc_info.value.message == "Paired item data for node 'Transform' is unavailable"

    def test_out_of_range_paired_item(self):
        run_data = build_run_data(transform_pairs=[5, 1])

        with pytest.raises(PairedItemInvalidInfoError) as exc_info:
            resolver_for(run_data).resolve("Fetch", "Transform", 0)

        assert exc_info.value.node_cause == "Fetch"

    def test_out_of_range_origin_item(self, lineage_run_data):
        with pytest.raises(PairedItemInvalidInfoError) as exc_info:
            resolver_for(lineage_run_data).resolve("Fetch", "Transform", 9)

        assert exc_info.value.node_cause == "Transform"

    def test_invalid_input_index(self):
        run_data = build_run_data(transform_pairs=[PairedItem(0, input=3), 1])

        with pytest.raises(PairedItemInvalidInfoError):
            resolver_for(run_data).resolve("Fetch", "Transform", 0)

    def test_multiple_matches(self):
        run_data = build_run_data(transform_pairs=[[0, 1], 1])

        with pytest.raises(PairedItemMultipleMatchesError) as exc_info:
            resolver_for(run_data).resolve("Fetch", "Transform", 0)

        assert exc_info.value.node_cause == "Fetch"

    def test_intermediate_node_not_run(self):
        run_data = build_run_data(include_fetch=False)

        with pytest.raises(PairedItemIntermediateNodesError) as exc_info:
            resolver_for(run_data).resolve("Trigger", "Transform", 0)

        assert exc_info.value.node_cause == "Fetch"

    def test_no_input_connection(self, lineage_run_data):
        with pytest.raises(NoInputConnectionError) as exc_info:
            resolver_for(lineage_run_data).resolve_input_item("Fetch", "Trigger", 0)

        assert exc_info.value.node_cause == "Trigger"

    def test_target_not_upstream(self, lineage_run_data):
        lineage_run_data.run_data["Other"] = [TaskRun(outputs=[[ItemRecord({"x": 1})]])]
        resolver = resolver_for(lineage_run_data, extra_nodes=[Node("Other")])

        with pytest.raises(PairedItemNoConnectionError) as exc_info:
            resolver.resolve_input_item("Other", "Save", 0)

        assert exc_info.value.node_cause == "Save"
        assert exc_info.value.target == "Other"

    def test_chain_ends_before_target(self):
        run_data = build_run_data()
        run_data.run_data["Fetch"][0].source = []

        with pytest.raises(PairedItemNoConnectionError):
            resolver_for(run_data).resolve("Trigger", "Transform", 0)

    def test_errors_serialize_their_kind(self):
        error = PairedItemNoInfoError("Transform")
        data = error.to_dict()

        assert isinstance(error, PairedItemError)
        assert data["code"] == "PAIRED_ITEM_ERROR"
        assert data["node"] == "Transform"
        assert data["extra"]["type"] == "paired_item_no_info"


class TestResolvableState:
    @pytest.mark.parametrize(
        "error,state",
        [
            (None, "valid"),
            (NoExecutionDataError(), "pending"),
            (NoNodeExecutionDataError("Fetch"), "pending"),
            (PairedItemIntermediateNodesError("Fetch"), "pending"),
            (PairedItemNoInfoError("Fetch"), "invalid"),
            (PairedItemMultipleMatchesError("Fetch"), "invalid"),
            (ValueError("other"), "invalid"),
        ],
    )
    def test_states(self, error, state):
        assert resolvable_state(error) == state

    def test_ignore_error(self):
        assert resolvable_state(PairedItemNoInfoError("Fetch"), ignore_error=True) == "pending"


class TestLineageInExpressions:
    """Lineage failures surface as evaluation results."""

    def test_multiple_matches_in_expression(self, engine):
        manager = ContextManager(build_workflow(), build_run_data(transform_pairs=[[0, 1], 1]))
        context = manager.create_context("Save", item_index=0, now=FIXED_NOW)

        result = engine.evaluate('{{ $("Fetch").item.json.id }}', context)

        assert isinstance(result.error, PairedItemMultipleMatchesError)

    def test_all_still_works_when_item_is_ambiguous(self, engine):
        manager = ContextManager(build_workflow(), build_run_data(transform_pairs=[[0, 1], 1]))
        context = manager.create_context("Save", item_index=0, now=FIXED_NOW)

        result = engine.evaluate('{{ $("Fetch").all().length }}', context)

        assert result.value == 2

    def test_paired_item_method(self, engine, manager):
        context = manager.create_context("Save", item_index=0, now=FIXED_NOW)

        assert engine.evaluate('{{ $("Fetch").pairedItem(1).json.id }}', context).value == 2
