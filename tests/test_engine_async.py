"""Tests for concurrent use of one engine from async code."""

import asyncio

import pytest

from flowexpr.engine import ExpressionContext


class TestConcurrentEvaluation:
    """One engine serves overlapping evaluate/validate/complete calls."""

    @pytest.mark.asyncio
    async def test_gathered_evaluations_keep_their_contexts(self, engine):
        contexts = [ExpressionContext(json={"n": n}) for n in range(50)]

        results = await asyncio.gather(
            *(engine.evaluate_async("{{ $json.n * 2 }}", context) for context in contexts)
        )

        assert [r.value for r in results] == [n * 2 for n in range(50)]

    @pytest.mark.asyncio
    async def test_shared_cache_under_concurrency(self, engine):
        context = ExpressionContext(json={"name": "ada"})

        results = await asyncio.gather(
            *(engine.evaluate_async("{{ $json.name.toUpperCase() }}", context) for _ in range(20))
        )

        assert {r.value for r in results} == {"ADA"}
        assert engine.cache_stats()["size"] == 1

    @pytest.mark.asyncio
    async def test_mixed_operations(self, engine, context):
        evaluated, validated, completed = await asyncio.gather(
            engine.evaluate_async("{{ $json.items.length }}", context),
            engine.validate_async("{{ $json.name.toUpperCase( }}"),
            engine.complete_async("{{ $js"),
        )

        assert evaluated.value == 3
        assert not validated.is_valid
        assert completed[0].label == "$json"

    @pytest.mark.asyncio
    async def test_failures_are_results(self, engine):
        result = await engine.evaluate_async("{{ $json.a.b.c }}", {"json": {}})

        assert not result.success
        assert result.error is not None


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_task_raises(self, engine):
        context = ExpressionContext(json={"n": list(range(2000))})
        task = asyncio.create_task(
            engine.evaluate_async("{{ $json.n.map(a => $json.n.map(b => a * b)) }}", context)
        )
        await asyncio.sleep(0.01)

        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_cancelled_context_is_a_result(self, engine):
        context = ExpressionContext(json={"a": 1})
        context.cancel()

        result = await engine.evaluate_async("{{ $json.a }}", context)

        assert result.error.code == "CANCELLED"
