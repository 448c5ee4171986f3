from __future__ import annotations

import asyncio
from typing import Any

import pytest

from venture_flow.errors import RunCancelledError
from venture_flow.llm import GenerationClient
from venture_flow.memory import SessionRegistry
from venture_flow.pipeline import PlanPipeline
from venture_flow.schemas import Opportunity, PipelineState, Stage
from venture_flow.store import InMemoryPlanStore

from conftest import FakeAsyncOpenAI, opportunity_payload


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _registry(generation_client: GenerationClient, store: InMemoryPlanStore, **kwargs: Any) -> SessionRegistry:
    return SessionRegistry(lambda: PlanPipeline(generation_client, store), **kwargs)


@pytest.mark.asyncio
async def test_discard_aborts_in_flight_work(
    fake_openai: FakeAsyncOpenAI, generation_client: GenerationClient, store: InMemoryPlanStore
) -> None:
    registry = _registry(generation_client, store)
    session_id, pipeline = registry.create()
    fake_openai.gates[Stage.ANALYZE_MARKET] = asyncio.Event()

    preparing = asyncio.ensure_future(pipeline.prepare(Opportunity.model_validate(opportunity_payload())))
    for _ in range(200):
        if fake_openai.calls.get(Stage.ANALYZE_MARKET):
            break
        await asyncio.sleep(0)

    assert registry.discard(session_id) is True
    with pytest.raises(RunCancelledError):
        await preparing

    assert fake_openai.aborted == [Stage.ANALYZE_MARKET]
    assert pipeline.state is PipelineState.CANCELLED
    assert registry.get(session_id) is None
    assert registry.discard(session_id) is False
    assert await store.keys() == []


def test_idle_sessions_expire(generation_client: GenerationClient, store: InMemoryPlanStore) -> None:
    clock = FakeClock()
    registry = _registry(generation_client, store, idle_ttl=60.0, clock=clock)
    first, _ = registry.create()
    second, _ = registry.create()

    clock.now = 50.0
    assert registry.get(first) is not None
    clock.now = 70.0
    third, _ = registry.create()

    assert registry.session_ids() == [first, third]
    assert registry.get(second) is None
    assert registry.prune() == []


@pytest.mark.asyncio
async def test_session_limit_evicts_least_recently_used(
    generation_client: GenerationClient, store: InMemoryPlanStore
) -> None:
    registry = _registry(generation_client, store, max_sessions=2)
    first, _ = registry.create()
    second, evicted = registry.create()
    await evicted.prepare(Opportunity.model_validate(opportunity_payload()))
    registry.get(first)

    third, _ = registry.create()

    assert registry.session_ids() == [first, third]
    assert len(registry) == 2
    assert evicted.state is PipelineState.CANCELLED
