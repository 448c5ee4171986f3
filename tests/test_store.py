from __future__ import annotations

import json
from pathlib import Path

import pytest

from venture_flow.errors import PlanNotFoundError, StoreConflictError
from venture_flow.schemas import ActionPlan, BuildMode, Opportunity, PlanSnapshot
from venture_flow.store import InMemoryPlanStore, JsonFilePlanStore, create_store, set_task_completed

from conftest import action_plan_payload, opportunity_payload


def _snapshot(opportunity_id: str = "art-shop") -> PlanSnapshot:
    return PlanSnapshot(
        opportunity=Opportunity.model_validate(opportunity_payload(opportunity_id=opportunity_id)),
        contract_version="v3",
        build_mode=BuildMode.OUT_SOURCED,
        action_plan=ActionPlan.model_validate(action_plan_payload()),
    )


@pytest.fixture(params=["memory", "file"])
def plan_store(request: pytest.FixtureRequest, tmp_path: Path):
    if request.param == "memory":
        return InMemoryPlanStore()
    return JsonFilePlanStore(tmp_path / "plans.json")


@pytest.mark.asyncio
async def test_set_then_get_round_trips(plan_store) -> None:
    stored = await plan_store.set("art-shop", _snapshot())

    loaded = await plan_store.get("art-shop")

    assert stored.version == 1
    assert loaded.to_payload() == stored.to_payload()
    assert isinstance(loaded.action_plan, ActionPlan)
    assert await plan_store.keys() == ["art-shop"]


@pytest.mark.asyncio
async def test_missing_key_returns_none(plan_store) -> None:
    assert await plan_store.get("nope") is None
    assert await plan_store.delete("nope") is False


@pytest.mark.asyncio
async def test_versions_guard_concurrent_writers(plan_store) -> None:
    first = await plan_store.set("art-shop", _snapshot())

    with pytest.raises(StoreConflictError) as excinfo:
        await plan_store.set("art-shop", _snapshot())
    assert excinfo.value.actual == 1

    second = await plan_store.set("art-shop", first, expected_version=1)
    assert second.version == 2

    with pytest.raises(StoreConflictError):
        await plan_store.set("art-shop", first, expected_version=1)


@pytest.mark.asyncio
async def test_delete_forgets_the_plan(plan_store) -> None:
    await plan_store.set("art-shop", _snapshot())

    assert await plan_store.delete("art-shop") is True
    assert await plan_store.get("art-shop") is None
    await plan_store.set("art-shop", _snapshot())


@pytest.mark.asyncio
async def test_set_task_completed_bumps_version(plan_store) -> None:
    await plan_store.set("art-shop", _snapshot())

    updated = await set_task_completed(plan_store, "art-shop", "OPS-02", True)

    assert updated.version == 2
    completed = {task.id: task.completed for task in updated.action_plan.all_tasks()}
    assert completed == {"OPS-01": False, "OPS-02": True, "MKT-01": False}
    reloaded = await plan_store.get("art-shop")
    assert reloaded.action_plan.all_tasks()[1].completed is True


@pytest.mark.asyncio
async def test_set_task_completed_unknown_targets(plan_store) -> None:
    with pytest.raises(PlanNotFoundError):
        await set_task_completed(plan_store, "art-shop", "OPS-01", True)

    await plan_store.set("art-shop", _snapshot())
    with pytest.raises(PlanNotFoundError):
        await set_task_completed(plan_store, "art-shop", "NOPE-1", True)


@pytest.mark.asyncio
async def test_file_store_persists_camel_case_json(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "plans.json"
    await JsonFilePlanStore(path).set("art-shop", _snapshot())

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["art-shop"]["contractVersion"] == "v3"
    assert document["art-shop"]["actionPlan"]["criticalPath"]["timeEstimate"] == "2-3 weeks"

    reopened = JsonFilePlanStore(path)
    assert (await reopened.get("art-shop")).opportunity.opportunity_name == "Digital Wall Art Shop"


def test_create_store_picks_backend(tmp_path: Path) -> None:
    assert isinstance(create_store(None), InMemoryPlanStore)
    assert isinstance(create_store(str(tmp_path / "plans.json")), JsonFilePlanStore)
