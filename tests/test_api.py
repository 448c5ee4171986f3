from __future__ import annotations

from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

from venture_flow.app import create_app
from venture_flow.config import PipelineSettings
from venture_flow.llm import GenerationClient
from venture_flow.schemas import Stage
from venture_flow.store import InMemoryPlanStore

from conftest import FakeAsyncOpenAI


@pytest.fixture
def client(generation_client: GenerationClient, store: InMemoryPlanStore, settings: PipelineSettings) -> TestClient:
    return TestClient(create_app(settings=settings, generation_client=generation_client, store=store))


def _discover(client: TestClient) -> Dict[str, Any]:
    response = client.post("/pipeline/discover", json={"userInterests": "Illustration", "context": "Etsy notes"})
    assert response.status_code == 200
    return response.json()


def _prepare(client: TestClient) -> tuple[str, str]:
    session = _discover(client)
    opportunity_id = session["opportunities"][0]["id"]
    response = client.post(f"/pipeline/sessions/{session['sessionId']}/select", json={"opportunityId": opportunity_id})
    assert response.status_code == 200
    return session["sessionId"], opportunity_id


def test_healthcheck(client: TestClient) -> None:
    response = client.get("/pipeline/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_list_stages_exposes_all(client: TestClient) -> None:
    response = client.get("/pipeline/stages")
    assert response.status_code == 200
    stages = response.json()
    assert [item["id"] for item in stages] == [stage.value for stage in Stage]
    assert {item["id"] for item in stages if item["buildModeAware"]} == {"build_business_strategy", "extract_tasks"}


def test_discover_opens_a_session(client: TestClient) -> None:
    session = _discover(client)

    assert session["progress"]["state"] == "awaiting_selection"
    assert session["progress"]["contractVersion"] == "v3"
    assert [item["rank"] for item in session["opportunities"]] == [1, 2]
    assert session["opportunities"][0]["opportunityName"] == "Digital Wall Art Shop"

    response = client.get(f"/pipeline/sessions/{session['sessionId']}")
    assert response.status_code == 200
    assert response.json()["opportunities"] == session["opportunities"]


def test_discover_requires_material(client: TestClient, fake_openai: FakeAsyncOpenAI) -> None:
    response = client.post("/pipeline/discover", json={"focus": "Profit"})

    assert response.status_code == 422
    assert fake_openai.total_calls == 0


def test_full_plan_lifecycle(client: TestClient) -> None:
    session_id, opportunity_id = _prepare(client)

    progress = client.get(f"/pipeline/sessions/{session_id}").json()["progress"]
    assert progress["state"] == "awaiting_build_mode"
    assert progress["buildModeAdvice"]["outSourced"]["resourceMetrics"] == "Two people, $5k, 6 weeks."

    response = client.post(f"/pipeline/sessions/{session_id}/build-mode", json={"buildMode": "out-sourced"})
    assert response.status_code == 200
    plan = response.json()
    assert plan["buildMode"] == "out-sourced"
    assert plan["version"] == 1
    assert plan["actionPlan"]["criticalPath"]["timeEstimate"] == "2-3 weeks"
    assert plan["executiveBrief"]["roiPotential"] == "High"

    response = client.get(f"/pipeline/plans/{opportunity_id}")
    assert response.status_code == 200
    assert response.json()["opportunity"]["id"] == opportunity_id

    response = client.patch(f"/pipeline/plans/{opportunity_id}/tasks/OPS-01", json={"completed": True})
    assert response.status_code == 200
    updated = response.json()
    assert updated["version"] == 2
    assert updated["actionPlan"]["actionPlan"][0]["tasks"][0]["completed"] is True

    response = client.post(f"/pipeline/sessions/{session_id}/build-mode", json={"buildMode": "in-house"})
    assert response.status_code == 409

    assert client.delete(f"/pipeline/plans/{opportunity_id}").status_code == 200
    assert client.get(f"/pipeline/plans/{opportunity_id}").status_code == 404
    assert client.delete(f"/pipeline/plans/{opportunity_id}").status_code == 404


def test_unknown_ids_are_404(client: TestClient) -> None:
    assert client.get("/pipeline/sessions/missing").status_code == 404
    assert client.post("/pipeline/sessions/missing/recover").status_code == 404
    assert client.patch("/pipeline/plans/missing/tasks/OPS-01", json={"completed": True}).status_code == 404

    session = _discover(client)
    response = client.post(f"/pipeline/sessions/{session['sessionId']}/select", json={"opportunityId": "nope"})
    assert response.status_code == 404


def test_build_mode_before_selection_is_409(client: TestClient) -> None:
    session = _discover(client)

    response = client.post(f"/pipeline/sessions/{session['sessionId']}/build-mode", json={"buildMode": "in-house"})

    assert response.status_code == 409
    assert response.json()["detail"]["state"] == "awaiting_selection"


def test_invalid_build_mode_is_422(client: TestClient) -> None:
    session_id, _ = _prepare(client)

    response = client.post(f"/pipeline/sessions/{session_id}/build-mode", json={"buildMode": "hybrid"})

    assert response.status_code == 422


def test_stage_failure_maps_to_502_and_can_be_recovered(client: TestClient, fake_openai: FakeAsyncOpenAI) -> None:
    session = _discover(client)
    fake_openai.responses[Stage.GENERATE_STRUCTURE] = {"commander": "Only a commander"}

    response = client.post(
        f"/pipeline/sessions/{session['sessionId']}/select",
        json={"opportunityId": session["opportunities"][0]["id"]},
    )

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["stage"] == "generate_business_structure"
    assert detail["kind"] == "output_validation"
    assert detail["rollbackState"] == "awaiting_selection"

    response = client.post(f"/pipeline/sessions/{session['sessionId']}/recover")
    assert response.status_code == 200
    assert response.json()["progress"]["state"] == "awaiting_selection"


def test_prioritize_ventures(client: TestClient, fake_openai: FakeAsyncOpenAI) -> None:
    payload = {"marketData": "Creator economy", "userSkills": "Writing", "riskTolerance": "Medium"}

    response = client.post("/pipeline/ventures/prioritize", json=payload)

    assert response.status_code == 200
    assert response.json()["prioritizedVentures"].startswith("1. ")
    safety = fake_openai.requests_for(Stage.PRIORITIZE_VENTURES)[0]["extra_body"]["safety_settings"]
    assert {item["category"]: item["threshold"] for item in safety}["HARM_CATEGORY_HATE_SPEECH"] == "BLOCK_ONLY_HIGH"
    assert len(safety) == 4


def test_prioritize_ventures_failure_is_502(client: TestClient, fake_openai: FakeAsyncOpenAI) -> None:
    fake_openai.responses[Stage.PRIORITIZE_VENTURES] = ""
    payload = {"marketData": "Creator economy", "userSkills": "Writing", "riskTolerance": "Medium"}

    response = client.post("/pipeline/ventures/prioritize", json=payload)

    assert response.status_code == 502
    assert response.json()["detail"]["kind"] == "empty_output"


def test_cancel_session_waiting_for_build_mode(client: TestClient) -> None:
    session_id, _ = _prepare(client)

    response = client.post(f"/pipeline/sessions/{session_id}/cancel")
    assert response.status_code == 200
    progress = response.json()["progress"]
    assert progress["state"] == "cancelled"
    assert progress["rollbackState"] == "awaiting_selection"
    assert progress["completedStages"] == []

    response = client.post(f"/pipeline/sessions/{session_id}/cancel")
    assert response.status_code == 409
    assert response.json()["detail"]["state"] == "cancelled"

    response = client.post(f"/pipeline/sessions/{session_id}/build-mode", json={"buildMode": "in-house"})
    assert response.status_code == 409


def test_delete_session_tears_it_down(client: TestClient) -> None:
    session_id, _ = _prepare(client)

    response = client.delete(f"/pipeline/sessions/{session_id}")

    assert response.status_code == 200
    assert response.json() == {"deleted": True, "sessionId": session_id}
    assert client.get(f"/pipeline/sessions/{session_id}").status_code == 404
    assert client.delete(f"/pipeline/sessions/{session_id}").status_code == 404
