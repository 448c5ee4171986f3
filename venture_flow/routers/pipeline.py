"""Plan pipeline endpoints for the VentureForge FastAPI backend."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from ..errors import (
    GenerationError,
    InputValidationError,
    InvalidTransitionError,
    PlanNotFoundError,
    RunCancelledError,
    StageFailedError,
    StoreConflictError,
    UnknownOpportunityError,
)
from ..flows import list_stage_definitions, prioritize_ventures
from ..llm import GenerationClient
from ..memory import SessionRegistry
from ..pipeline import PlanPipeline
from ..schemas import (
    BuildModeRequest,
    DiscoveryRequest,
    PlanSnapshot,
    SelectionRequest,
    SessionResponse,
    StageDefinition,
    TaskUpdateRequest,
    VentureInput,
    VenturePriorities,
)
from ..store import PlanStore, set_task_completed


router = APIRouter(prefix="/pipeline", tags=["pipeline"])


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_store(request: Request) -> PlanStore:
    return request.app.state.store


def get_generation_client(request: Request) -> GenerationClient:
    return request.app.state.generation_client


def _session(registry: SessionRegistry, session_id: str) -> PlanPipeline:
    pipeline = registry.get(session_id)
    if pipeline is None:
        raise HTTPException(status_code=404, detail=f"No pipeline session found for '{session_id}'.")
    return pipeline


def _session_response(session_id: str, pipeline: PlanPipeline) -> SessionResponse:
    return SessionResponse(
        session_id=session_id,
        progress=pipeline.progress,
        opportunities=pipeline.opportunities,
    )


def _stage_failure(exc: StageFailedError, pipeline: PlanPipeline, session_id: str) -> HTTPException:
    failure = exc.failure
    detail: dict[str, Any] = {
        "sessionId": session_id,
        "stage": failure.stage.value if failure.stage else None,
        "kind": failure.kind,
        "message": failure.message,
        "rollbackState": pipeline.rollback_state.value,
    }
    if isinstance(exc, RunCancelledError):
        return HTTPException(status_code=409, detail=detail)
    if isinstance(exc.__cause__, InputValidationError):
        detail["errors"] = exc.__cause__.errors
        return HTTPException(status_code=422, detail=detail)
    return HTTPException(status_code=502, detail=detail)


def _conflict(exc: InvalidTransitionError) -> HTTPException:
    return HTTPException(status_code=409, detail={"message": str(exc), "state": exc.state})


@router.get("/health")
async def healthcheck() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}


@router.get("/stages", response_model=list[StageDefinition])
async def list_stages() -> list[StageDefinition]:
    """Expose stage metadata to the UI."""

    return list_stage_definitions()


@router.post("/discover", response_model=SessionResponse)
async def discover(
    payload: DiscoveryRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    """Open a session, then discover and rank opportunities in the submitted material."""

    session_id, pipeline = registry.create()
    try:
        await pipeline.discover(payload)
    except StageFailedError as exc:
        raise _stage_failure(exc, pipeline, session_id) from exc
    return _session_response(session_id, pipeline)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def fetch_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionResponse:
    """Return the session's progress and ranked opportunities."""

    return _session_response(session_id, _session(registry, session_id))


@router.post("/sessions/{session_id}/select", response_model=SessionResponse)
async def select_opportunity(
    session_id: str,
    payload: SelectionRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    """Select an opportunity and run every stage up to the build-mode decision."""

    pipeline = _session(registry, session_id)
    try:
        await pipeline.prepare(payload.opportunity_id)
    except UnknownOpportunityError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    except StageFailedError as exc:
        raise _stage_failure(exc, pipeline, session_id) from exc
    return _session_response(session_id, pipeline)


@router.post("/sessions/{session_id}/build-mode", response_model=PlanSnapshot)
async def choose_build_mode(
    session_id: str,
    payload: BuildModeRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> PlanSnapshot:
    """Finish the plan for the chosen build mode and return the stored snapshot."""

    pipeline = _session(registry, session_id)
    try:
        return await pipeline.finalize(payload.build_mode)
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    except StageFailedError as exc:
        raise _stage_failure(exc, pipeline, session_id) from exc


@router.post("/sessions/{session_id}/recover", response_model=SessionResponse)
async def recover_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionResponse:
    """Return a failed or cancelled session to its rollback state."""

    pipeline = _session(registry, session_id)
    try:
        pipeline.recover()
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    return _session_response(session_id, pipeline)


@router.post("/sessions/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionResponse:
    """Abort whatever the session has in flight and drop its partial results."""

    pipeline = _session(registry, session_id)
    if not pipeline.cancel():
        raise HTTPException(
            status_code=409,
            detail={"message": "Nothing to cancel.", "state": pipeline.state.value},
        )
    return _session_response(session_id, pipeline)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> dict[str, Any]:
    """Tear a session down, cancelling any work still in flight."""

    if not registry.discard(session_id):
        raise HTTPException(status_code=404, detail=f"No pipeline session found for '{session_id}'.")
    return {"deleted": True, "sessionId": session_id}


@router.get("/plans/{opportunity_id}", response_model=PlanSnapshot)
async def fetch_plan(opportunity_id: str, store: PlanStore = Depends(get_store)) -> PlanSnapshot:
    """Return the stored plan for an opportunity."""

    snapshot = await store.get(opportunity_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No plan stored for '{opportunity_id}'.")
    return snapshot


@router.delete("/plans/{opportunity_id}")
async def delete_plan(opportunity_id: str, store: PlanStore = Depends(get_store)) -> dict[str, Any]:
    """Forget a stored plan so the next selection regenerates it."""

    if not await store.delete(opportunity_id):
        raise HTTPException(status_code=404, detail=f"No plan stored for '{opportunity_id}'.")
    return {"deleted": True, "opportunityId": opportunity_id}


@router.patch("/plans/{opportunity_id}/tasks/{task_id}", response_model=PlanSnapshot)
async def update_task(
    opportunity_id: str,
    task_id: str,
    payload: TaskUpdateRequest,
    store: PlanStore = Depends(get_store),
) -> PlanSnapshot:
    """Mark a task as completed or not completed."""

    try:
        return await set_task_completed(store, opportunity_id, task_id, payload.completed)
    except PlanNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StoreConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.post("/ventures/prioritize", response_model=VenturePriorities)
async def prioritize(
    payload: VentureInput,
    client: GenerationClient = Depends(get_generation_client),
) -> VenturePriorities:
    """Prioritize online venture types for the user's skills and risk tolerance."""

    try:
        return await prioritize_ventures(client, payload)
    except GenerationError as exc:
        raise HTTPException(
            status_code=502,
            detail={"stage": exc.stage, "kind": exc.kind.value, "message": str(exc)},
        ) from exc
