"""Workspace endpoints (RPC-style).

Thin HTTP adapter -- delegates to the orchestrator and translates domain
exceptions to status codes:

- ``ValidationError``          -> 422
- ``DuplicateSlugError``,
  ``DuplicateWorkspaceError``,
  ``PhaseTransitionError``,
  ``AgentNotReadyError``       -> 409
- ``*NotFoundError``           -> 404
- ``ProvisioningEngineError``  -> 502
- ``ShuttingDownError``        -> 503
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from fastapi import APIRouter, HTTPException, Query, Request, status
from sse_starlette.sse import EventSourceResponse

from yardmaster.orchestrator.deps import DbSession, OptionalDbSession, Orchestrator
from yardmaster.orchestrator.errors import (
    AgentNotReadyError,
    DuplicateSlugError,
    DuplicateWorkspaceError,
    PhaseTransitionError,
    ProvisioningEngineError,
    ValidationError,
    YardError,
)
from yardmaster.orchestrator.managers.templates import load_template
from yardmaster.orchestrator.managers.workspaces import get_workspace_events
from yardmaster.orchestrator.models.api import (
    DestroyResponse,
    ProvisionRequest,
    WorkspaceResponse,
    WorkspaceUpdateRequest,
)
from yardmaster.orchestrator.models.enums import EventType, WorkspacePhase
from yardmaster.orchestrator.models.events import WorkspaceEvent
from yardmaster.orchestrator.models.template import AppSpec
from yardmaster.orchestrator.models.workspace import PhaseChange
from yardmaster.orchestrator.registry import ShuttingDownError

router = APIRouter(prefix="/workspaces", tags=["workspaces"])


def to_http_error(exc: Exception) -> HTTPException:
    """Map a domain exception to the HTTP error returned to clients."""
    if isinstance(exc, ValidationError):
        # Literal: the Starlette constant for 422 was renamed between releases.
        code = 422
    elif isinstance(exc, DuplicateSlugError | DuplicateWorkspaceError | PhaseTransitionError | AgentNotReadyError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, LookupError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ProvisioningEngineError):
        code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, ShuttingDownError):
        return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Orchestrator is shutting down.")
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(code, detail=str(exc))


@router.post("/provision", response_model=WorkspaceResponse, status_code=status.HTTP_201_CREATED)
async def provision_workspace(body: ProvisionRequest, orchestrator: Orchestrator, db: OptionalDbSession) -> dict:
    """Provision a workspace from a registered or inline template.

    Returns once the engine has accepted the resources (phase
    ``provisioning``); the agent handshake continues in the background.
    """
    try:
        if body.template_id is not None:
            if db is None:
                raise HTTPException(
                    status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail="Database not configured; pass an inline template instead.",
                )
            template = await load_template(db, body.template_id)
        else:
            assert body.template is not None  # noqa: S101
            template = body.template.to_template(body.template.template_id or "inline")

        state = await orchestrator.provision(
            template,
            body.variables,
            owner=body.owner,
            name=body.name,
            workspace_id=body.workspace_id,
        )
    except (YardError, ShuttingDownError) as exc:
        raise to_http_error(exc) from None
    return WorkspaceResponse.from_state(state).model_dump()


@router.get("/list", response_model=list[WorkspaceResponse])
async def list_workspaces(
    orchestrator: Orchestrator,
    owner: str | None = Query(None, description="Only workspaces of this owner."),
    phase: WorkspacePhase | None = Query(None, description="Only workspaces in this phase."),
) -> list[dict]:
    """List live workspaces, newest first."""
    return [WorkspaceResponse.from_state(s).model_dump() for s in orchestrator.list(owner=owner, phase=phase)]


@router.get("/{workspace_id}/get", response_model=WorkspaceResponse)
async def get_workspace(
    workspace_id: str,
    orchestrator: Orchestrator,
    include_history: bool = Query(False, description="Include the phase-change history."),
) -> dict:
    try:
        state = orchestrator.get(workspace_id)
    except YardError as exc:
        raise to_http_error(exc) from None
    return WorkspaceResponse.from_state(state, include_history=include_history).model_dump()


@router.post("/{workspace_id}/update", response_model=WorkspaceResponse)
async def update_workspace(workspace_id: str, body: WorkspaceUpdateRequest, orchestrator: Orchestrator) -> dict:
    """Start a new build of a ready workspace with changed variables."""
    try:
        state = await orchestrator.update(workspace_id, body.variables)
    except YardError as exc:
        raise to_http_error(exc) from None
    return WorkspaceResponse.from_state(state).model_dump()


@router.post("/{workspace_id}/destroy", response_model=DestroyResponse)
async def destroy_workspace(workspace_id: str, orchestrator: Orchestrator) -> DestroyResponse:
    """Tear a workspace down.  Destroying twice is a no-op success."""
    try:
        destroyed = await orchestrator.destroy(workspace_id)
    except YardError as exc:
        raise to_http_error(exc) from None
    return DestroyResponse(workspace_id=workspace_id, destroyed=destroyed)


# -- Apps --------------------------------------------------------------------


@router.get("/{workspace_id}/apps", response_model=list[AppSpec])
async def list_apps(workspace_id: str, orchestrator: Orchestrator) -> list[AppSpec]:
    try:
        return list(orchestrator.list_apps(workspace_id))
    except YardError as exc:
        raise to_http_error(exc) from None


@router.get("/{workspace_id}/apps/{slug}", response_model=AppSpec)
async def get_app(workspace_id: str, slug: str, orchestrator: Orchestrator) -> AppSpec:
    try:
        return orchestrator.get_app(workspace_id, slug)
    except YardError as exc:
        raise to_http_error(exc) from None


@router.post("/{workspace_id}/apps/register", response_model=AppSpec, status_code=status.HTTP_201_CREATED)
async def register_app(workspace_id: str, body: AppSpec, orchestrator: Orchestrator) -> AppSpec:
    """Declare an additional app against a ready agent."""
    try:
        return await orchestrator.register_app(workspace_id, body)
    except YardError as exc:
        raise to_http_error(exc) from None


# -- Events ------------------------------------------------------------------


@router.get("/{workspace_id}/events")
async def stream_events(workspace_id: str, request: Request, orchestrator: Orchestrator) -> EventSourceResponse:
    """Server-sent events: a snapshot, then every phase change.

    The stream closes after the workspace is destroyed.
    """
    try:
        state = orchestrator.get(workspace_id)
    except YardError as exc:
        raise to_http_error(exc) from None

    registry = orchestrator.registry
    queue = registry.subscribe(workspace_id)

    async def _events() -> AsyncIterator[dict]:
        try:
            snapshot = WorkspaceEvent(
                event_type=EventType.SNAPSHOT,
                workspace_id=workspace_id,
                payload={"phase": state.phase.value, "attempt": state.attempt, "error": state.error},
            )
            yield {"event": snapshot.event_type.value, "id": snapshot.event_id, "data": snapshot.model_dump_json()}
            if state.phase == WorkspacePhase.DESTROYED:
                return

            while not await request.is_disconnected():
                try:
                    change = await asyncio.wait_for(queue.get(), timeout=15.0)
                except TimeoutError:
                    continue
                event = WorkspaceEvent.from_change(change)
                yield {"event": event.event_type.value, "id": event.event_id, "data": event.model_dump_json()}
                if change.to_phase == WorkspacePhase.DESTROYED:
                    return
        finally:
            registry.unsubscribe(workspace_id, queue)

    return EventSourceResponse(_events(), ping=15)


@router.get("/{workspace_id}/history", response_model=list[PhaseChange])
async def get_history(workspace_id: str, db: DbSession) -> list[PhaseChange]:
    """Persisted phase history, including builds from earlier processes."""
    try:
        rows = await get_workspace_events(db, workspace_id)
    except YardError as exc:
        raise to_http_error(exc) from None
    return [PhaseChange.model_validate(row, from_attributes=True) for row in rows]
