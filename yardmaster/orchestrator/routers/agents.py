"""Agent-facing endpoints: token handshake and startup report.

These are called by the agent process inside a workspace, not by users.
A token mismatch is fatal for the provisioning attempt (401 and the
workspace moves to ``failed``).
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from yardmaster.orchestrator.deps import Orchestrator
from yardmaster.orchestrator.errors import AuthenticationError, YardError
from yardmaster.orchestrator.models.api import HandshakeRequest, HandshakeResponse, StartupReport, WorkspaceResponse
from yardmaster.orchestrator.models.enums import WorkspacePhase
from yardmaster.orchestrator.routers.workspaces import to_http_error

router = APIRouter(prefix="/agents", tags=["agents"])


@router.post("/handshake", response_model=HandshakeResponse)
async def handshake(body: HandshakeRequest, orchestrator: Orchestrator) -> HandshakeResponse:
    """Present the agent token minted for this provisioning attempt."""
    try:
        session_token = await orchestrator.present_token(body.workspace_id, body.token)
    except AuthenticationError as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from None
    except YardError as exc:
        raise to_http_error(exc) from None
    return HandshakeResponse(
        workspace_id=body.workspace_id,
        phase=WorkspacePhase.STARTING,
        session_token=session_token,
    )


@router.post("/startup", response_model=WorkspaceResponse)
async def report_startup(body: StartupReport, orchestrator: Orchestrator) -> dict:
    """Report the startup script outcome (``ready`` or ``failed``)."""
    try:
        state = await orchestrator.report_startup(
            body.workspace_id,
            body.session_token,
            success=body.success,
            exit_code=body.exit_code,
        )
    except AuthenticationError as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from None
    except YardError as exc:
        raise to_http_error(exc) from None
    return WorkspaceResponse.from_state(state).model_dump()
