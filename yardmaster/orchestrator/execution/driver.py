"""Provisioning driver -- submits a workspace's resource graph to the engine.

Owns the engine-facing transitions:

- ``provision``: ``pending -> provisioning`` (or ``failed``)
- ``update``:    ``ready -> provisioning`` with a fresh token (or ``failed``)
- ``destroy``:   anything live -> ``destroyed``; idempotent

Engine errors are re-raised verbatim after the workspace has been moved to
``failed``.  Retrying is the caller's decision.  Callers hold the workspace
lock for the whole operation.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

from loguru import logger

from yardmaster.orchestrator.errors import PhaseTransitionError, ProvisioningEngineError
from yardmaster.orchestrator.execution.render import render_resource_graph
from yardmaster.orchestrator.models.enums import WorkspacePhase

if TYPE_CHECKING:
    from yardmaster.orchestrator.execution.engine import ProvisioningEngine
    from yardmaster.orchestrator.models.template import ResourceGraph
    from yardmaster.orchestrator.models.workspace import WorkspaceState
    from yardmaster.orchestrator.registry import WorkspaceRegistry


def mint_token() -> str:
    """Return a new single-use agent token."""
    return secrets.token_urlsafe(32)


def _arm_agent(state: WorkspaceState) -> None:
    """Copy the template's agent descriptor onto the state with a new token."""
    state.agent = state.template.agent.model_copy(update={"token": mint_token()})


async def _fail(registry: WorkspaceRegistry, state: WorkspaceState, exc: ProvisioningEngineError) -> None:
    logger.bind(workspace_id=state.workspace_id).warning("Engine {} failed: {}", exc.operation, exc)
    await registry.transition(state, WorkspacePhase.FAILED, reason=str(exc))


def prepare(state: WorkspaceState) -> ResourceGraph:
    """Mint the attempt's token and render the graph for a pending workspace.

    Rendering errors (``ValidationError``) surface here, before anything is
    registered or submitted.
    """
    _arm_agent(state)
    return render_resource_graph(state)


async def provision(
    state: WorkspaceState,
    engine: ProvisioningEngine,
    registry: WorkspaceRegistry,
    graph: ResourceGraph | None = None,
) -> None:
    """Create the workspace's resources.

    On success the workspace enters ``provisioning`` and ``resource_id`` is
    set; the handshake tracker takes over from there.  *graph* is the output
    of ``prepare``; it is produced here when omitted.
    """
    if state.phase != WorkspacePhase.PENDING:
        raise PhaseTransitionError(state.workspace_id, state.phase, WorkspacePhase.PROVISIONING)

    if graph is None:
        graph = prepare(state)

    try:
        state.resource_id = await engine.create(graph)
    except ProvisioningEngineError as exc:
        await _fail(registry, state, exc)
        raise

    await registry.transition(state, WorkspacePhase.PROVISIONING, reason=f"resource {state.resource_id} created")


async def update(
    state: WorkspaceState,
    engine: ProvisioningEngine,
    registry: WorkspaceRegistry,
    variables: dict[str, str],
) -> None:
    """Start a new build of a ready workspace with *variables*.

    The attempt counter is bumped and a new token minted; the old agent's
    token is no longer accepted.
    """
    if not state.can_transition(WorkspacePhase.PROVISIONING) or state.resource_id is None:
        raise PhaseTransitionError(state.workspace_id, state.phase, WorkspacePhase.PROVISIONING)

    previous_variables, previous_agent = state.variables, state.agent
    state.variables = variables
    state.attempt += 1
    _arm_agent(state)
    try:
        graph = render_resource_graph(state)
    except Exception:
        state.variables, state.agent = previous_variables, previous_agent
        state.attempt -= 1
        raise

    state.apps = []
    try:
        state.resource_id = await engine.update(state.resource_id, graph)
    except ProvisioningEngineError as exc:
        await _fail(registry, state, exc)
        raise

    await registry.transition(state, WorkspacePhase.PROVISIONING, reason=f"build {state.attempt} submitted")


async def destroy(state: WorkspaceState, engine: ProvisioningEngine, registry: WorkspaceRegistry) -> bool:
    """Tear the workspace down.

    Returns ``False`` (and does nothing) if it is already destroyed.  If the
    engine fails, a live workspace is moved to ``failed`` so the destroy can
    be retried, and the error is re-raised.
    """
    if state.phase == WorkspacePhase.DESTROYED:
        logger.bind(workspace_id=state.workspace_id).debug("Destroy: already destroyed, nothing to do")
        return False

    if state.resource_id is not None:
        try:
            await engine.destroy(state.resource_id)
        except ProvisioningEngineError as exc:
            if state.phase != WorkspacePhase.FAILED:
                await _fail(registry, state, exc)
            raise

    state.apps = []
    state.agent = state.agent.model_copy(update={"token": None})
    await registry.transition(state, WorkspacePhase.DESTROYED, reason="teardown requested")
    return True
