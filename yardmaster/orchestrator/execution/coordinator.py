"""Workspace orchestrator -- wires resolver, driver, tracker and apps.

One ``WorkspaceOrchestrator`` lives in the app lifespan.  Each workspace is
an independent flow:

1. **Resolve**: validate the template and resolve variables.  Nothing is
   registered if this fails.
2. **Provision**: register a ``pending`` state, mint the agent token, and
   submit the rendered graph to the engine (``provisioning`` / ``failed``).
3. **Handshake**: start a per-workspace tracker task that enforces the
   connect and startup deadlines while the agent drives
   ``starting -> ready`` through ``present_token`` / ``report_startup``.
4. **Apps**: on ``ready`` the template's apps are registered; more can be
   added with ``register_app``.

Writers for one workspace are serialised by the registry's per-workspace
lock; different workspaces never block each other.  ``destroy`` cancels a
pending handshake before running the destroy path.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from yardmaster.orchestrator.errors import PhaseTransitionError
from yardmaster.orchestrator.execution import driver
from yardmaster.orchestrator.execution.apps import AppRegistry
from yardmaster.orchestrator.execution.handshake import HandshakeTracker
from yardmaster.orchestrator.execution.resolver import resolve_variables, validate_template
from yardmaster.orchestrator.models.enums import WorkspacePhase
from yardmaster.orchestrator.models.workspace import WorkspaceState

if TYPE_CHECKING:
    from collections.abc import Mapping

    from yardmaster.orchestrator.execution.engine import ProvisioningEngine
    from yardmaster.orchestrator.models.template import AppSpec, WorkspaceTemplate
    from yardmaster.orchestrator.registry import WorkspaceRegistry
    from yardmaster.orchestrator.settings import YardSettings

logger = logging.getLogger(__name__)


class WorkspaceOrchestrator:
    """Process-level entry point for every workspace operation."""

    def __init__(
        self,
        *,
        registry: WorkspaceRegistry,
        engine: ProvisioningEngine,
        settings: YardSettings,
    ) -> None:
        self.registry = registry
        self.engine = engine
        self.apps = AppRegistry(registry)
        self._settings = settings
        self._trackers: dict[str, HandshakeTracker] = {}

    # -- Handshake tracking ----------------------------------------------------

    def _start_tracker(self, state: WorkspaceState) -> HandshakeTracker:
        tracker = HandshakeTracker(
            state,
            registry=self.registry,
            apps=self.apps,
            connect_timeout=state.agent.connection_timeout or self._settings.handshake_timeout,
            startup_timeout=self._settings.startup_timeout,
        )
        self._trackers[state.workspace_id] = tracker
        tracker.start()
        return tracker

    async def _stop_tracker(self, workspace_id: str) -> None:
        tracker = self._trackers.pop(workspace_id, None)
        if tracker is not None:
            await tracker.aclose()

    def tracker(self, workspace_id: str) -> HandshakeTracker | None:
        return self._trackers.get(workspace_id)

    # -- Provisioning ----------------------------------------------------------

    async def provision(
        self,
        template: WorkspaceTemplate,
        overrides: Mapping[str, str] | None = None,
        *,
        owner: str,
        name: str | None = None,
        workspace_id: str | None = None,
    ) -> WorkspaceState:
        """Provision a new workspace from *template*.

        Raises ``ValidationError`` / ``DuplicateSlugError`` before anything is
        registered, and ``ProvisioningEngineError`` after the workspace has
        been recorded as ``failed``.
        """
        validate_template(template)
        variables = resolve_variables(template.variables, overrides)

        workspace_id = workspace_id or uuid.uuid4().hex
        state = WorkspaceState(
            workspace_id=workspace_id,
            owner=owner,
            name=name or template.name,
            template=template,
            variables=variables,
        )
        graph = driver.prepare(state)

        self.registry.register(state)
        async with self.registry.lock(workspace_id):
            logger.info(
                "Provisioning workspace %s (template=%s, owner=%s)",
                workspace_id,
                template.template_id or template.name,
                owner,
            )
            await driver.provision(state, self.engine, self.registry, graph)
            self._start_tracker(state)
        return state

    async def update(self, workspace_id: str, overrides: Mapping[str, str] | None = None) -> WorkspaceState:
        """Start a new build of a ready workspace with changed variables."""
        async with self.registry.lock(workspace_id):
            state = self.registry.require(workspace_id)
            if state.phase != WorkspacePhase.READY:
                raise PhaseTransitionError(workspace_id, state.phase, WorkspacePhase.PROVISIONING)

            variables = resolve_variables(state.template.variables, overrides, previous=state.variables)
            await self._stop_tracker(workspace_id)
            await driver.update(state, self.engine, self.registry, variables)
            self._start_tracker(state)
        return state

    async def destroy(self, workspace_id: str) -> bool:
        """Tear a workspace down, interrupting a pending handshake.

        Returns ``False`` if it was already destroyed (idempotent no-op).
        """
        async with self.registry.lock(workspace_id):
            state = self.registry.require(workspace_id)
            await self._stop_tracker(workspace_id)
            return await driver.destroy(state, self.engine, self.registry)

    # -- Agent handshake -------------------------------------------------------

    def _require_tracker(self, state: WorkspaceState, target: WorkspacePhase) -> HandshakeTracker:
        tracker = self._trackers.get(state.workspace_id)
        if tracker is None:
            raise PhaseTransitionError(state.workspace_id, state.phase, target)
        return tracker

    async def present_token(self, workspace_id: str, token: str) -> str:
        """Agent handshake.  Returns the session token for later reports."""
        async with self.registry.lock(workspace_id):
            state = self.registry.require(workspace_id)
            tracker = self._require_tracker(state, WorkspacePhase.STARTING)
            return await tracker.present_token(state, token)

    async def report_startup(
        self,
        workspace_id: str,
        session_token: str,
        *,
        success: bool,
        exit_code: int | None = None,
    ) -> WorkspaceState:
        async with self.registry.lock(workspace_id):
            state = self.registry.require(workspace_id)
            tracker = self._require_tracker(state, WorkspacePhase.READY)
            await tracker.report_startup(state, session_token, success=success, exit_code=exit_code)
            return state

    # -- Apps ------------------------------------------------------------------

    async def register_app(self, workspace_id: str, app: AppSpec) -> AppSpec:
        async with self.registry.lock(workspace_id):
            state = self.registry.require(workspace_id)
            return self.apps.register(state, app)

    def get_app(self, workspace_id: str, slug: str) -> AppSpec:
        return self.apps.get(workspace_id, slug)

    def list_apps(self, workspace_id: str) -> tuple[AppSpec, ...]:
        return self.apps.list(workspace_id)

    # -- Queries ---------------------------------------------------------------

    def get(self, workspace_id: str) -> WorkspaceState:
        return self.registry.require(workspace_id)

    def list(self, *, owner: str | None = None, phase: WorkspacePhase | None = None) -> list[WorkspaceState]:
        return self.registry.all_workspaces(owner=owner, phase=phase)

    # -- Lifecycle -------------------------------------------------------------

    async def shutdown(self) -> int:
        """Refuse new workspaces and cancel every handshake wait.

        Returns the number of trackers that were still waiting.
        """
        self.registry.begin_shutdown()
        waiting = [wid for wid, t in self._trackers.items() if not t.done]
        for workspace_id in list(self._trackers):
            await self._stop_tracker(workspace_id)
        if waiting:
            logger.warning("Cancelled %d pending handshakes on shutdown", len(waiting))
        return len(waiting)
