"""App registry -- user-facing endpoints exposed by ready agents.

Apps are declared against a workspace whose agent is ``ready``: the
template's apps are registered when the startup script completes, and
more can be added later through the API.  Slugs are unique per agent and
duplicates are rejected at registration time.

The workspace state owns the ordered app list; this registry is the only
writer and offers read-only lookups.  Entries are frozen ``AppSpec``
models, so callers cannot mutate what they read.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from yardmaster.orchestrator.errors import AgentNotReadyError, AppNotFoundError, DuplicateSlugError
from yardmaster.orchestrator.models.enums import WorkspacePhase

if TYPE_CHECKING:
    from collections.abc import Iterable

    from yardmaster.orchestrator.models.template import AppSpec
    from yardmaster.orchestrator.models.workspace import WorkspaceState
    from yardmaster.orchestrator.registry import WorkspaceRegistry


class AppRegistry:
    def __init__(self, workspaces: WorkspaceRegistry) -> None:
        self._workspaces = workspaces

    # -- Mutation (caller holds the workspace lock) ----------------------------

    def register(self, state: WorkspaceState, app: AppSpec) -> AppSpec:
        """Register *app* for the workspace's agent.

        Raises ``AgentNotReadyError`` unless the workspace is ready and
        ``DuplicateSlugError`` if the slug is taken.
        """
        if state.phase != WorkspacePhase.READY:
            raise AgentNotReadyError(state.workspace_id, state.phase)
        if any(existing.slug == app.slug for existing in state.apps):
            raise DuplicateSlugError(app.slug)

        state.apps.append(app)
        logger.bind(workspace_id=state.workspace_id).debug("App registered: {}", app.slug)
        return app

    def register_many(self, state: WorkspaceState, apps: Iterable[AppSpec]) -> None:
        for app in apps:
            self.register(state, app)

    # -- Query -----------------------------------------------------------------

    def get(self, workspace_id: str, slug: str) -> AppSpec:
        """Look up one app.  Raises ``AppNotFoundError`` (or ``WorkspaceNotFoundError``)."""
        state = self._workspaces.require(workspace_id)
        for app in state.apps:
            if app.slug == slug:
                return app
        raise AppNotFoundError(workspace_id, slug)

    def list(self, workspace_id: str) -> tuple[AppSpec, ...]:
        """All apps of a workspace in registration order."""
        return tuple(self._workspaces.require(workspace_id).apps)
