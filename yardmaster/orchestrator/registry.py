"""In-process workspace registry.

The global map of ``WorkspaceState`` keyed by workspace id.  It is the live
source of truth for phases; PostgreSQL only mirrors transitions (via a
listener) so that history survives restarts.

Writers serialise per workspace id through ``lock(workspace_id)``; the lock is
created when the workspace is registered.  There is no global lock: flows for
different workspaces never wait on each other.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import TYPE_CHECKING

from loguru import logger

from yardmaster.orchestrator.errors import DuplicateWorkspaceError, WorkspaceNotFoundError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from yardmaster.orchestrator.models.enums import WorkspacePhase
    from yardmaster.orchestrator.models.workspace import PhaseChange, WorkspaceState

    PhaseListener = Callable[[PhaseChange, WorkspaceState], Awaitable[None]]


class ShuttingDownError(RuntimeError):
    """Raised when attempting to register a workspace during shutdown."""


class WorkspaceRegistry:
    """Registry of workspaces known to this process.

    Besides storage it fans phase changes out to listeners (persistence,
    Redis) and to per-workspace subscriber queues (SSE).
    """

    def __init__(self) -> None:
        self._workspaces: dict[str, WorkspaceState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[PhaseListener] = []
        self._subscribers: defaultdict[str, set[asyncio.Queue[PhaseChange]]] = defaultdict(set)
        self._shutting_down = False

    # -- Mutation --------------------------------------------------------------

    def register(self, state: WorkspaceState) -> None:
        """Register a new workspace.  Raises ``ShuttingDownError`` if shutting down."""
        if self._shutting_down:
            raise ShuttingDownError
        if state.workspace_id in self._workspaces:
            raise DuplicateWorkspaceError(state.workspace_id)
        logger.debug("Registry: register workspace {} (owner={})", state.workspace_id, state.owner)
        self._workspaces[state.workspace_id] = state
        self._locks[state.workspace_id] = asyncio.Lock()

    def lock(self, workspace_id: str) -> asyncio.Lock:
        """Return the writer lock for *workspace_id*.

        Locks exist only for registered workspaces; unknown ids raise
        ``WorkspaceNotFoundError``.
        """
        lock = self._locks.get(workspace_id)
        if lock is None:
            raise WorkspaceNotFoundError(workspace_id)
        return lock

    # -- Query -----------------------------------------------------------------

    def get(self, workspace_id: str) -> WorkspaceState | None:
        return self._workspaces.get(workspace_id)

    def require(self, workspace_id: str) -> WorkspaceState:
        state = self._workspaces.get(workspace_id)
        if state is None:
            raise WorkspaceNotFoundError(workspace_id)
        return state

    def all_workspaces(
        self,
        *,
        owner: str | None = None,
        phase: WorkspacePhase | None = None,
    ) -> list[WorkspaceState]:
        """Return a snapshot of workspaces, newest first."""
        states = [
            s
            for s in self._workspaces.values()
            if (owner is None or s.owner == owner) and (phase is None or s.phase == phase)
        ]
        return sorted(states, key=lambda s: s.created_at, reverse=True)

    @property
    def count(self) -> int:
        return len(self._workspaces)

    # -- Phase changes ---------------------------------------------------------

    def add_listener(self, listener: PhaseListener) -> None:
        self._listeners.append(listener)

    def subscribe(self, workspace_id: str) -> asyncio.Queue[PhaseChange]:
        """Open a queue that receives every later phase change of a workspace."""
        queue: asyncio.Queue[PhaseChange] = asyncio.Queue()
        self._subscribers[workspace_id].add(queue)
        return queue

    def unsubscribe(self, workspace_id: str, queue: asyncio.Queue[PhaseChange]) -> None:
        queues = self._subscribers.get(workspace_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[workspace_id]

    async def transition(
        self,
        state: WorkspaceState,
        target: WorkspacePhase,
        *,
        reason: str | None = None,
    ) -> PhaseChange:
        """Apply a phase transition and publish it.  Caller holds the workspace lock."""
        change = state.transition(target, reason=reason)
        await self.publish(change, state)
        return change

    async def publish(self, change: PhaseChange, state: WorkspaceState) -> None:
        """Deliver *change* to subscribers and listeners.

        Listener failures are logged and never undo the transition.
        """
        logger.bind(workspace_id=state.workspace_id).info(
            "Phase {} -> {} (attempt={}, reason={})",
            change.from_phase,
            change.to_phase,
            change.attempt,
            change.reason,
        )
        for queue in self._subscribers.get(state.workspace_id, ()):
            queue.put_nowait(change)
        for listener in self._listeners:
            try:
                await listener(change, state)
            except Exception:
                logger.exception("Phase listener {!r} failed for workspace {}", listener, state.workspace_id)

    # -- Lifecycle -------------------------------------------------------------

    def begin_shutdown(self) -> None:
        """Mark the registry as shutting down.  New registrations are refused."""
        self._shutting_down = True
        logger.info("Registry: shutdown initiated, refusing new workspaces")

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down
