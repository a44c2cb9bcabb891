"""Agent handshake tracker -- waits for a provisioned agent to come alive.

State machine for one provisioning attempt::

    provisioning --token ok--> starting --script ok--> ready
         |                        |
         +--timeout / bad token-->+--timeout / bad token / script failed--> failed

The tracker owns a single watcher task that only enforces deadlines: the
connect wait (agent ``connection_timeout`` or the service default) and the
startup wait.  Positive transitions are driven by the agent's calls
(``present_token``, ``report_startup``), which run under the workspace lock
held by the caller.  The watcher takes the same lock before failing a
workspace, so a timeout and a late agent call can never both win.

``cancel`` interrupts the wait without touching the phase; teardown uses it
before running the destroy path.
"""

from __future__ import annotations

import asyncio
import contextlib
import secrets
from typing import TYPE_CHECKING

from loguru import logger

from yardmaster.orchestrator.errors import (
    AuthenticationError,
    HandshakeTimeout,
    PhaseTransitionError,
    StartupScriptError,
)
from yardmaster.orchestrator.models.enums import HandshakeStage, WorkspacePhase

if TYPE_CHECKING:
    from yardmaster.orchestrator.execution.apps import AppRegistry
    from yardmaster.orchestrator.models.workspace import WorkspaceState
    from yardmaster.orchestrator.registry import WorkspaceRegistry


def _matches(presented: str, expected: str | None) -> bool:
    if expected is None:
        return False
    return secrets.compare_digest(presented.encode(), expected.encode())


class HandshakeTracker:
    """Tracks one provisioning attempt of one workspace."""

    def __init__(
        self,
        state: WorkspaceState,
        *,
        registry: WorkspaceRegistry,
        apps: AppRegistry,
        connect_timeout: float,
        startup_timeout: float,
    ) -> None:
        self.workspace_id = state.workspace_id
        self.attempt = state.attempt
        self.connect_timeout = connect_timeout
        self.startup_timeout = startup_timeout
        self.stage = HandshakeStage.CONNECT
        self.session_token: str | None = None
        self.error: Exception | None = None

        self._token = state.agent.token
        self._registry = registry
        self._apps = apps
        self._connected = asyncio.Event()
        self._completed = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._log = logger.bind(workspace_id=state.workspace_id)

    # -- Watcher ---------------------------------------------------------------

    def start(self) -> None:
        """Schedule the deadline watcher.  Must run inside an event loop."""
        if self._task is not None:
            msg = f"Handshake tracker for '{self.workspace_id}' already started"
            raise RuntimeError(msg)
        self._task = asyncio.create_task(self._watch(), name=f"handshake-{self.workspace_id}-{self.attempt}")

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def _watch(self) -> None:
        if not await self._wait(self._connected, self.connect_timeout):
            await self._expire(HandshakeStage.CONNECT, self.connect_timeout, WorkspacePhase.PROVISIONING)
            return
        if not await self._wait(self._completed, self.startup_timeout):
            await self._expire(HandshakeStage.STARTUP, self.startup_timeout, WorkspacePhase.STARTING)

    @staticmethod
    async def _wait(event: asyncio.Event, timeout: float) -> bool:
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def _expire(self, stage: HandshakeStage, timeout: float, expected: WorkspacePhase) -> None:
        async with self._registry.lock(self.workspace_id):
            state = self._registry.get(self.workspace_id)
            # The agent (or a teardown) may have moved the workspace on while
            # we waited for the lock.
            if state is None or state.attempt != self.attempt or state.phase != expected:
                return
            error = HandshakeTimeout(self.workspace_id, stage, timeout)
            self.error = error
            self._token = None
            self._log.warning("{}", error)
            await self._registry.transition(state, WorkspacePhase.FAILED, reason=str(error))

    def cancel(self) -> None:
        """Interrupt the watcher.  Does not change the workspace phase."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def aclose(self) -> None:
        """Cancel the watcher and wait for it to finish."""
        self.cancel()
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    # -- Agent calls (caller holds the workspace lock) -------------------------

    async def _reject(self, state: WorkspaceState) -> AuthenticationError:
        error = AuthenticationError(self.workspace_id)
        self.error = error
        self._token = None
        self.session_token = None
        self.cancel()
        self._log.warning("{}", error)
        await self._registry.transition(state, WorkspacePhase.FAILED, reason=str(error))
        return error

    async def present_token(self, state: WorkspaceState, token: str) -> str:
        """Validate the agent's token and move to ``starting``.

        Returns the session token the agent must use for its startup report.
        A mismatch fails the workspace and raises ``AuthenticationError``.
        """
        if state.phase != WorkspacePhase.PROVISIONING or state.attempt != self.attempt:
            raise PhaseTransitionError(self.workspace_id, state.phase, WorkspacePhase.STARTING)

        if not _matches(token, self._token):
            raise await self._reject(state)

        # The token is single-use: once accepted it is gone.
        self._token = None
        state.agent = state.agent.model_copy(update={"token": None})
        self.session_token = secrets.token_urlsafe(32)
        self.stage = HandshakeStage.STARTUP

        await self._registry.transition(state, WorkspacePhase.STARTING, reason="agent connected")
        self._connected.set()
        return self.session_token

    async def report_startup(
        self,
        state: WorkspaceState,
        session_token: str,
        *,
        success: bool,
        exit_code: int | None = None,
    ) -> None:
        """Record the startup script outcome: ``ready`` on success, else ``failed``.

        On success the template's apps are registered for the agent.
        """
        if state.phase != WorkspacePhase.STARTING or state.attempt != self.attempt:
            raise PhaseTransitionError(self.workspace_id, state.phase, WorkspacePhase.READY)

        if not _matches(session_token, self.session_token):
            raise await self._reject(state)

        self._completed.set()
        if success:
            await self._registry.transition(state, WorkspacePhase.READY, reason="startup script completed")
            self._apps.register_many(state, state.template.apps)
            return

        error = StartupScriptError(self.workspace_id, exit_code)
        self.error = error
        await self._registry.transition(state, WorkspacePhase.FAILED, reason=str(error))
