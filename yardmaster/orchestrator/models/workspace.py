"""Workspace lifecycle model.

``WorkspaceState`` is the live, in-process record of one workspace.  Its
phase is an explicit tagged variant (``WorkspacePhase``) and may only change
through ``transition``, which consults ``ALLOWED_TRANSITIONS``.

Created by the coordinator on a provisioning request, mutated only by the
provisioning driver and the handshake tracker, and kept (as ``destroyed``)
after teardown so that a second destroy is a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import BaseModel

from yardmaster.orchestrator.errors import PhaseTransitionError
from yardmaster.orchestrator.models.enums import WorkspacePhase
from yardmaster.orchestrator.models.template import AgentSpec, AppSpec, WorkspaceTemplate

ALLOWED_TRANSITIONS: dict[WorkspacePhase, frozenset[WorkspacePhase]] = {
    WorkspacePhase.PENDING: frozenset(
        {WorkspacePhase.PROVISIONING, WorkspacePhase.FAILED, WorkspacePhase.DESTROYED},
    ),
    WorkspacePhase.PROVISIONING: frozenset(
        {WorkspacePhase.STARTING, WorkspacePhase.FAILED, WorkspacePhase.DESTROYED},
    ),
    WorkspacePhase.STARTING: frozenset(
        {WorkspacePhase.READY, WorkspacePhase.FAILED, WorkspacePhase.DESTROYED},
    ),
    # ready -> provisioning is a template/variable update (new build); ready -> failed
    # is an engine error during that update or during teardown.
    WorkspacePhase.READY: frozenset(
        {WorkspacePhase.PROVISIONING, WorkspacePhase.FAILED, WorkspacePhase.DESTROYED},
    ),
    WorkspacePhase.FAILED: frozenset({WorkspacePhase.DESTROYED}),
    WorkspacePhase.DESTROYED: frozenset(),
}


def _now() -> datetime:
    return datetime.now(tz=UTC)


class PhaseChange(BaseModel):
    """One entry in a workspace's transition history."""

    workspace_id: str
    attempt: int
    from_phase: WorkspacePhase
    to_phase: WorkspacePhase
    reason: str | None = None
    at: datetime


@dataclass
class WorkspaceState:
    """In-flight state for a single workspace."""

    # -- Identity --------------------------------------------------------------
    workspace_id: str
    owner: str
    name: str
    template: WorkspaceTemplate

    # -- Build inputs ----------------------------------------------------------
    variables: dict[str, str] = field(default_factory=dict)
    agent: AgentSpec = field(default_factory=AgentSpec)
    apps: list[AppSpec] = field(default_factory=list)
    attempt: int = 1

    # -- Lifecycle -------------------------------------------------------------
    phase: WorkspacePhase = WorkspacePhase.PENDING
    resource_id: str | None = None
    error: str | None = None
    history: list[PhaseChange] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def can_transition(self, target: WorkspacePhase) -> bool:
        return target in ALLOWED_TRANSITIONS[self.phase]

    def transition(self, target: WorkspacePhase, *, reason: str | None = None) -> PhaseChange:
        """Move to *target* or raise ``PhaseTransitionError``.

        Entering ``failed`` records *reason* as the workspace error; any other
        transition clears a stale error.
        """
        if not self.can_transition(target):
            raise PhaseTransitionError(self.workspace_id, self.phase, target)

        change = PhaseChange(
            workspace_id=self.workspace_id,
            attempt=self.attempt,
            from_phase=self.phase,
            to_phase=target,
            reason=reason,
            at=_now(),
        )
        self.phase = target
        self.updated_at = change.at
        if target == WorkspacePhase.FAILED:
            self.error = reason
        elif target != WorkspacePhase.DESTROYED:
            self.error = None
        self.history.append(change)
        return change

    @property
    def is_terminal(self) -> bool:
        return self.phase in (WorkspacePhase.FAILED, WorkspacePhase.DESTROYED)

    def public_variables(self) -> dict[str, str]:
        """Resolved variables with sensitive values masked."""
        sensitive = {v.name for v in self.template.variables if v.sensitive}
        return {k: ("********" if k in sensitive else v) for k, v in self.variables.items()}
