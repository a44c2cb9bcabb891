"""Workspace persistence -- mirrors live phase changes into PostgreSQL.

The in-process registry owns live state.  ``WorkspaceRecorder`` is a
registry listener that upserts the ``workspaces`` row and appends a
``workspace_events`` row for every transition, so history outlives the
process.  On startup, ``recover_orphaned_workspaces`` fails rows a previous
process left mid-flight: their handshake waits died with it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import select, update

from yardmaster.orchestrator.db.tables import Workspace as WorkspaceRow
from yardmaster.orchestrator.db.tables import WorkspaceEvent
from yardmaster.orchestrator.errors import WorkspaceNotFoundError
from yardmaster.orchestrator.models.enums import IN_FLIGHT_PHASES, WorkspacePhase

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from yardmaster.orchestrator.models.workspace import PhaseChange, WorkspaceState


class WorkspaceRecorder:
    """Registry listener writing each phase change in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def __call__(self, change: PhaseChange, state: WorkspaceState) -> None:
        async with self._session_factory() as db:
            await record_change(db, change, state)

    def __repr__(self) -> str:
        return "WorkspaceRecorder()"


async def record_change(db: AsyncSession, change: PhaseChange, state: WorkspaceState) -> None:
    """Upsert the workspace row and append the event, then commit."""
    row = await db.get(WorkspaceRow, state.workspace_id)
    if row is None:
        row = WorkspaceRow(workspace_id=state.workspace_id, owner=state.owner, name=state.name)
        db.add(row)

    row.template_id = state.template.template_id
    row.phase = state.phase.value
    row.attempt = state.attempt
    row.resource_id = state.resource_id
    row.error = state.error
    row.variables = state.public_variables()

    # Flush first so the event's foreign key has a parent row.
    await db.flush()
    db.add(
        WorkspaceEvent(
            workspace_id=state.workspace_id,
            attempt=change.attempt,
            from_phase=change.from_phase.value,
            to_phase=change.to_phase.value,
            reason=change.reason,
            at=change.at,
        )
    )
    await db.commit()


async def list_workspace_records(
    db: AsyncSession,
    *,
    owner: str | None = None,
    phase: WorkspacePhase | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[WorkspaceRow]:
    """List persisted workspaces (including those from earlier processes), newest first."""
    stmt = select(WorkspaceRow).order_by(WorkspaceRow.created_at.desc())
    if owner is not None:
        stmt = stmt.where(WorkspaceRow.owner == owner)
    if phase is not None:
        stmt = stmt.where(WorkspaceRow.phase == phase.value)
    stmt = stmt.limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_workspace_events(db: AsyncSession, workspace_id: str) -> list[WorkspaceEvent]:
    """Phase history of a workspace, oldest first."""
    if await db.get(WorkspaceRow, workspace_id) is None:
        raise WorkspaceNotFoundError(workspace_id)
    stmt = (
        select(WorkspaceEvent)
        .where(WorkspaceEvent.workspace_id == workspace_id)
        .order_by(WorkspaceEvent.event_id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def recover_orphaned_workspaces(db: AsyncSession) -> int:
    """Mark workspaces stuck in an in-flight phase as failed.

    Called once at startup: nothing in this process is waiting for their
    agents, so they can never become ready.  Returns the number of rows.
    """
    stmt = (
        update(WorkspaceRow)
        .where(WorkspaceRow.phase.in_([p.value for p in IN_FLIGHT_PHASES]))
        .values(phase=WorkspacePhase.FAILED.value, error="orchestrator restarted during provisioning")
        .returning(WorkspaceRow.workspace_id)
    )
    result = await db.execute(stmt)
    recovered = list(result.scalars().all())
    await db.commit()
    if recovered:
        logger.warning("Recovered {} orphaned workspaces: {}", len(recovered), ", ".join(recovered))
    return len(recovered)
