"""FastAPI dependency injection for the DB session and the orchestrator.

Usage in route handlers::

    @router.post("/things")
    async def create_thing(db: DbSession, thing: ThingCreate) -> ThingResponse:
        ...

    @router.get("/workspaces/list")
    async def list_workspaces(orchestrator: Orchestrator) -> list[...]:
        ...

``get_db`` raises HTTP 503 if no database was configured
(YARD_DATABASE_URL unset); the orchestrator is always available.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from yardmaster.orchestrator.execution.coordinator import WorkspaceOrchestrator


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an async SQLAlchemy session, closing it after the request.

    The caller (manager) is responsible for calling ``session.commit()``
    on success.  If the handler raises, the session is simply closed and the
    implicit transaction is rolled back by the connection pool.
    """
    session_factory = request.app.state.db_session_factory
    if session_factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured (YARD_DATABASE_URL is unset).",
        )
    session: AsyncSession = session_factory()
    try:
        yield session
    finally:
        await session.close()


async def get_optional_db(request: Request) -> AsyncIterator[AsyncSession | None]:
    """Like ``get_db`` but yields ``None`` instead of failing without a database."""
    session_factory = request.app.state.db_session_factory
    if session_factory is None:
        yield None
        return
    session: AsyncSession = session_factory()
    try:
        yield session
    finally:
        await session.close()


def get_orchestrator(request: Request) -> WorkspaceOrchestrator:
    """Return the process-wide orchestrator created in the lifespan."""
    orchestrator: WorkspaceOrchestrator | None = request.app.state.orchestrator
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator not initialised.",
        )
    return orchestrator


# -- Annotated type aliases for concise route signatures ---------------------

DbSession = Annotated[AsyncSession, Depends(get_db)]
"""Annotated dependency: async SQLAlchemy session (auto-closed after request)."""

OptionalDbSession = Annotated[AsyncSession | None, Depends(get_optional_db)]
"""Annotated dependency: session, or ``None`` when no database is configured."""

Orchestrator = Annotated[WorkspaceOrchestrator, Depends(get_orchestrator)]
"""Annotated dependency: the shared workspace orchestrator."""
