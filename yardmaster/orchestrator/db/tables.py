"""SQLAlchemy ORM models for PostgreSQL.

These are the single source of truth for the database schema. Alembic reads
``Base.metadata`` to autogenerate migration scripts.

- ``templates``: registered workspace templates (JSONB bodies).
- ``workspaces``: durable mirror of each workspace's latest phase.
- ``workspace_events``: append-only phase-change history.

Uses SQLAlchemy 2.0 declarative style with ``Mapped`` type annotations.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Timezone-aware timestamp type for all datetime columns.
TimestampTZ = DateTime(timezone=True)


class Base(DeclarativeBase):
    """Declarative base with naming convention for constraints."""

    pass


# Apply naming convention to the metadata for deterministic constraint names.
Base.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Template(Base):
    __tablename__ = "templates"

    template_id: Mapped[str] = mapped_column(primary_key=True)
    name: Mapped[str]
    description: Mapped[str | None] = mapped_column(Text)
    variables: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    resource: Mapped[dict] = mapped_column(JSONB, nullable=False)
    agent: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    apps: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())


class Workspace(Base):
    __tablename__ = "workspaces"
    __table_args__ = (
        Index("ix_workspaces_owner", "owner"),
        Index("ix_workspaces_phase", "phase"),
    )

    workspace_id: Mapped[str] = mapped_column(primary_key=True)
    owner: Mapped[str]
    name: Mapped[str]
    template_id: Mapped[str | None]
    phase: Mapped[str] = mapped_column(server_default="pending")
    attempt: Mapped[int] = mapped_column(server_default="1")
    resource_id: Mapped[str | None]
    error: Mapped[str | None] = mapped_column(Text)
    variables: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())


class WorkspaceEvent(Base):
    __tablename__ = "workspace_events"
    __table_args__ = (Index("ix_workspace_events_workspace_id", "workspace_id"),)

    event_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    workspace_id: Mapped[str] = mapped_column(
        ForeignKey("workspaces.workspace_id", name="fk_workspace_events_workspace_id", ondelete="CASCADE"),
    )
    attempt: Mapped[int]
    from_phase: Mapped[str]
    to_phase: Mapped[str]
    reason: Mapped[str | None] = mapped_column(Text)
    at: Mapped[datetime] = mapped_column(TimestampTZ)
