"""Event envelope sent to consumers over SSE and the Redis stream."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from yardmaster.orchestrator.models.enums import EventType

if TYPE_CHECKING:
    from yardmaster.orchestrator.models.workspace import PhaseChange


class WorkspaceEvent(BaseModel):
    """Wire-format event envelope."""

    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event_type: EventType
    workspace_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_change(cls, change: PhaseChange) -> WorkspaceEvent:
        return cls(
            event_type=EventType.PHASE_CHANGED,
            workspace_id=change.workspace_id,
            timestamp=change.at,
            payload=change.model_dump(mode="json", exclude={"workspace_id", "at"}),
        )
