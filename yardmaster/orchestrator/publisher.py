"""Redis stream publisher for phase-change events.

Registered as a registry listener when ``YARD_REDIS_URL`` is set.  Every
transition is appended to ``YARD_EVENTS_STREAM`` (capped with an approximate
``MAXLEN``) so that other services can follow workspace lifecycles with
``XREAD``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from yardmaster.orchestrator.models.events import WorkspaceEvent

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from yardmaster.orchestrator.models.workspace import PhaseChange, WorkspaceState


class RedisEventPublisher:
    def __init__(self, client: aioredis.Redis, stream: str, *, maxlen: int = 10_000) -> None:
        self._client = client
        self._stream = stream
        self._maxlen = maxlen

    async def __call__(self, change: PhaseChange, state: WorkspaceState) -> None:
        event = WorkspaceEvent.from_change(change)
        fields = {
            "event_id": event.event_id,
            "event_type": event.event_type.value,
            "workspace_id": event.workspace_id,
            "owner": state.owner,
            "data": event.model_dump_json(),
        }
        await self._client.xadd(self._stream, fields, maxlen=self._maxlen, approximate=True)

    def __repr__(self) -> str:
        return f"RedisEventPublisher(stream={self._stream!r})"
