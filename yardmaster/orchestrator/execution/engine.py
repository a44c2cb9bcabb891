"""Infrastructure engine interface and implementations.

The engine is an external collaborator (Terraform runner, cloud API, ...).
The orchestrator only needs three idempotency-aware operations:

- ``create(graph) -> resource_id``
- ``update(resource_id, graph) -> resource_id``
- ``destroy(resource_id)`` -- destroying an unknown resource is a success

Every failure surfaces as ``ProvisioningEngineError`` carrying the engine's
own message.  Nothing here retries.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from yardmaster.orchestrator.errors import ProvisioningEngineError
from yardmaster.orchestrator.models.enums import EngineKind

if TYPE_CHECKING:
    from yardmaster.orchestrator.models.template import ResourceGraph
    from yardmaster.orchestrator.settings import YardSettings

logger = logging.getLogger(__name__)


@runtime_checkable
class ProvisioningEngine(Protocol):
    """Async protocol for the external infrastructure engine."""

    async def create(self, graph: ResourceGraph) -> str:
        """Create the resources in *graph* and return the resource id."""
        ...

    async def update(self, resource_id: str, graph: ResourceGraph) -> str:
        """Apply *graph* to an existing resource; returns the (possibly new) id."""
        ...

    async def destroy(self, resource_id: str) -> None:
        """Destroy a resource.  No-op if it does not exist."""
        ...

    async def aclose(self) -> None:
        """Release client resources."""
        ...


# ---------------------------------------------------------------------------
# In-memory engine
# ---------------------------------------------------------------------------


class InMemoryEngine:
    """Process-local engine that records graphs instead of creating anything.

    Useful for development (``YARD_ENGINE=memory``) and tests.  ``fail_next``
    makes the next call raise with the given message.
    """

    def __init__(self) -> None:
        self.resources: dict[str, ResourceGraph] = {}
        self.destroyed: list[str] = []
        self.fail_next: str | None = None

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_next is not None:
            message, self.fail_next = self.fail_next, None
            raise ProvisioningEngineError(message, operation=operation)

    async def create(self, graph: ResourceGraph) -> str:
        self._maybe_fail("create")
        resource_id = f"{graph.resource.type}-{uuid.uuid4().hex[:12]}"
        self.resources[resource_id] = graph
        logger.debug("InMemoryEngine: created %s for workspace %s", resource_id, graph.workspace_id)
        return resource_id

    async def update(self, resource_id: str, graph: ResourceGraph) -> str:
        self._maybe_fail("update")
        if resource_id not in self.resources:
            msg = f"resource '{resource_id}' does not exist"
            raise ProvisioningEngineError(msg, operation="update")
        self.resources[resource_id] = graph
        return resource_id

    async def destroy(self, resource_id: str) -> None:
        self._maybe_fail("destroy")
        if self.resources.pop(resource_id, None) is not None:
            self.destroyed.append(resource_id)
            logger.debug("InMemoryEngine: destroyed %s", resource_id)

    async def aclose(self) -> None:
        return None


# ---------------------------------------------------------------------------
# HTTP engine
# ---------------------------------------------------------------------------


class HttpEngine:
    """Engine reached over HTTP.

    Wire contract::

        POST   /resources            body: ResourceGraph  -> {"resource_id": "..."}
        PUT    /resources/{id}       body: ResourceGraph  -> {"resource_id": "..."}
        DELETE /resources/{id}                            -> 2xx, or 404 if already gone

    Non-2xx responses become ``ProvisioningEngineError`` with the body's
    ``error`` (or ``detail``) field, falling back to the raw text.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    async def _request(self, operation: str, method: str, url: str, **kwargs: object) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except httpx.HTTPError as exc:
            msg = f"{operation} request failed: {exc}"
            raise ProvisioningEngineError(msg, operation=operation) from exc

    @staticmethod
    def _raise_for_status(operation: str, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = None
        message = None
        if isinstance(body, dict):
            message = body.get("error") or body.get("detail")
        raise ProvisioningEngineError(
            str(message or response.text or response.reason_phrase),
            operation=operation,
            status_code=response.status_code,
        )

    @staticmethod
    def _resource_id(operation: str, response: httpx.Response) -> str:
        try:
            resource_id = response.json()["resource_id"]
        except (ValueError, KeyError, TypeError):
            msg = f"{operation} response has no resource_id"
            raise ProvisioningEngineError(msg, operation=operation) from None
        return str(resource_id)

    async def create(self, graph: ResourceGraph) -> str:
        response = await self._request("create", "POST", "/resources", json=graph.model_dump(mode="json"))
        self._raise_for_status("create", response)
        return self._resource_id("create", response)

    async def update(self, resource_id: str, graph: ResourceGraph) -> str:
        response = await self._request(
            "update", "PUT", f"/resources/{resource_id}", json=graph.model_dump(mode="json")
        )
        self._raise_for_status("update", response)
        return self._resource_id("update", response)

    async def destroy(self, resource_id: str) -> None:
        response = await self._request("destroy", "DELETE", f"/resources/{resource_id}")
        if response.status_code == httpx.codes.NOT_FOUND:
            logger.debug("HttpEngine: resource %s already gone", resource_id)
            return
        self._raise_for_status("destroy", response)

    async def aclose(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_engine(settings: YardSettings) -> ProvisioningEngine:
    """Create the engine backend based on configuration."""
    if settings.engine == EngineKind.HTTP:
        if not settings.engine_url:
            msg = "YARD_ENGINE_URL must be set when YARD_ENGINE=http"
            raise ValueError(msg)
        token = settings.engine_token.get_secret_value() if settings.engine_token else None
        return HttpEngine(settings.engine_url, token=token, timeout=settings.engine_timeout)
    return InMemoryEngine()
