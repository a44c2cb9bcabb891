"""Shared fixtures for orchestrator tests."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from yardmaster.orchestrator.app import app
from yardmaster.orchestrator.deps import get_db, get_optional_db
from yardmaster.orchestrator.execution.coordinator import WorkspaceOrchestrator
from yardmaster.orchestrator.execution.engine import InMemoryEngine
from yardmaster.orchestrator.models.template import (
    AgentSpec,
    AppSpec,
    ResourceSpec,
    ValidationRule,
    VariableSpec,
    WorkspaceTemplate,
)
from yardmaster.orchestrator.models.workspace import WorkspaceState
from yardmaster.orchestrator.registry import WorkspaceRegistry
from yardmaster.orchestrator.settings import YardSettings


def make_template(**overrides: object) -> WorkspaceTemplate:
    """A small Coder-style template: a pod with a code-server app."""
    fields: dict = {
        "template_id": "tpl-dev",
        "name": "dev",
        "variables": [
            VariableSpec(
                name="cpu_limit",
                type="number",
                default="1",
                validation=ValidationRule(min=1, max=16, monotonic="increasing"),
            ),
            VariableSpec(
                name="region",
                default="eu-west",
                mutable=False,
                validation=ValidationRule(options=["eu-west", "us-east"]),
            ),
            VariableSpec(name="api_key", default="s3cret", sensitive=True),
        ],
        "resource": ResourceSpec(
            type="kubernetes_pod",
            attributes={
                "cpu": "{{ var.cpu_limit }}",
                "labels": {"owner": "{{ workspace.owner }}", "region": "{{ var.region }}"},
                "env": ["CODER_AGENT_TOKEN={{ agent.token }}"],
                "replicas": 1,
            },
        ),
        "agent": AgentSpec(
            startup_script="code-server --auth none --port 13337 # {{ workspace.name }}",
            env={"REGION": "{{ var.region }}"},
        ),
        "apps": [AppSpec(slug="code-server", display_name="VS Code", url="http://localhost:13337")],
    }
    fields.update(overrides)
    return WorkspaceTemplate(**fields)


@pytest.fixture
def template() -> WorkspaceTemplate:
    return make_template()


@pytest.fixture
def settings() -> YardSettings:
    return YardSettings(handshake_timeout=5.0, startup_timeout=5.0)


@pytest.fixture
def registry() -> WorkspaceRegistry:
    return WorkspaceRegistry()


@pytest.fixture
def engine() -> InMemoryEngine:
    return InMemoryEngine()


@pytest.fixture
async def orchestrator(
    registry: WorkspaceRegistry,
    engine: InMemoryEngine,
    settings: YardSettings,
) -> AsyncIterator[WorkspaceOrchestrator]:
    """Orchestrator over the in-memory engine; pending handshakes are cancelled at teardown."""
    orch = WorkspaceOrchestrator(registry=registry, engine=engine, settings=settings)
    yield orch
    await orch.shutdown()


@pytest.fixture
def make_state(template: WorkspaceTemplate):
    """Factory for unregistered pending states built from the sample template."""

    def _make(workspace_id: str = "ws-1", **kwargs: object) -> WorkspaceState:
        kwargs.setdefault("owner", "alice")
        kwargs.setdefault("name", "dev")
        kwargs.setdefault("variables", {"cpu_limit": "1", "region": "eu-west", "api_key": "s3cret"})
        return WorkspaceState(workspace_id=workspace_id, template=template, **kwargs)

    return _make


@pytest.fixture
def bring_up(orchestrator: WorkspaceOrchestrator):
    """Drive a provisioned workspace through the agent handshake to ``ready``."""

    async def _bring_up(state: WorkspaceState) -> WorkspaceState:
        assert state.agent.token is not None
        session_token = await orchestrator.present_token(state.workspace_id, state.agent.token)
        return await orchestrator.report_startup(state.workspace_id, session_token, success=True)

    return _bring_up


# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------


@pytest.fixture
async def client(orchestrator: WorkspaceOrchestrator) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the app without a database.

    The app lifespan does NOT run under ``ASGITransport``, so state fields
    are pre-set here.
    """
    app.state.db_engine = None
    app.state.db_session_factory = None
    app.state.redis = None
    app.state.orchestrator = orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.orchestrator = None


@pytest.fixture
async def db_client(db_session: AsyncSession, orchestrator: WorkspaceOrchestrator) -> AsyncIterator[AsyncClient]:
    """Like ``client`` but with every request using the savepoint-isolated ``db_session``."""

    async def _override_get_db() -> AsyncIterator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_optional_db] = _override_get_db

    app.state.db_engine = None
    app.state.db_session_factory = None
    app.state.redis = None
    app.state.orchestrator = orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.orchestrator = None
