"""Unit tests for the agent handshake tracker.

Deadlines are shortened to tens of milliseconds; the orchestrator fixture
cancels any watcher still running at teardown.
"""

from __future__ import annotations

import asyncio

import pytest

from yardmaster.orchestrator.errors import (
    AuthenticationError,
    HandshakeTimeout,
    PhaseTransitionError,
    StartupScriptError,
)
from yardmaster.orchestrator.execution import driver
from yardmaster.orchestrator.execution.coordinator import WorkspaceOrchestrator
from yardmaster.orchestrator.models.enums import HandshakeStage, WorkspacePhase
from yardmaster.orchestrator.models.template import AgentSpec, WorkspaceTemplate
from yardmaster.orchestrator.registry import WorkspaceRegistry
from yardmaster.orchestrator.settings import YardSettings


@pytest.fixture
def fixed_token(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setattr(driver, "mint_token", lambda: "abc123")
    return "abc123"


def _phases(state) -> list[WorkspacePhase]:
    return [change.to_phase for change in state.history]


async def _wait_done(orchestrator: WorkspaceOrchestrator, workspace_id: str) -> None:
    tracker = orchestrator.tracker(workspace_id)
    assert tracker is not None
    for _ in range(200):
        if tracker.done:
            return
        await asyncio.sleep(0.01)
    pytest.fail("handshake watcher did not finish")


# ---------------------------------------------------------------------------
# Token handshake
# ---------------------------------------------------------------------------


async def test_correct_token_moves_to_starting(
    orchestrator: WorkspaceOrchestrator, template: WorkspaceTemplate, fixed_token: str
) -> None:
    state = await orchestrator.provision(template, owner="alice", workspace_id="ws-1")

    session_token = await orchestrator.present_token("ws-1", "abc123")

    assert state.phase == WorkspacePhase.STARTING
    assert session_token
    assert session_token != "abc123"
    assert state.agent.token is None
    assert orchestrator.tracker("ws-1").stage == HandshakeStage.STARTUP


async def test_wrong_token_fails_workspace(
    orchestrator: WorkspaceOrchestrator, template: WorkspaceTemplate, fixed_token: str
) -> None:
    state = await orchestrator.provision(template, owner="alice", workspace_id="ws-1")

    with pytest.raises(AuthenticationError):
        await orchestrator.present_token("ws-1", "wrong")

    assert state.phase == WorkspacePhase.FAILED
    assert "token mismatch" in state.error
    # No retry: the correct token is no longer accepted either.
    with pytest.raises(PhaseTransitionError):
        await orchestrator.present_token("ws-1", "abc123")


async def test_token_is_single_use(
    orchestrator: WorkspaceOrchestrator, template: WorkspaceTemplate, fixed_token: str
) -> None:
    await orchestrator.provision(template, owner="alice", workspace_id="ws-1")
    await orchestrator.present_token("ws-1", "abc123")

    with pytest.raises(PhaseTransitionError):
        await orchestrator.present_token("ws-1", "abc123")


async def test_full_flow_to_ready(orchestrator: WorkspaceOrchestrator, template: WorkspaceTemplate) -> None:
    state = await orchestrator.provision(template, owner="alice", workspace_id="ws-1")
    session_token = await orchestrator.present_token("ws-1", state.agent.token)

    await orchestrator.report_startup("ws-1", session_token, success=True)

    assert _phases(state) == [WorkspacePhase.PROVISIONING, WorkspacePhase.STARTING, WorkspacePhase.READY]
    assert [app.slug for app in state.apps] == ["code-server"]
    await _wait_done(orchestrator, "ws-1")
    assert orchestrator.tracker("ws-1").error is None


async def test_startup_script_failure(orchestrator: WorkspaceOrchestrator, template: WorkspaceTemplate) -> None:
    state = await orchestrator.provision(template, owner="alice", workspace_id="ws-1")
    session_token = await orchestrator.present_token("ws-1", state.agent.token)

    await orchestrator.report_startup("ws-1", session_token, success=False, exit_code=127)

    assert state.phase == WorkspacePhase.FAILED
    assert "exit code 127" in state.error
    assert isinstance(orchestrator.tracker("ws-1").error, StartupScriptError)
    assert state.apps == []


async def test_startup_report_with_wrong_session_token(
    orchestrator: WorkspaceOrchestrator, template: WorkspaceTemplate
) -> None:
    state = await orchestrator.provision(template, owner="alice", workspace_id="ws-1")
    await orchestrator.present_token("ws-1", state.agent.token)

    with pytest.raises(AuthenticationError):
        await orchestrator.report_startup("ws-1", "forged", success=True)

    assert state.phase == WorkspacePhase.FAILED


async def test_startup_report_before_handshake(
    orchestrator: WorkspaceOrchestrator, template: WorkspaceTemplate
) -> None:
    await orchestrator.provision(template, owner="alice", workspace_id="ws-1")

    with pytest.raises(PhaseTransitionError):
        await orchestrator.report_startup("ws-1", "anything", success=True)


# ---------------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------------


async def test_connect_timeout_fails_exactly_once(
    orchestrator: WorkspaceOrchestrator, template: WorkspaceTemplate
) -> None:
    quick = template.model_copy(update={"agent": AgentSpec(connection_timeout=0.05)})
    state = await orchestrator.provision(quick, owner="alice", workspace_id="ws-1")

    await _wait_done(orchestrator, "ws-1")

    assert state.phase == WorkspacePhase.FAILED
    assert _phases(state).count(WorkspacePhase.FAILED) == 1
    tracker = orchestrator.tracker("ws-1")
    assert isinstance(tracker.error, HandshakeTimeout)
    assert tracker.error.stage == HandshakeStage.CONNECT
    assert "timed out after 0.05s" in state.error

    # A late agent is turned away without a second failure.
    with pytest.raises(PhaseTransitionError):
        await orchestrator.present_token("ws-1", "whatever")
    assert _phases(state).count(WorkspacePhase.FAILED) == 1


async def test_startup_timeout(registry: WorkspaceRegistry, engine, template: WorkspaceTemplate) -> None:
    orchestrator = WorkspaceOrchestrator(
        registry=registry,
        engine=engine,
        settings=YardSettings(handshake_timeout=5.0, startup_timeout=0.05),
    )
    try:
        state = await orchestrator.provision(template, owner="alice", workspace_id="ws-1")
        await orchestrator.present_token("ws-1", state.agent.token)

        await _wait_done(orchestrator, "ws-1")

        assert state.phase == WorkspacePhase.FAILED
        assert orchestrator.tracker("ws-1").error.stage == HandshakeStage.STARTUP
    finally:
        await orchestrator.shutdown()


async def test_settings_timeout_used_without_agent_override(
    orchestrator: WorkspaceOrchestrator, template: WorkspaceTemplate, settings: YardSettings
) -> None:
    await orchestrator.provision(template, owner="alice", workspace_id="ws-1")

    assert orchestrator.tracker("ws-1").connect_timeout == settings.handshake_timeout


async def test_cancel_leaves_phase_untouched(
    orchestrator: WorkspaceOrchestrator, template: WorkspaceTemplate
) -> None:
    state = await orchestrator.provision(template, owner="alice", workspace_id="ws-1")
    tracker = orchestrator.tracker("ws-1")

    await tracker.aclose()

    assert tracker.done
    assert state.phase == WorkspacePhase.PROVISIONING


async def test_tracker_cannot_start_twice(orchestrator: WorkspaceOrchestrator, template: WorkspaceTemplate) -> None:
    await orchestrator.provision(template, owner="alice", workspace_id="ws-1")

    with pytest.raises(RuntimeError, match="already started"):
        orchestrator.tracker("ws-1").start()
