"""Shared enumerations used across the orchestrator."""

from __future__ import annotations

from enum import StrEnum

# -- Workspace ---------------------------------------------------------------


class WorkspacePhase(StrEnum):
    """Lifecycle phase of a single workspace."""

    PENDING = "pending"
    PROVISIONING = "provisioning"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    DESTROYED = "destroyed"


# Phases a previous process may have left behind mid-flight.
IN_FLIGHT_PHASES = frozenset({WorkspacePhase.PENDING, WorkspacePhase.PROVISIONING, WorkspacePhase.STARTING})


# -- Variables ---------------------------------------------------------------


class VariableType(StrEnum):
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    LIST = "list(string)"


class Monotonic(StrEnum):
    """Direction a numeric variable may move between builds."""

    INCREASING = "increasing"
    DECREASING = "decreasing"


# -- Agent -------------------------------------------------------------------


class AgentOS(StrEnum):
    LINUX = "linux"
    DARWIN = "darwin"
    WINDOWS = "windows"


class AgentArch(StrEnum):
    AMD64 = "amd64"
    ARM64 = "arm64"
    ARMV7 = "armv7"


class HandshakeStage(StrEnum):
    """Which wait a handshake tracker is in."""

    CONNECT = "connect"
    STARTUP = "startup"


# -- Engine ------------------------------------------------------------------


class EngineKind(StrEnum):
    MEMORY = "memory"
    HTTP = "http"


# -- Events ------------------------------------------------------------------


class EventType(StrEnum):
    """Event types emitted over SSE / Redis Stream."""

    PHASE_CHANGED = "phase_changed"
    SNAPSHOT = "snapshot"
