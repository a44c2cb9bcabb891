"""Data models for the orchestrator."""

from yardmaster.orchestrator.models.api import (
    DestroyResponse,
    HandshakeRequest,
    HandshakeResponse,
    ProvisionRequest,
    StartupReport,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
    WorkspaceResponse,
    WorkspaceUpdateRequest,
)
from yardmaster.orchestrator.models.enums import (
    AgentArch,
    AgentOS,
    EngineKind,
    EventType,
    HandshakeStage,
    Monotonic,
    VariableType,
    WorkspacePhase,
)
from yardmaster.orchestrator.models.events import WorkspaceEvent
from yardmaster.orchestrator.models.template import (
    AgentSpec,
    AppSpec,
    ResourceGraph,
    ResourceSpec,
    ValidationRule,
    VariableSpec,
    WorkspaceTemplate,
)
from yardmaster.orchestrator.models.workspace import ALLOWED_TRANSITIONS, PhaseChange, WorkspaceState

__all__ = [
    "ALLOWED_TRANSITIONS",
    # Enums
    "AgentArch",
    "AgentOS",
    # Template
    "AgentSpec",
    "AppSpec",
    # API schemas
    "DestroyResponse",
    "EngineKind",
    "EventType",
    "HandshakeRequest",
    "HandshakeResponse",
    "HandshakeStage",
    "Monotonic",
    # Workspace
    "PhaseChange",
    "ProvisionRequest",
    "ResourceGraph",
    "ResourceSpec",
    "StartupReport",
    "TemplateCreate",
    "TemplateResponse",
    "TemplateUpdate",
    "ValidationRule",
    "VariableSpec",
    "VariableType",
    # Events
    "WorkspaceEvent",
    "WorkspacePhase",
    "WorkspaceResponse",
    "WorkspaceState",
    "WorkspaceTemplate",
    "WorkspaceUpdateRequest",
]
