"""API request / response schemas.

These thin schemas sit between HTTP and the domain layer.  They are separate
from the domain models in ``template.py`` / ``workspace.py`` because they
serve a different purpose:

- **Create** schemas validate user input and provide defaults.
- **Update** schemas allow partial updates via ``exclude_unset``.
- **Response** schemas serialize ORM rows (``from_attributes``) or live
  workspace states, and never carry agent tokens.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, model_validator

from yardmaster.orchestrator.models.enums import WorkspacePhase
from yardmaster.orchestrator.models.template import (
    AgentSpec,
    AppSpec,
    ResourceSpec,
    VariableSpec,
    WorkspaceTemplate,
)
from yardmaster.orchestrator.models.workspace import PhaseChange

if TYPE_CHECKING:
    from yardmaster.orchestrator.models.workspace import WorkspaceState

# ---------------------------------------------------------------------------
# Template
# ---------------------------------------------------------------------------


class TemplateCreate(BaseModel):
    """Input for registering a new template."""

    template_id: str | None = Field(default=None, description="Optional; auto-generated UUID if omitted.")
    name: str
    description: str | None = None
    variables: list[VariableSpec] = Field(default_factory=list)
    resource: ResourceSpec
    agent: AgentSpec = Field(default_factory=AgentSpec)
    apps: list[AppSpec] = Field(default_factory=list)

    def to_template(self, template_id: str) -> WorkspaceTemplate:
        return WorkspaceTemplate(template_id=template_id, **self.model_dump(exclude={"template_id"}))


class TemplateUpdate(BaseModel):
    """Partial update -- only fields explicitly set by the caller are applied."""

    name: str | None = None
    description: str | None = None
    variables: list[VariableSpec] | None = None
    resource: ResourceSpec | None = None
    agent: AgentSpec | None = None
    apps: list[AppSpec] | None = None


class TemplateResponse(BaseModel):
    """Serialized template returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    template_id: str
    name: str
    description: str | None = None
    variables: list[VariableSpec]
    resource: ResourceSpec
    agent: AgentSpec
    apps: list[AppSpec]
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------


class ProvisionRequest(BaseModel):
    """Input for provisioning a workspace.

    Exactly one of ``template_id`` (a registered template) and ``template``
    (an inline definition) must be given.
    """

    template_id: str | None = None
    template: TemplateCreate | None = None
    workspace_id: str | None = Field(default=None, description="Optional; auto-generated if omitted.")
    owner: str
    name: str | None = None
    variables: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _exactly_one_template(self) -> ProvisionRequest:
        if (self.template_id is None) == (self.template is None):
            msg = "exactly one of template_id and template must be provided"
            raise ValueError(msg)
        return self


class WorkspaceUpdateRequest(BaseModel):
    """Variables to change for a new build; unset variables keep their value."""

    variables: dict[str, str] = Field(default_factory=dict)


class WorkspaceResponse(BaseModel):
    """Serialized live workspace returned to clients."""

    workspace_id: str
    owner: str
    name: str
    template_id: str | None = None
    phase: WorkspacePhase
    attempt: int
    resource_id: str | None = None
    error: str | None = None
    variables: dict[str, str]
    apps: list[AppSpec]
    history: list[PhaseChange] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_state(cls, state: WorkspaceState, *, include_history: bool = False) -> WorkspaceResponse:
        return cls(
            workspace_id=state.workspace_id,
            owner=state.owner,
            name=state.name,
            template_id=state.template.template_id,
            phase=state.phase,
            attempt=state.attempt,
            resource_id=state.resource_id,
            error=state.error,
            variables=state.public_variables(),
            apps=list(state.apps),
            history=list(state.history) if include_history else [],
            created_at=state.created_at,
            updated_at=state.updated_at,
        )


class DestroyResponse(BaseModel):
    workspace_id: str
    destroyed: bool = Field(description="False when the workspace was already destroyed.")


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class HandshakeRequest(BaseModel):
    workspace_id: str
    token: str


class HandshakeResponse(BaseModel):
    workspace_id: str
    phase: WorkspacePhase
    session_token: str


class StartupReport(BaseModel):
    workspace_id: str
    session_token: str
    success: bool
    exit_code: int | None = None
