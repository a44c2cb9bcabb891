"""Workspace template data models.

A template declares what a workspace is made of: input variables, the
compute resource to create, the agent that runs inside it and the apps the
agent exposes.  These are pure Pydantic models used for API I/O, variable
resolution and rendering, and stored as JSONB in the ``templates`` table.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from yardmaster.orchestrator.models.enums import AgentArch, AgentOS, Monotonic, VariableType

VARIABLE_NAME_PATTERN = r"^[a-z_][a-z0-9_]*$"
APP_SLUG_PATTERN = r"^[a-z0-9](-?[a-z0-9])*$"

# -- Variables ---------------------------------------------------------------


class ValidationRule(BaseModel):
    """Declarative validation for a variable.  All set checks must pass."""

    regex: str | None = None
    min: float | None = None
    max: float | None = None
    options: list[str] | None = Field(default=None, description="Allowed values (exact match).")
    monotonic: Monotonic | None = Field(default=None, description="Checked against the previous build's value.")
    error_message: str | None = None


class VariableSpec(BaseModel):
    """A template input.  ``default=None`` makes the variable required."""

    name: str = Field(pattern=VARIABLE_NAME_PATTERN)
    description: str | None = None
    type: VariableType = VariableType.STRING
    default: str | None = None
    mutable: bool = True
    sensitive: bool = False
    validation: ValidationRule | None = None

    @property
    def required(self) -> bool:
        return self.default is None


# -- Agent / apps ------------------------------------------------------------


class AgentSpec(BaseModel):
    """The agent process that runs inside the workspace.

    ``startup_script`` and ``env`` values may reference ``var.*`` and
    ``workspace.*`` using Jinja2 syntax.  ``token`` is always ``None`` in a
    template; the driver mints one per provisioning attempt.
    """

    os: AgentOS = AgentOS.LINUX
    arch: AgentArch = AgentArch.AMD64
    startup_script: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    dir: str | None = None
    connection_timeout: float | None = Field(
        default=None, gt=0, description="Seconds to wait for the agent; falls back to the service default."
    )
    token: str | None = Field(default=None, exclude=True)


class AppSpec(BaseModel):
    """A user-facing application endpoint served by the agent."""

    model_config = ConfigDict(frozen=True)

    slug: str = Field(pattern=APP_SLUG_PATTERN)
    display_name: str | None = None
    url: str | None = None
    icon: str | None = None
    subdomain: bool = False
    external: bool = False


# -- Resource ----------------------------------------------------------------


class ResourceSpec(BaseModel):
    """The compute resource handed to the infrastructure engine.

    String leaves of ``attributes`` are rendered as Jinja2 templates before
    submission, e.g. ``{"cpu": "{{ var.cpu_limit }}"}``.
    """

    type: str = Field(description="Engine resource type, e.g. 'kubernetes_pod'.")
    name: str = "workspace"
    attributes: dict = Field(default_factory=dict)


# -- Top-level template ------------------------------------------------------


class WorkspaceTemplate(BaseModel):
    """Full workspace template as stored in PostgreSQL."""

    template_id: str | None = None
    name: str
    description: str | None = None
    variables: list[VariableSpec] = Field(default_factory=list)
    resource: ResourceSpec
    agent: AgentSpec = Field(default_factory=AgentSpec)
    apps: list[AppSpec] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ResourceGraph(BaseModel):
    """Rendered payload submitted to the infrastructure engine."""

    workspace_id: str
    owner: str
    attempt: int = 1
    resource: ResourceSpec
    agent: dict = Field(description="Rendered agent descriptor, including the handshake token.")
