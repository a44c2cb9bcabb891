"""Domain exceptions raised by the orchestrator.

Execution modules raise these; routers translate them to HTTP status codes.
None of them are retried inside the orchestrator -- retry is always the
caller's decision.
"""

from __future__ import annotations


class YardError(Exception):
    """Base class for all orchestrator errors."""


# -- Template / variables ----------------------------------------------------


class ValidationError(YardError, ValueError):
    """A variable value (or a template reference to one) is invalid."""

    def __init__(self, variable: str, message: str) -> None:
        self.variable = variable
        self.message = message
        super().__init__(f"Variable '{variable}': {message}")


class DuplicateSlugError(YardError, ValueError):
    """An app slug is declared twice for the same agent."""

    def __init__(self, slug: str) -> None:
        self.slug = slug
        super().__init__(f"App slug '{slug}' is already registered for this agent")


# -- Provisioning ------------------------------------------------------------


class ProvisioningEngineError(YardError):
    """The infrastructure engine rejected or failed an operation.

    The engine's message is kept verbatim in ``str(exc)``.
    """

    def __init__(self, message: str, *, operation: str | None = None, status_code: int | None = None) -> None:
        self.operation = operation
        self.status_code = status_code
        super().__init__(message)


# -- Handshake ---------------------------------------------------------------


class HandshakeTimeout(YardError, TimeoutError):
    """The agent did not connect (or finish its startup script) in time."""

    def __init__(self, workspace_id: str, stage: str, timeout: float) -> None:
        self.workspace_id = workspace_id
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"Workspace '{workspace_id}': agent {stage} timed out after {timeout:g}s")


class AuthenticationError(YardError):
    """The agent presented a token that does not match. Fatal for the attempt."""

    def __init__(self, workspace_id: str) -> None:
        self.workspace_id = workspace_id
        super().__init__(f"Workspace '{workspace_id}': agent token mismatch")


class StartupScriptError(YardError):
    """The agent reported a failed startup script."""

    def __init__(self, workspace_id: str, exit_code: int | None = None) -> None:
        self.workspace_id = workspace_id
        self.exit_code = exit_code
        detail = f" (exit code {exit_code})" if exit_code is not None else ""
        super().__init__(f"Workspace '{workspace_id}': startup script failed{detail}")


# -- Lifecycle ---------------------------------------------------------------


class PhaseTransitionError(YardError):
    """A lifecycle transition is not allowed from the current phase."""

    def __init__(self, workspace_id: str, current: str, target: str) -> None:
        self.workspace_id = workspace_id
        self.current = current
        self.target = target
        super().__init__(f"Workspace '{workspace_id}': cannot move from '{current}' to '{target}'")


class AgentNotReadyError(YardError):
    """Apps can only be registered against a ready agent."""

    def __init__(self, workspace_id: str, phase: str) -> None:
        self.workspace_id = workspace_id
        self.phase = phase
        super().__init__(f"Workspace '{workspace_id}' is '{phase}', not 'ready'")


# -- Lookup ------------------------------------------------------------------


class WorkspaceNotFoundError(YardError, LookupError):
    def __init__(self, workspace_id: str) -> None:
        super().__init__(f"Workspace '{workspace_id}' not found")


class TemplateNotFoundError(YardError, LookupError):
    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template '{template_id}' not found")


class AppNotFoundError(YardError, LookupError):
    def __init__(self, workspace_id: str, slug: str) -> None:
        super().__init__(f"App '{slug}' not found in workspace '{workspace_id}'")


class DuplicateWorkspaceError(YardError, ValueError):
    def __init__(self, workspace_id: str) -> None:
        super().__init__(f"Workspace '{workspace_id}' already exists")
