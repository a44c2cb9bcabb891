"""Resource graph rendering with Jinja2.

Startup scripts, agent environment values and string leaves of resource
attributes may contain Jinja2 template syntax.  They are rendered with:

- ``var``       : dict[str, str] -- resolved template variables
- ``workspace`` : dict           -- ``id``, ``name``, ``owner``, ``attempt``
- ``agent``     : dict           -- ``os``, ``arch``, ``token`` (attributes only)

Example resource attributes::

    {
        "image": "codercom/enterprise-base:ubuntu",
        "cpu": "{{ var.cpu_limit }}",
        "env": {"CODER_AGENT_TOKEN": "{{ agent.token }}"},
        "labels": {"owner": "{{ workspace.owner }}"}
    }

Undefined references raise ``ValidationError`` naming the missing variable
instead of silently rendering an empty string.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import jinja2

from yardmaster.orchestrator.errors import ValidationError
from yardmaster.orchestrator.models.template import ResourceGraph, ResourceSpec

if TYPE_CHECKING:
    from yardmaster.orchestrator.models.workspace import WorkspaceState

_env = jinja2.Environment(autoescape=False, undefined=jinja2.StrictUndefined)  # noqa: S701


def render_string(raw: str, context: dict[str, Any], *, field: str) -> str:
    """Render *raw* if it contains template syntax, otherwise return it unchanged."""
    if "{{" not in raw and "{%" not in raw:
        return raw
    try:
        return _env.from_string(raw).render(**context)
    except jinja2.UndefinedError as exc:
        raise ValidationError(field, f"template references an undefined value ({exc.message})") from None
    except jinja2.TemplateSyntaxError as exc:
        raise ValidationError(field, f"invalid template syntax: {exc.message}") from None


def _render_tree(node: Any, context: dict[str, Any], path: str) -> Any:
    if isinstance(node, str):
        return render_string(node, context, field=path)
    if isinstance(node, dict):
        return {k: _render_tree(v, context, f"{path}.{k}") for k, v in node.items()}
    if isinstance(node, list):
        return [_render_tree(v, context, f"{path}[{i}]") for i, v in enumerate(node)]
    return node


def render_resource_graph(state: WorkspaceState) -> ResourceGraph:
    """Render the workspace's template into the payload submitted to the engine.

    Uses the state's resolved variables and its current agent token.
    """
    template = state.template
    agent = state.agent
    context: dict[str, Any] = {
        "var": dict(state.variables),
        "workspace": {
            "id": state.workspace_id,
            "name": state.name,
            "owner": state.owner,
            "attempt": state.attempt,
        },
    }

    startup_script = render_string(agent.startup_script, context, field="agent.startup_script")
    env = {k: render_string(v, context, field=f"agent.env.{k}") for k, v in agent.env.items()}

    attribute_context = {
        **context,
        "agent": {"os": agent.os.value, "arch": agent.arch.value, "token": agent.token},
    }
    attributes = _render_tree(template.resource.attributes, attribute_context, "resource.attributes")

    return ResourceGraph(
        workspace_id=state.workspace_id,
        owner=state.owner,
        attempt=state.attempt,
        resource=ResourceSpec(type=template.resource.type, name=template.resource.name, attributes=attributes),
        agent={
            "os": agent.os.value,
            "arch": agent.arch.value,
            "dir": agent.dir,
            "startup_script": startup_script,
            "env": env,
            "token": agent.token,
        },
    )
