"""Template CRUD operations.

Encapsulates all template data access: create, list, get, update, delete.
Every write re-validates the template (variable names, defaults, app slugs)
so a stored template is always provisionable.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import select

from yardmaster.orchestrator.db.tables import Template
from yardmaster.orchestrator.errors import TemplateNotFoundError
from yardmaster.orchestrator.execution.resolver import validate_template
from yardmaster.orchestrator.models.template import WorkspaceTemplate

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from yardmaster.orchestrator.models.api import TemplateCreate, TemplateUpdate


class DuplicateTemplateError(ValueError):
    """Raised when a template with the given ID already exists."""


def row_to_template(row: Template) -> WorkspaceTemplate:
    """Hydrate the domain model from an ORM row."""
    return WorkspaceTemplate.model_validate(row, from_attributes=True)


def _template_to_row_kwargs(template: WorkspaceTemplate) -> dict:
    """Nested models are stored as plain dicts/lists in JSONB columns."""
    return template.model_dump(
        mode="json",
        include={"name", "description", "variables", "resource", "agent", "apps"},
    )


async def create_template(db: AsyncSession, body: TemplateCreate) -> Template:
    """Register a new template.  Raises ``DuplicateTemplateError`` if ID exists."""
    template_id = body.template_id or str(uuid.uuid4())

    existing = await db.get(Template, template_id)
    if existing is not None:
        raise DuplicateTemplateError(template_id)

    template = body.to_template(template_id)
    validate_template(template)

    row = Template(template_id=template_id, **_template_to_row_kwargs(template))
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def list_templates(db: AsyncSession, *, limit: int = 50, offset: int = 0) -> list[Template]:
    """List templates, newest first."""
    stmt = select(Template).order_by(Template.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_template(db: AsyncSession, template_id: str) -> Template:
    """Get a template by ID.  Raises ``TemplateNotFoundError`` if missing."""
    row = await db.get(Template, template_id)
    if row is None:
        raise TemplateNotFoundError(template_id)
    return row


async def load_template(db: AsyncSession, template_id: str) -> WorkspaceTemplate:
    """Get a template as a domain model, ready for provisioning."""
    return row_to_template(await get_template(db, template_id))


async def update_template(db: AsyncSession, template_id: str, body: TemplateUpdate) -> Template:
    """Partially update a template.  Running workspaces keep their snapshot."""
    row = await get_template(db, template_id)

    changes = body.model_dump(exclude_unset=True)
    if not changes:
        return row

    current = row_to_template(row).model_dump()
    current.update(changes)
    merged = WorkspaceTemplate.model_validate(current)
    validate_template(merged)

    for key, value in _template_to_row_kwargs(merged).items():
        if key in changes:
            setattr(row, key, value)

    await db.commit()
    await db.refresh(row)
    return row


async def delete_template(db: AsyncSession, template_id: str) -> None:
    """Delete a template.  Raises ``TemplateNotFoundError`` if missing."""
    row = await get_template(db, template_id)
    await db.delete(row)
    await db.commit()
