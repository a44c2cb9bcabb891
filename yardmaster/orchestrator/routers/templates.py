"""Template CRUD endpoints (RPC-style).

All write operations use POST; reads use GET.  Thin HTTP adapter --
delegates to the template manager.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from yardmaster.orchestrator.db.tables import Template
from yardmaster.orchestrator.deps import DbSession
from yardmaster.orchestrator.errors import DuplicateSlugError, TemplateNotFoundError, ValidationError
from yardmaster.orchestrator.managers import templates as manager
from yardmaster.orchestrator.models.api import TemplateCreate, TemplateResponse, TemplateUpdate

router = APIRouter(prefix="/templates", tags=["templates"])


@router.post("/create", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(body: TemplateCreate, db: DbSession) -> Template:
    """Register a new workspace template."""
    try:
        return await manager.create_template(db, body)
    except manager.DuplicateTemplateError:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=f"Template '{body.template_id}' already exists.") from None
    except DuplicateSlugError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from None
    except ValidationError as exc:
        raise HTTPException(422, detail=str(exc)) from None


@router.get("/list", response_model=list[TemplateResponse])
async def list_templates(
    db: DbSession,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> list[Template]:
    """List templates, ordered by creation time (newest first)."""
    return await manager.list_templates(db, limit=limit, offset=offset)


@router.get("/{template_id}/get", response_model=TemplateResponse)
async def get_template(template_id: str, db: DbSession) -> Template:
    """Get a single template by ID."""
    try:
        return await manager.get_template(db, template_id)
    except TemplateNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from None


@router.post("/{template_id}/update", response_model=TemplateResponse)
async def update_template(template_id: str, body: TemplateUpdate, db: DbSession) -> Template:
    """Partially update a template.  Existing workspaces keep their snapshot."""
    try:
        return await manager.update_template(db, template_id, body)
    except TemplateNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from None
    except DuplicateSlugError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from None
    except ValidationError as exc:
        raise HTTPException(422, detail=str(exc)) from None


@router.post("/{template_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(template_id: str, db: DbSession) -> None:
    """Delete a template by ID."""
    try:
        await manager.delete_template(db, template_id)
    except TemplateNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from None
