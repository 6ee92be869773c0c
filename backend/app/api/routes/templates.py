from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from backend.app.api.deps import require_permission_dep
from backend.app.db import get_db
from backend.app.models import FirmMembership
from backend.app.services import template_service

router = APIRouter(prefix="/api/firms/{firm_id}/templates", tags=["templates"])

TemplateType = Literal["document", "email"]


def _strip_name(value):
    # stripped before the length check so a blank name fails validation
    return value.strip() if isinstance(value, str) else value


class TemplateCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    type: TemplateType
    content: str = Field(min_length=1)
    category: Optional[str] = Field(default=None, max_length=80)
    merge_fields: Optional[Dict[str, Any]] = None
    is_active: bool = True
    parent_id: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip_name(value)


class TemplateUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    type: Optional[TemplateType] = None
    content: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = Field(default=None, max_length=80)
    merge_fields: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip_name(value)


class TemplateOut(BaseModel):
    id: str
    firm_id: Optional[str] = None
    name: str
    type: str
    category: Optional[str] = None
    content: str
    merge_fields: Optional[Dict[str, Any]] = None
    is_active: bool
    is_system: bool
    parent_id: Optional[str] = None
    version: int
    created_by_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class TemplateListOut(BaseModel):
    templates: List[TemplateOut]
    pagination: PaginationOut


class TemplatePreviewIn(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)


class TemplatePreviewOut(BaseModel):
    template_id: str
    name: str
    content: str
    missing: List[str]


@router.get("", response_model=TemplateListOut)
def list_templates(
    firm_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[TemplateType] = Query(None),
    active_only: bool = Query(False),
    include_system: bool = Query(True),
    membership: FirmMembership = Depends(require_permission_dep("templates:read")),
    db: Session = Depends(get_db),
):
    result = template_service.list_templates(
        db,
        firm_id,
        page=page,
        limit=limit,
        template_type=type,
        active_only=active_only,
        include_system=include_system,
    )
    return TemplateListOut(
        templates=[TemplateOut(**item) for item in result["items"]],
        pagination=PaginationOut(**result["pagination"]),
    )


@router.post("", response_model=TemplateOut, status_code=201)
def create_template(
    firm_id: str,
    payload: TemplateCreateIn,
    membership: FirmMembership = Depends(require_permission_dep("templates:write")),
    db: Session = Depends(get_db),
):
    row = template_service.create_template(
        db,
        firm_id,
        name=payload.name,
        template_type=payload.type,
        content=payload.content,
        category=payload.category,
        merge_fields=payload.merge_fields,
        is_active=payload.is_active,
        parent_id=payload.parent_id,
        created_by_id=membership.user_id,
    )
    return TemplateOut(**template_service.serialize_template(row))


@router.get("/{template_id}", response_model=TemplateOut)
def get_template(
    firm_id: str,
    template_id: str,
    membership: FirmMembership = Depends(require_permission_dep("templates:read")),
    db: Session = Depends(get_db),
):
    row = template_service.get_template(db, firm_id, template_id)
    return TemplateOut(**template_service.serialize_template(row))


@router.patch("/{template_id}", response_model=TemplateOut)
def update_template(
    firm_id: str,
    template_id: str,
    payload: TemplateUpdateIn,
    membership: FirmMembership = Depends(require_permission_dep("templates:write")),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    row = template_service.update_template(db, firm_id, template_id, changes)
    return TemplateOut(**template_service.serialize_template(row))


@router.delete("/{template_id}", status_code=204)
def delete_template(
    firm_id: str,
    template_id: str,
    membership: FirmMembership = Depends(require_permission_dep("templates:write")),
    db: Session = Depends(get_db),
):
    template_service.delete_template(db, firm_id, template_id)
    return Response(status_code=204)


@router.post("/{template_id}/preview", response_model=TemplatePreviewOut)
def preview_template(
    firm_id: str,
    template_id: str,
    payload: TemplatePreviewIn,
    membership: FirmMembership = Depends(require_permission_dep("templates:read")),
    db: Session = Depends(get_db),
):
    return TemplatePreviewOut(**template_service.preview_template(db, firm_id, template_id, payload.data))
