from __future__ import annotations

import logging
import math
from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from backend.app.models import Template, utcnow
from backend.app.templates.render import extract_merge_fields, merge_field_schema, render_template

logger = logging.getLogger(__name__)

TEMPLATE_TYPES = ("document", "email")


def _visible_to_firm(firm_id: str):
    return or_(Template.firm_id == firm_id, Template.firm_id.is_(None))


def serialize_template(row: Template) -> Dict[str, Any]:
    return {
        "id": row.id,
        "firm_id": row.firm_id,
        "name": row.name,
        "type": row.type,
        "category": row.category,
        "content": row.content,
        "merge_fields": row.merge_fields,
        "is_active": row.is_active,
        "is_system": row.firm_id is None,
        "parent_id": row.parent_id,
        "version": row.version,
        "created_by_id": row.created_by_id,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


def get_template(db: Session, firm_id: str, template_id: str) -> Template:
    row = (
        db.execute(select(Template).where(Template.id == template_id, _visible_to_firm(firm_id)))
        .scalars()
        .first()
    )
    if not row:
        raise HTTPException(404, "template not found")
    return row


def _require_owned(db: Session, firm_id: str, template_id: str) -> Template:
    row = get_template(db, firm_id, template_id)
    if row.firm_id is None:
        raise HTTPException(403, "system templates are read-only")
    return row


def _clean_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise HTTPException(400, "template name required")
    return cleaned


def list_templates(
    db: Session,
    firm_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    template_type: Optional[str] = None,
    active_only: bool = False,
    include_system: bool = True,
) -> Dict[str, Any]:
    scope = _visible_to_firm(firm_id) if include_system else Template.firm_id == firm_id
    query = select(Template).where(scope)
    if template_type:
        query = query.where(Template.type == template_type)
    if active_only:
        query = query.where(Template.is_active.is_(True))

    total = db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
    rows = (
        db.execute(
            query.order_by(Template.name.asc(), Template.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )

    total_pages = max(1, math.ceil(total / limit))
    return {
        "items": [serialize_template(row) for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def create_template(
    db: Session,
    firm_id: str,
    *,
    name: str,
    template_type: str,
    content: str,
    category: Optional[str] = None,
    merge_fields: Optional[Dict[str, Any]] = None,
    is_active: bool = True,
    parent_id: Optional[str] = None,
    created_by_id: Optional[str] = None,
) -> Template:
    if template_type not in TEMPLATE_TYPES:
        raise HTTPException(400, "invalid template type")
    if parent_id is not None:
        get_template(db, firm_id, parent_id)

    row = Template(
        firm_id=firm_id,
        name=_clean_name(name),
        type=template_type,
        category=category,
        content=content,
        merge_fields=merge_fields if merge_fields is not None else merge_field_schema(extract_merge_fields(content)),
        is_active=is_active,
        parent_id=parent_id,
        version=1,
        created_by_id=created_by_id,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def update_template(db: Session, firm_id: str, template_id: str, changes: Dict[str, Any]) -> Template:
    row = _require_owned(db, firm_id, template_id)
    # only category and merge_fields are nullable
    changes = {
        key: value
        for key, value in changes.items()
        if value is not None or key in ("category", "merge_fields")
    }

    if "type" in changes and changes["type"] not in TEMPLATE_TYPES:
        raise HTTPException(400, "invalid template type")

    for key in ("name", "type", "category", "is_active"):
        if key in changes:
            setattr(row, key, _clean_name(changes[key]) if key == "name" else changes[key])

    if "content" in changes and changes["content"] != row.content:
        row.content = changes["content"]
        row.version = (row.version or 1) + 1
        if "merge_fields" not in changes:
            row.merge_fields = merge_field_schema(extract_merge_fields(row.content))
    if "merge_fields" in changes:
        row.merge_fields = changes["merge_fields"]

    row.updated_at = utcnow()
    db.commit()
    db.refresh(row)
    return row


def delete_template(db: Session, firm_id: str, template_id: str) -> None:
    row = _require_owned(db, firm_id, template_id)
    db.delete(row)
    db.commit()


def preview_template(
    db: Session,
    firm_id: str,
    template_id: str,
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    row = get_template(db, firm_id, template_id)
    result = render_template(row.content, data or {})
    if result.missing:
        logger.warning("Template preview %s has unresolved merge fields: %s", row.id, result.missing)
    return {
        "template_id": row.id,
        "name": row.name,
        "content": result.content,
        "missing": result.missing,
    }
