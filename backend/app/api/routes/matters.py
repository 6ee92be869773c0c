from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.app.api.deps import get_current_user, require_permission_dep
from backend.app.db import get_db
from backend.app.integrations.ai_client import AiClientError
from backend.app.models import User
from backend.app.services import generation_service, timeline_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/firms/{firm_id}/matters", tags=["matters"])


class GenerateDocumentIn(BaseModel):
    template_id: str
    overrides: Optional[Dict[str, Any]] = None


class GeneratedDocumentOut(BaseModel):
    id: str
    title: str
    type: str
    status: str
    filename: str


class GenerateDocumentOut(BaseModel):
    document: GeneratedDocumentOut
    ai_sections: List[str]
    missing_fields: List[str]
    tokens_used: int


class TimelineEventOut(BaseModel):
    id: str
    matter_id: str
    type: str
    title: str
    description: Optional[str] = None
    actor_type: str
    actor_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    occurred_at: datetime
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime


class TimelinePageOut(BaseModel):
    items: List[TimelineEventOut]
    next_cursor: Optional[str] = None


@router.post(
    "/{matter_id}/generate",
    response_model=GenerateDocumentOut,
    status_code=201,
    dependencies=[Depends(require_permission_dep("documents:write"))],
)
def generate_document(
    firm_id: str,
    matter_id: str,
    payload: GenerateDocumentIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        result = generation_service.generate_document(
            db,
            firm_id=firm_id,
            matter_id=matter_id,
            template_id=payload.template_id,
            overrides=payload.overrides,
            user=user,
        )
    except AiClientError as exc:
        db.rollback()
        logger.warning("AI generation failed for matter=%s kind=%s: %s", matter_id, exc.kind, exc)
        status = 503 if exc.kind == "config_error" else 502
        raise HTTPException(status_code=status, detail=f"ai generation failed: {exc.kind}") from exc
    return GenerateDocumentOut(**result)


@router.get(
    "/{matter_id}/timeline",
    response_model=TimelinePageOut,
    dependencies=[Depends(require_permission_dep("matters:read"))],
)
def list_timeline(
    firm_id: str,
    matter_id: str,
    limit: int = Query(50, ge=1, le=200),
    cursor: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    result = timeline_service.list_timeline_events(
        db,
        firm_id,
        matter_id,
        limit=limit,
        cursor=cursor,
        event_type=type,
    )
    return TimelinePageOut(
        items=[TimelineEventOut(**item) for item in result["items"]],
        next_cursor=result["next_cursor"],
    )
