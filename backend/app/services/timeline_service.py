from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from backend.app.models import Matter, TimelineEvent, utcnow


def require_matter(db: Session, firm_id: str, matter_id: str) -> Matter:
    matter = (
        db.execute(select(Matter).where(Matter.id == matter_id, Matter.firm_id == firm_id))
        .scalars()
        .first()
    )
    if not matter:
        raise HTTPException(404, "matter not found")
    return matter


def create_timeline_event(
    db: Session,
    *,
    firm_id: str,
    matter_id: str,
    type: str,
    title: str,
    description: Optional[str] = None,
    actor_type: str = "user",
    actor_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> TimelineEvent:
    row = TimelineEvent(
        firm_id=firm_id,
        matter_id=matter_id,
        type=type,
        title=title,
        description=description,
        actor_type=actor_type,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        occurred_at=occurred_at or utcnow(),
        metadata_json=metadata,
    )
    db.add(row)
    db.flush()
    return row


def _encode_cursor(created_at: datetime, event_id: str) -> str:
    return f"{created_at.isoformat()}|{event_id}"


def _decode_cursor(cursor: str) -> Tuple[datetime, str]:
    try:
        created_at_raw, event_id = cursor.split("|", 1)
        return datetime.fromisoformat(created_at_raw), event_id
    except ValueError as exc:
        raise HTTPException(400, "invalid cursor") from exc


def serialize_event(row: TimelineEvent) -> Dict[str, Any]:
    return {
        "id": row.id,
        "matter_id": row.matter_id,
        "type": row.type,
        "title": row.title,
        "description": row.description,
        "actor_type": row.actor_type,
        "actor_id": row.actor_id,
        "entity_type": row.entity_type,
        "entity_id": row.entity_id,
        "occurred_at": row.occurred_at,
        "metadata": row.metadata_json,
        "created_at": row.created_at,
    }


def list_timeline_events(
    db: Session,
    firm_id: str,
    matter_id: str,
    limit: int = 50,
    cursor: Optional[str] = None,
    event_type: Optional[str] = None,
) -> Dict[str, Any]:
    require_matter(db, firm_id, matter_id)

    query = select(TimelineEvent).where(
        TimelineEvent.firm_id == firm_id,
        TimelineEvent.matter_id == matter_id,
    )
    if event_type:
        query = query.where(TimelineEvent.type == event_type)
    if cursor:
        cursor_created_at, cursor_id = _decode_cursor(cursor)
        query = query.where(
            or_(
                TimelineEvent.created_at < cursor_created_at,
                and_(TimelineEvent.created_at == cursor_created_at, TimelineEvent.id < cursor_id),
            )
        )

    rows = (
        db.execute(
            query.order_by(TimelineEvent.created_at.desc(), TimelineEvent.id.desc()).limit(limit + 1)
        )
        .scalars()
        .all()
    )

    next_cursor = None
    if len(rows) > limit:
        last = rows[limit - 1]
        next_cursor = _encode_cursor(last.created_at, last.id)
        rows = rows[:limit]

    return {"items": [serialize_event(row) for row in rows], "next_cursor": next_cursor}
