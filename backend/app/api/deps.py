# backend/app/api/deps.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db import get_db
from backend.app.models import Firm, FirmMembership, User

ROLE_ORDER = {
    "viewer": 1,
    "fee_earner": 2,
    "admin": 3,
}

PERMISSION_MIN_ROLE = {
    "matters:read": "viewer",
    "templates:read": "viewer",
    "documents:read": "viewer",
    "templates:write": "fee_earner",
    "documents:write": "fee_earner",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """
    Header-based identity.

    Reads identity from headers:
      - X-User-Email (preferred; will auto-provision user record if missing)
      - X-User-Id    (fallback; must already exist)
    """
    email = request.headers.get("X-User-Email")
    user_id = request.headers.get("X-User-Id")
    if not email and not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Email or X-User-Id header")

    if email:
        normalized = email.strip().lower()
        if not normalized:
            raise HTTPException(status_code=401, detail="Invalid X-User-Email header")

        user = db.execute(select(User).where(User.email == normalized)).scalars().first()
        if not user:
            user = User(
                email=normalized,
                name=normalized.split("@")[0],
                created_at=utcnow(),
                updated_at=utcnow(),
            )
            db.add(user)
            db.commit()
            db.refresh(user)
        return user

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Unknown X-User-Id")
    return user


def require_firm(db: Session, firm_id: str) -> Firm:
    firm = db.get(Firm, firm_id)
    if not firm:
        raise HTTPException(status_code=404, detail="firm not found")
    return firm


def require_membership(
    db: Session,
    firm_id: str,
    user: User,
    *,
    min_role: str = "viewer",
) -> FirmMembership:
    """
    Imperative membership check. Safe to call from inside endpoints/services.
    """
    require_firm(db, firm_id)
    membership = (
        db.execute(
            select(FirmMembership).where(
                FirmMembership.firm_id == firm_id,
                FirmMembership.user_id == user.id,
            )
        )
        .scalars()
        .first()
    )
    if not membership:
        raise HTTPException(status_code=403, detail="membership required")

    if not role_at_least(membership, min_role):
        raise HTTPException(status_code=403, detail="insufficient role")
    return membership


def role_at_least(membership: FirmMembership, min_role: str) -> bool:
    min_rank = ROLE_ORDER.get(min_role, 0)
    member_rank = ROLE_ORDER.get(membership.role or "", 0)
    return member_rank >= min_rank


def require_permission_dep(permission: str) -> Callable[..., FirmMembership]:
    """
    FastAPI dependency factory for routes with a {firm_id} path parameter.

    Usage:
      @router.post("/api/firms/{firm_id}/matters/{matter_id}/generate")
      def generate(
          firm_id: str,
          membership: FirmMembership = Depends(require_permission_dep("documents:write")),
      ):
          ...
    """
    if permission not in PERMISSION_MIN_ROLE:
        raise ValueError(f"unknown permission: {permission}")
    min_role = PERMISSION_MIN_ROLE[permission]

    def _dep(
        firm_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ) -> FirmMembership:
        return require_membership(db, firm_id, user, min_role=min_role)

    return _dep
