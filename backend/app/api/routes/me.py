from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_current_user
from backend.app.db import get_db
from backend.app.models import Firm, FirmMembership, User


router = APIRouter(prefix="/api", tags=["users"])


class MembershipOut(BaseModel):
    firm_id: str
    firm_name: str
    role: str


class MeOut(BaseModel):
    id: str
    email: str
    name: Optional[str]
    memberships: list[MembershipOut]


@router.get("/me", response_model=MeOut)
def get_me(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = (
        db.execute(
            select(FirmMembership, Firm)
            .join(Firm, FirmMembership.firm_id == Firm.id)
            .where(FirmMembership.user_id == user.id)
            .order_by(Firm.name.asc(), Firm.id.asc())
        )
        .all()
    )
    memberships = [
        MembershipOut(firm_id=membership.firm_id, firm_name=firm.name, role=membership.role)
        for membership, firm in rows
    ]
    return MeOut(id=user.id, email=user.email, name=user.name, memberships=memberships)
