from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.models import Client, Firm, Matter, PipelineFinding, User

FINDING_STATUSES = ("pending", "accepted", "rejected", "auto_applied", "conflict")


@dataclass(frozen=True)
class FindingEntry:
    id: str
    field_key: str
    label: str
    value: str
    confidence: float
    impact: str
    status: str
    source_quote: Optional[str]
    category_key: str
    page_start: Optional[int]
    page_end: Optional[int]


@dataclass
class GenerationContext:
    matter: dict[str, Any]
    client: dict[str, Any]
    firm: dict[str, Any]
    fee_earner: Optional[dict[str, Any]]
    findings: dict[str, str]
    findings_by_category: dict[str, list[FindingEntry]] = field(default_factory=dict)
    status_counts: dict[str, int] = field(default_factory=dict)
    today: str = ""

    def merge_data(self) -> dict[str, Any]:
        """Data object handed to the merge-field renderer."""
        return {
            "matter": self.matter,
            "client": self.client,
            "firm": self.firm,
            "feeEarner": self.fee_earner,
            "findings": self.findings,
            "today": self.today,
        }


def format_client_name(client: Client) -> str:
    if client.type == "individual":
        name = " ".join(part for part in (client.first_name, client.last_name) if part)
        return name or "Unknown Client"
    return client.company_name or "Unknown Client"


def format_address(client: Client) -> str:
    parts = (
        client.address_line1,
        client.address_line2,
        client.city,
        client.county,
        client.postcode,
    )
    return ", ".join(part for part in parts if part)


def _today_utc() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def build_generation_context(db: Session, firm_id: str, matter_id: str) -> GenerationContext:
    matter = (
        db.execute(select(Matter).where(Matter.id == matter_id, Matter.firm_id == firm_id))
        .scalars()
        .first()
    )
    if not matter:
        raise HTTPException(404, "matter not found")

    client = db.get(Client, matter.client_id)
    if not client:
        raise HTTPException(404, "client not found")

    firm = db.get(Firm, firm_id)

    fee_earner = None
    if matter.fee_earner_id:
        user = db.get(User, matter.fee_earner_id)
        if user:
            fee_earner = {"name": user.name or user.email, "email": user.email}

    rows = (
        db.execute(
            select(PipelineFinding)
            .where(PipelineFinding.matter_id == matter_id, PipelineFinding.firm_id == firm_id)
            .order_by(PipelineFinding.created_at.desc(), PipelineFinding.id.desc())
        )
        .scalars()
        .all()
    )

    # rows are newest first, so the first value seen per field_key wins
    findings: dict[str, str] = {}
    findings_by_category: dict[str, list[FindingEntry]] = {}
    status_counts = {status: 0 for status in FINDING_STATUSES}

    for row in rows:
        if row.status in status_counts:
            status_counts[row.status] += 1

        entry = FindingEntry(
            id=row.id,
            field_key=row.field_key,
            label=row.label,
            value=row.value,
            confidence=float(row.confidence or 0.0),
            impact=row.impact,
            status=row.status,
            source_quote=row.source_quote,
            category_key=row.category_key,
            page_start=row.page_start,
            page_end=row.page_end,
        )
        if row.field_key not in findings:
            findings[row.field_key] = row.value
        findings_by_category.setdefault(row.category_key, []).append(entry)

    return GenerationContext(
        matter={
            "id": matter.id,
            "reference": matter.reference,
            "title": matter.title,
            "practiceArea": matter.practice_area,
            "status": matter.status,
            "description": matter.description,
            "subType": matter.sub_type,
        },
        client={
            "name": format_client_name(client),
            "title": client.title,
            "firstName": client.first_name,
            "lastName": client.last_name,
            "companyName": client.company_name,
            "companyNumber": client.company_number,
            "type": client.type,
            "email": client.email,
            "phone": client.phone,
            "address": format_address(client),
            "postcode": client.postcode,
        },
        firm={"name": firm.name if firm and firm.name else "Unknown Firm"},
        fee_earner=fee_earner,
        findings=findings,
        findings_by_category=findings_by_category,
        status_counts=status_counts,
        today=_today_utc(),
    )
