from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from backend.app.generation.context_builder import build_generation_context
from backend.app.models import Client, Firm, Matter, PipelineFinding, User


def _create_firm(session, name: str = "Harrison & Clarke") -> Firm:
    firm = Firm(name=name)
    session.add(firm)
    session.flush()
    return firm


def _create_client(session, firm_id: str, **fields) -> Client:
    fields.setdefault("type", "individual")
    client = Client(firm_id=firm_id, **fields)
    session.add(client)
    session.flush()
    return client


def _create_matter(session, firm_id: str, client_id: str, **fields) -> Matter:
    fields.setdefault("reference", "MAT-001")
    fields.setdefault("title", "Smith v Jones RTA")
    fields.setdefault("practice_area", "personal_injury")
    matter = Matter(firm_id=firm_id, client_id=client_id, **fields)
    session.add(matter)
    session.flush()
    return matter


def _add_finding(session, matter: Matter, field_key: str, value: str, *, created_at: datetime, **fields) -> PipelineFinding:
    fields.setdefault("label", field_key.replace("_", " ").title())
    fields.setdefault("category_key", "incident")
    finding = PipelineFinding(
        firm_id=matter.firm_id,
        matter_id=matter.id,
        field_key=field_key,
        value=value,
        created_at=created_at,
        **fields,
    )
    session.add(finding)
    session.flush()
    return finding


def test_context_for_individual_client(sqlite_session):
    firm = _create_firm(sqlite_session)
    fee_earner = User(email="james@firm.com", name="James Clarke")
    sqlite_session.add(fee_earner)
    sqlite_session.flush()
    client = _create_client(
        sqlite_session,
        firm.id,
        first_name="John",
        last_name="Smith",
        email="john@test.com",
        address_line1="123 Main St",
        city="London",
        postcode="SW1A 1AA",
    )
    matter = _create_matter(sqlite_session, firm.id, client.id, fee_earner_id=fee_earner.id, sub_type="rta")

    context = build_generation_context(sqlite_session, firm.id, matter.id)

    assert context.matter["reference"] == "MAT-001"
    assert context.matter["practiceArea"] == "personal_injury"
    assert context.matter["subType"] == "rta"
    assert context.client["name"] == "John Smith"
    assert context.client["address"] == "123 Main St, London, SW1A 1AA"
    assert context.firm == {"name": "Harrison & Clarke"}
    assert context.fee_earner == {"name": "James Clarke", "email": "james@firm.com"}
    assert context.findings == {}
    assert len(context.today) == 10


def test_company_client_name_and_fallbacks(sqlite_session):
    firm = _create_firm(sqlite_session)
    company = _create_client(sqlite_session, firm.id, type="company", company_name="ABC Ltd")
    nameless = _create_client(sqlite_session, firm.id, type="individual")
    company_matter = _create_matter(sqlite_session, firm.id, company.id, reference="MAT-C")
    nameless_matter = _create_matter(sqlite_session, firm.id, nameless.id, reference="MAT-N")

    company_context = build_generation_context(sqlite_session, firm.id, company_matter.id)
    nameless_context = build_generation_context(sqlite_session, firm.id, nameless_matter.id)

    assert company_context.client["name"] == "ABC Ltd"
    assert company_context.client["address"] == ""
    assert company_context.fee_earner is None
    assert nameless_context.client["name"] == "Unknown Client"


def test_latest_finding_wins_and_statuses_counted(sqlite_session):
    now = datetime.now(timezone.utc)
    firm = _create_firm(sqlite_session)
    client = _create_client(sqlite_session, firm.id, first_name="Jane", last_name="Doe")
    matter = _create_matter(sqlite_session, firm.id, client.id)

    _add_finding(sqlite_session, matter, "defendant_name", "Jones Ltd", created_at=now - timedelta(days=2), status="rejected")
    _add_finding(sqlite_session, matter, "defendant_name", "Jones Transport Ltd", created_at=now, status="accepted")
    _add_finding(
        sqlite_session,
        matter,
        "total_demand",
        "£50,000",
        created_at=now - timedelta(hours=1),
        status="pending",
        category_key="damages",
    )
    _add_finding(sqlite_session, matter, "odd", "x", created_at=now - timedelta(hours=2), status="unknown")

    context = build_generation_context(sqlite_session, firm.id, matter.id)

    assert context.findings["defendant_name"] == "Jones Transport Ltd"
    assert context.findings["total_demand"] == "£50,000"
    assert [entry.value for entry in context.findings_by_category["incident"]] == [
        "Jones Transport Ltd",
        "x",
        "Jones Ltd",
    ]
    assert context.status_counts == {
        "pending": 1,
        "accepted": 1,
        "rejected": 1,
        "auto_applied": 0,
        "conflict": 0,
    }


def test_merge_data_shape(sqlite_session):
    firm = _create_firm(sqlite_session)
    client = _create_client(sqlite_session, firm.id, first_name="Robert", last_name="Johnson")
    matter = _create_matter(sqlite_session, firm.id, client.id, title="Employment Dispute", practice_area="employment")

    data = build_generation_context(sqlite_session, firm.id, matter.id).merge_data()

    assert set(data) == {"matter", "client", "firm", "feeEarner", "findings", "today"}
    assert data["client"]["firstName"] == "Robert"
    assert data["matter"]["title"] == "Employment Dispute"


def test_matter_from_other_firm_is_not_found(sqlite_session):
    firm = _create_firm(sqlite_session)
    other = _create_firm(sqlite_session, "Other LLP")
    client = _create_client(sqlite_session, other.id, first_name="Ann")
    matter = _create_matter(sqlite_session, other.id, client.id)

    with pytest.raises(HTTPException) as excinfo:
        build_generation_context(sqlite_session, firm.id, matter.id)
    assert excinfo.value.status_code == 404
    assert excinfo.value.detail == "matter not found"
