import pytest
from fastapi import HTTPException

pytest.importorskip("httpx")

from backend.app.models import Firm, FirmMembership, Template, User
from backend.app.services import template_service


def _create_firm(session, name: str = "Template Firm") -> Firm:
    firm = Firm(name=name)
    session.add(firm)
    session.flush()
    return firm


def _create_user(session, email: str) -> User:
    user = User(email=email, name=email.split("@")[0])
    session.add(user)
    session.flush()
    return user


def _add_membership(session, firm_id: str, user_id: str, role: str = "fee_earner") -> FirmMembership:
    membership = FirmMembership(firm_id=firm_id, user_id=user_id, role=role)
    session.add(membership)
    session.flush()
    return membership


def _create_template(session, firm_id, name: str, **fields) -> Template:
    fields.setdefault("type", "document")
    fields.setdefault("content", "Dear {{clientName}}")
    template = Template(firm_id=firm_id, name=name, **fields)
    session.add(template)
    session.flush()
    return template


def _member(session, role: str = "fee_earner", email: str = "solicitor@example.com"):
    firm = _create_firm(session)
    user = _create_user(session, email)
    _add_membership(session, firm.id, user.id, role=role)
    session.commit()
    return firm, {"X-User-Email": user.email}


def test_create_template_records_merge_fields(api_client, sqlite_session):
    firm, headers = _member(sqlite_session)

    resp = api_client.post(
        f"/api/firms/{firm.id}/templates",
        json={
            "name": "Client Letter",
            "type": "document",
            "category": "client_comms",
            "content": "Dear {{client.firstName}},\n\nRe: {{matter.reference}}\n\n{{today}}",
        },
        headers=headers,
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["firm_id"] == firm.id
    assert body["is_active"] is True
    assert body["is_system"] is False
    assert body["version"] == 1
    assert body["merge_fields"] == {
        "client.firstName": "string",
        "matter.reference": "string",
        "today": "date",
    }


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "document", "content": "x"},
        {"name": "", "type": "document", "content": "x"},
        {"name": "   ", "type": "document", "content": "x"},
        {"name": "n" * 201, "type": "document", "content": "x"},
        {"name": "Letter", "type": "fax", "content": "x"},
        {"name": "Letter", "type": "email", "content": ""},
        {"name": "Letter", "content": "x"},
    ],
)
def test_create_template_validation(api_client, sqlite_session, payload):
    firm, headers = _member(sqlite_session)

    resp = api_client.post(f"/api/firms/{firm.id}/templates", json=payload, headers=headers)

    assert resp.status_code == 422


def test_viewer_cannot_create_template(api_client, sqlite_session):
    firm, headers = _member(sqlite_session, role="viewer")

    resp = api_client.post(
        f"/api/firms/{firm.id}/templates",
        json={"name": "Letter", "type": "document", "content": "x"},
        headers=headers,
    )

    assert resp.status_code == 403


def test_non_member_is_rejected(api_client, sqlite_session):
    firm = _create_firm(sqlite_session)
    outsider = _create_user(sqlite_session, "outsider@example.com")
    sqlite_session.commit()

    resp = api_client.get(f"/api/firms/{firm.id}/templates", headers={"X-User-Email": outsider.email})
    assert resp.status_code == 403

    resp = api_client.get(f"/api/firms/{firm.id}/templates")
    assert resp.status_code == 401


def test_list_includes_system_templates_and_filters(api_client, sqlite_session):
    firm, headers = _member(sqlite_session)
    other = _create_firm(sqlite_session, "Other LLP")
    _create_template(sqlite_session, firm.id, "Contract Template")
    _create_template(sqlite_session, firm.id, "Welcome Email", type="email")
    _create_template(sqlite_session, firm.id, "Old Letter", is_active=False)
    _create_template(sqlite_session, None, "System Letter")
    _create_template(sqlite_session, other.id, "Other Firm Letter")
    sqlite_session.commit()

    resp = api_client.get(f"/api/firms/{firm.id}/templates", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert [t["name"] for t in body["templates"]] == [
        "Contract Template",
        "Old Letter",
        "System Letter",
        "Welcome Email",
    ]
    assert body["pagination"] == {
        "page": 1,
        "limit": 20,
        "total": 4,
        "total_pages": 1,
        "has_next": False,
        "has_prev": False,
    }

    resp = api_client.get(
        f"/api/firms/{firm.id}/templates",
        params={"include_system": "false", "active_only": "true", "type": "document"},
        headers=headers,
    )
    assert [t["name"] for t in resp.json()["templates"]] == ["Contract Template"]


def test_list_pagination(api_client, sqlite_session):
    firm, headers = _member(sqlite_session)
    for i in range(5):
        _create_template(sqlite_session, firm.id, f"Letter {i}")
    sqlite_session.commit()

    resp = api_client.get(
        f"/api/firms/{firm.id}/templates",
        params={"page": 2, "limit": 2, "include_system": "false"},
        headers=headers,
    )

    body = resp.json()
    assert [t["name"] for t in body["templates"]] == ["Letter 2", "Letter 3"]
    assert body["pagination"]["total_pages"] == 3
    assert body["pagination"]["has_next"] is True
    assert body["pagination"]["has_prev"] is True


def test_empty_list_has_one_page(api_client, sqlite_session):
    firm, headers = _member(sqlite_session)

    body = api_client.get(f"/api/firms/{firm.id}/templates", headers=headers).json()

    assert body["templates"] == []
    assert body["pagination"]["total"] == 0
    assert body["pagination"]["total_pages"] == 1


def test_update_content_bumps_version(api_client, sqlite_session):
    firm, headers = _member(sqlite_session)
    template = _create_template(sqlite_session, firm.id, "Letter")
    sqlite_session.commit()

    resp = api_client.patch(
        f"/api/firms/{firm.id}/templates/{template.id}",
        json={"content": "Dear {{client.name}}", "is_active": False},
        headers=headers,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["version"] == 2
    assert body["is_active"] is False
    assert body["merge_fields"] == {"client.name": "string"}

    resp = api_client.patch(
        f"/api/firms/{firm.id}/templates/{template.id}",
        json={"name": "Renamed Letter"},
        headers=headers,
    )
    assert resp.json()["version"] == 2
    assert resp.json()["name"] == "Renamed Letter"


def test_system_templates_are_read_only(api_client, sqlite_session):
    firm, headers = _member(sqlite_session)
    system = _create_template(sqlite_session, None, "System Letter")
    sqlite_session.commit()

    assert api_client.get(f"/api/firms/{firm.id}/templates/{system.id}", headers=headers).status_code == 200
    resp = api_client.delete(f"/api/firms/{firm.id}/templates/{system.id}", headers=headers)
    assert resp.status_code == 403


def test_delete_and_cross_firm_access(api_client, sqlite_session):
    firm, headers = _member(sqlite_session)
    other = _create_firm(sqlite_session, "Other LLP")
    own = _create_template(sqlite_session, firm.id, "Own Letter")
    foreign = _create_template(sqlite_session, other.id, "Foreign Letter")
    sqlite_session.commit()

    assert api_client.get(f"/api/firms/{firm.id}/templates/{foreign.id}", headers=headers).status_code == 404

    resp = api_client.delete(f"/api/firms/{firm.id}/templates/{own.id}", headers=headers)
    assert resp.status_code == 204
    assert api_client.get(f"/api/firms/{firm.id}/templates/{own.id}", headers=headers).status_code == 404


def test_preview_with_sample_data(api_client, sqlite_session):
    firm, headers = _member(sqlite_session, role="viewer")
    template = _create_template(
        sqlite_session,
        firm.id,
        "Preview Template",
        type="email",
        content="Hello {{clientName}},\n\nThis is about {{subject}}.\n\nRe: {{matterRef}}",
    )
    sqlite_session.commit()

    resp = api_client.post(
        f"/api/firms/{firm.id}/templates/{template.id}/preview",
        json={"data": {"clientName": "[Client Name]", "subject": "[Matter Subject]"}},
        headers=headers,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["content"] == "Hello [Client Name],\n\nThis is about [Matter Subject].\n\nRe: {{matterRef}}"
    assert body["missing"] == ["matterRef"]
    assert body["template_id"] == template.id


def test_blank_name_is_rejected_on_update(api_client, sqlite_session):
    firm, headers = _member(sqlite_session)
    template = _create_template(sqlite_session, firm.id, "Letter")
    sqlite_session.commit()

    resp = api_client.patch(
        f"/api/firms/{firm.id}/templates/{template.id}",
        json={"name": "   "},
        headers=headers,
    )

    assert resp.status_code == 422
    sqlite_session.refresh(template)
    assert template.name == "Letter"


def test_names_are_stored_trimmed(api_client, sqlite_session):
    firm, headers = _member(sqlite_session)

    resp = api_client.post(
        f"/api/firms/{firm.id}/templates",
        json={"name": "  Client Letter  ", "type": "document", "content": "x"},
        headers=headers,
    )

    assert resp.status_code == 201
    assert resp.json()["name"] == "Client Letter"


def test_service_rejects_blank_name(sqlite_session):
    firm = _create_firm(sqlite_session)

    with pytest.raises(HTTPException) as excinfo:
        template_service.create_template(
            sqlite_session, firm.id, name="   ", template_type="document", content="x"
        )
    assert excinfo.value.status_code == 400


def test_parent_must_be_visible_to_firm(api_client, sqlite_session):
    firm, headers = _member(sqlite_session)
    other = _create_firm(sqlite_session, "Other LLP")
    foreign = _create_template(sqlite_session, other.id, "Foreign Letter")
    system = _create_template(sqlite_session, None, "System Letter")
    sqlite_session.commit()
    url = f"/api/firms/{firm.id}/templates"

    resp = api_client.post(
        url,
        json={"name": "Fork", "type": "document", "content": "x", "parent_id": foreign.id},
        headers=headers,
    )
    assert resp.status_code == 404
    assert sqlite_session.query(Template).filter(Template.name == "Fork").count() == 0

    resp = api_client.post(
        url,
        json={"name": "Fork", "type": "document", "content": "x", "parent_id": system.id},
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.json()["parent_id"] == system.id
