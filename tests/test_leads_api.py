from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from buildmart import events
from buildmart.core.auth import AuthUser, get_current_user
from buildmart.core.config import get_settings
from buildmart.core.database import Base, get_db
from buildmart.crm.models import ActivityLog, ContactHistory
from buildmart.main import app
from buildmart.users.models import Role, User


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_state() -> Generator[None, None, None]:
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def admin(db_session: Session) -> User:
    role = Role(name="Admin")
    db_session.add(role)
    db_session.flush()
    user = User(name="Site Admin", email="admin@buildmart.ph", password_hash="x", role_id=role.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture()
def client(db_session: Session, admin: User) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(
            id=admin.id,
            email=admin.email,
            name=admin.name,
            role_id=admin.role_id,
            role_name="Admin",
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_lead(client: TestClient, **overrides) -> dict:  # type: ignore[no-untyped-def]
    payload = {
        "name": "Juan Dela Cruz",
        "company_name": "Dela Cruz Builders",
        "contact_person": "Juan Dela Cruz",
        "email": "juan@delacruz.ph",
        "phone": "+63 917 000 0000",
        "source": "Facebook",
        "estimated_value": 120000,
    }
    payload.update(overrides)
    response = client.post("/api/leads", json=payload)
    assert response.status_code == 201
    return response.json()


def test_create_lead_links_company_and_logs_activity(client: TestClient, db_session: Session) -> None:
    lead = _create_lead(client)

    assert lead["status"] == "New"
    assert lead["company"]["name"] == "Dela Cruz Builders"
    assert events.published_events[-1]["event_type"] == "lead.created"

    second = _create_lead(client, name="Second contact", email="second@delacruz.ph")
    assert second["company_id"] == lead["company_id"]

    activities = client.get(f"/api/leads/{lead['id']}/activities").json()
    assert [item["action"] for item in activities] == ["Created"]


def test_status_change_records_activity_and_contact(client: TestClient, db_session: Session) -> None:
    lead = _create_lead(client)

    response = client.patch(
        f"/api/leads/{lead['id']}/status",
        json={"status": "Contacted", "notes": "Called about rebar pricing", "method": "Call"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "Contacted"
    assert response.json()["last_contact_date"] is not None
    change = db_session.scalar(select(ActivityLog).where(ActivityLog.action == "Status Change"))
    assert change is not None
    assert (change.old_status, change.new_status) == ("New", "Contacted")
    contact = db_session.scalar(select(ContactHistory))
    assert contact is not None
    assert (contact.method, contact.outcome) == ("Call", "Contacted")


def test_list_leads_filters_and_paginates(client: TestClient) -> None:
    _create_lead(client, name="Alpha Hardware", email="alpha@example.com", company_name=None)
    _create_lead(client, name="Beta Steel", email="beta@example.com", company_name=None, status="Qualified")

    filtered = client.get("/api/leads", params={"status": "Qualified"}).json()
    assert filtered["total"] == 1
    assert filtered["items"][0]["name"] == "Beta Steel"

    searched = client.get("/api/leads", params={"search": "alpha"}).json()
    assert [item["name"] for item in searched["items"]] == ["Alpha Hardware"]

    paged = client.get("/api/leads", params={"page": 2, "page_size": 1}).json()
    assert paged["total"] == 2
    assert len(paged["items"]) == 1


def test_only_won_leads_convert_to_clients(client: TestClient, db_session: Session) -> None:
    lead = _create_lead(client)

    early = client.post(f"/api/leads/{lead['id']}/convert-to-client")
    assert early.status_code == 400
    assert early.json()["code"] == "validation_failed"

    client.patch(f"/api/leads/{lead['id']}/status", json={"status": "Converted", "notes": "Signed PO"})
    converted = client.post(f"/api/leads/{lead['id']}/convert-to-client")

    assert converted.status_code == 201
    body = converted.json()
    assert body["account_number"] == "CL-000001"
    assert body["client_name"] == "Dela Cruz Builders"
    assert body["converted_from_lead_id"] == lead["id"]

    moved = db_session.scalars(select(ActivityLog).where(ActivityLog.client_id == uuid.UUID(body["id"]))).all()
    assert {item.action for item in moved} >= {"Created", "Status Change", "LEAD_CONVERTED_TO_CLIENT"}
    assert db_session.scalar(select(ContactHistory.client_id)) == uuid.UUID(body["id"])

    again = client.post(f"/api/leads/{lead['id']}/convert-to-client")
    assert again.status_code == 400
    assert again.json()["code"] == "conflict"


def test_assign_lead_to_unknown_user_fails(client: TestClient) -> None:
    lead = _create_lead(client)

    response = client.post(f"/api/leads/{lead['id']}/assign", json={"assigned_to_id": str(uuid.uuid4())})

    assert response.status_code == 400


def test_missing_lead_returns_not_found_envelope(client: TestClient) -> None:
    response = client.get(f"/api/leads/{uuid.uuid4()}", headers={"X-Correlation-Id": "lead-404"})

    assert response.status_code == 404
    assert response.json() == {
        "code": "not_found",
        "message": "lead not found",
        "details": None,
        "correlation_id": "lead-404",
    }
    assert response.headers["x-correlation-id"] == "lead-404"


def test_client_crud_and_soft_delete(client: TestClient) -> None:
    created = client.post(
        "/api/clients",
        json={"client_name": "Acme Builders", "primary_email": "buyer@acme.ph", "billing_address_city": "Lipa"},
    )
    assert created.status_code == 201
    client_id = created.json()["id"]
    assert created.json()["account_number"].startswith("CL-")

    duplicate = client.post("/api/clients", json={"client_name": "Acme Builders"})
    assert duplicate.status_code == 400

    patched = client.patch(f"/api/clients/{client_id}", json={"primary_phone": "0917"})
    assert patched.json()["primary_phone"] == "0917"

    deleted = client.delete(f"/api/clients/{client_id}")
    assert deleted.json()["is_active"] is False
    restored = client.post(f"/api/clients/{client_id}/restore")
    assert restored.json()["is_active"] is True
    assert client.post(f"/api/clients/{client_id}/restore").status_code == 400
