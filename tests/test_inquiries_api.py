from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from werkzeug.security import generate_password_hash

from buildmart import events
from buildmart.core.auth import create_session_token
from buildmart.core.config import get_settings
from buildmart.core.database import Base, get_db
from buildmart.crm.models import Lead
from buildmart.main import app
from buildmart.users.models import Permission, Role, RolePermission, User


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
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _role(session: Session, name: str, permissions: list[str]) -> Role:
    role = Role(name=name)
    session.add(role)
    session.flush()
    for permission_name in permissions:
        permission = Permission(name=permission_name, module="Inquiry Management")
        session.add(permission)
        session.flush()
        session.add(RolePermission(role_id=role.id, permission_id=permission.id))
    session.commit()
    return role


def _user(session: Session, email: str, role: Role) -> User:
    user = User(
        name=email.split("@")[0],
        email=email,
        password_hash=generate_password_hash("secret-pass"),
        role_id=role.id,
    )
    session.add(user)
    session.commit()
    return user


def _auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_session_token(user.id)}"}


@pytest.fixture()
def admin_headers(db_session: Session) -> dict[str, str]:
    return _auth(_user(db_session, "admin@buildmart.ph", _role(db_session, "Admin", [])))


@pytest.fixture()
def agent_headers(db_session: Session) -> dict[str, str]:
    role = _role(db_session, "Sales Agent", ["create:inquiry", "read:all_inquiries"])
    return _auth(_user(db_session, "agent@buildmart.ph", role))


def _create_inquiry(client: TestClient, headers: dict[str, str], **overrides) -> dict:  # type: ignore[no-untyped-def]
    payload = {
        "customer_name": "Ana Reyes",
        "phone_number": "09171234567",
        "email": "ana@reyesbuilders.ph",
        "product_type": "AGGREGATE",
        "quantity": 12,
        "delivery_method": "Delivery",
        "delivery_location": "Lipa City",
        "reference_source": "Facebook",
    }
    payload.update(overrides)
    response = client.post("/api/inquiries", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()


def test_quote_then_convert_links_inquiry_and_keeps_its_status(
    client: TestClient, db_session: Session, admin_headers: dict[str, str]
) -> None:
    inquiry = _create_inquiry(client, admin_headers)
    assert inquiry["status"] == "New"
    assert inquiry["related_lead_id"] is None

    quoted = client.post(f"/api/inquiries/{inquiry['id']}/quote", json={"total_price": 18500.5}, headers=admin_headers)
    assert quoted.status_code == 200
    assert quoted.json()["status"] == "Quoted"
    assert quoted.json()["quoted_price"] == "18500.50"

    converted = client.post(f"/api/inquiries/{inquiry['id']}/convert-to-lead", headers=admin_headers)
    assert converted.status_code == 201
    lead = converted.json()
    assert lead["status"] == "Proposal"
    assert lead["source"] == "Inquiry"

    refreshed = client.get(f"/api/inquiries/{inquiry['id']}", headers=admin_headers).json()
    assert refreshed["related_lead_id"] == lead["id"]
    assert refreshed["status"] == "Quoted"
    assert [item["event_type"] for item in events.published_events][-1] == "inquiry.converted_to_lead"


def test_second_conversion_returns_conflict_envelope(
    client: TestClient, db_session: Session, admin_headers: dict[str, str]
) -> None:
    inquiry = _create_inquiry(client, admin_headers)
    first = client.post(f"/api/inquiries/{inquiry['id']}/convert-to-lead", headers=admin_headers)
    assert first.status_code == 201

    response = client.post(
        f"/api/inquiries/{inquiry['id']}/convert-to-lead",
        headers={**admin_headers, "X-Correlation-Id": "convert-twice"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "conflict"
    assert body["message"] == "inquiry is already linked to a lead"
    assert body["details"] == {"lead_id": first.json()["id"]}
    assert body["correlation_id"] == "convert-twice"
    assert db_session.scalar(select(func.count(Lead.id))) == 1


@pytest.mark.parametrize(
    ("path", "payload", "required"),
    [
        ("quote", {"total_price": 1000}, ["quote:inquiry"]),
        ("approve", None, ["update:all_inquiries"]),
        ("fulfill", None, ["update:all_inquiries"]),
        ("cancel", None, ["update:all_inquiries"]),
        ("convert-to-lead", None, ["update:all_inquiries", "create:lead"]),
    ],
)
def test_transition_routes_are_permission_guarded(
    client: TestClient,
    admin_headers: dict[str, str],
    agent_headers: dict[str, str],
    path: str,
    payload: dict | None,
    required: list[str],
) -> None:
    inquiry = _create_inquiry(client, agent_headers)

    response = client.post(f"/api/inquiries/{inquiry['id']}/{path}", json=payload, headers=agent_headers)

    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "forbidden"
    assert body["details"]["required"] == required
    assert sorted(body["details"]["actual"]) == ["create:inquiry", "read:all_inquiries"]
    assert body["details"]["role"]["name"] == "Sales Agent"
    unchanged = client.get(f"/api/inquiries/{inquiry['id']}", headers=admin_headers).json()
    assert unchanged["status"] == "New"


def test_agent_can_create_and_read_inquiries(client: TestClient, agent_headers: dict[str, str]) -> None:
    inquiry = _create_inquiry(client, agent_headers)

    listing = client.get("/api/inquiries", params={"status": "New"}, headers=agent_headers)

    assert listing.status_code == 200
    assert [item["id"] for item in listing.json()["data"]] == [inquiry["id"]]


def test_inquiry_routes_require_a_session(client: TestClient) -> None:
    response = client.post(f"/api/inquiries/{uuid.uuid4()}/approve")

    assert response.status_code == 401
    assert response.json()["code"] == "unauthorized"


def test_quote_with_non_positive_price_is_a_validation_error(
    client: TestClient, admin_headers: dict[str, str]
) -> None:
    inquiry = _create_inquiry(client, admin_headers)

    response = client.post(f"/api/inquiries/{inquiry['id']}/quote", json={"total_price": 0}, headers=admin_headers)

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "validation_failed"
    assert {tuple(item["loc"]) for item in body["details"]} >= {("body", "total_price")}


def test_unknown_inquiry_is_not_found(client: TestClient, admin_headers: dict[str, str]) -> None:
    response = client.post(f"/api/inquiries/{uuid.uuid4()}/fulfill", headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"
