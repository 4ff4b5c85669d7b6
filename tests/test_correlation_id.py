from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from buildmart import events
from buildmart.core.auth import AuthUser, get_current_user
from buildmart.core.config import get_settings
from buildmart.core.database import Base, get_db
from buildmart.main import app


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

    def override_get_current_user() -> AuthUser:
        return AuthUser(
            id=uuid.uuid4(),
            email="admin@buildmart.ph",
            name="Admin",
            role_id=uuid.uuid4(),
            role_name="Admin",
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/api/clients/{uuid.uuid4()}")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    assert response.json()["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get(f"/api/clients/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.headers.get("x-request-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_validation_errors_use_the_envelope(client: TestClient) -> None:
    response = client.post("/api/leads", json={"name": ""}, headers={"X-Correlation-Id": "bad-lead"})

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "validation_failed"
    assert body["correlation_id"] == "bad-lead"
    assert {tuple(item["loc"]) for item in body["details"]} >= {("body", "email")}


def test_event_envelope_includes_correlation_id(client: TestClient) -> None:
    response = client.post(
        "/api/leads",
        json={"name": "Corr Lead", "email": "corr@example.com"},
        headers={"X-Correlation-Id": "corr-event-1"},
    )
    assert response.status_code == 201

    created = [item for item in events.published_events if item["event_type"] == "lead.created"]
    assert created
    assert created[-1]["correlation_id"] == "corr-event-1"
    assert created[-1]["actor_user_id"] is not None


@pytest.mark.parametrize("supplied", ["x" * 129, "has space", "semi;colon"])
def test_unsafe_correlation_id_is_replaced(client: TestClient, supplied: str) -> None:
    response = client.get(f"/api/clients/{uuid.uuid4()}", headers={"X-Correlation-Id": supplied})

    returned = response.headers.get("x-correlation-id")
    assert returned
    assert returned != supplied
    assert uuid.UUID(returned)
    assert response.json()["correlation_id"] == returned
