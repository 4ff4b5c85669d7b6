from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from buildmart.core.context import correlation_id_var
from buildmart.core.auth import AuthUser, get_current_user
from buildmart.core.config import get_settings
from buildmart.core.database import Base, get_db
from buildmart.logging import JsonLogFormatter
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
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
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


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get(f"/api/clients/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [
        record for record in caplog.records if record.name == "buildmart.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/clients/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_domain_logs_carry_entity_fields(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        "/api/leads",
        json={"name": "Logged Lead", "email": "logged@example.com"},
        headers={"X-Correlation-Id": "lead-log-1"},
    )
    assert response.status_code == 201

    created = [record for record in caplog.records if record.name == "buildmart.crm" and record.getMessage() == "lead.created"]
    assert created
    assert getattr(created[-1], "lead_id", None) == response.json()["id"]
    assert getattr(created[-1], "correlation_id", None) == "lead-log-1"


def test_json_formatter_keeps_known_fields_only() -> None:
    token = correlation_id_var.set("fmt-1")
    try:
        record = logging.getLogger("buildmart.test").makeRecord(
            "buildmart.test",
            logging.INFO,
            __file__,
            1,
            "inquiry.quoted",
            (),
            None,
            extra={"inquiry_id": "inq-1", "password": "hunter2"},
        )
    finally:
        correlation_id_var.reset(token)

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["message"] == "inquiry.quoted"
    assert payload["inquiry_id"] == "inq-1"
    assert payload["correlation_id"] == "fmt-1"
    assert "password" not in payload
