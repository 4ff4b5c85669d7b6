from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _client(db_session: Session, role_name: str) -> TestClient:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(
            id=uuid.uuid4(),
            email="metrics@buildmart.ph",
            name="Metrics",
            role_id=uuid.uuid4(),
            role_name=role_name,
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    return TestClient(app)


@pytest.fixture()
def admin_client(db_session: Session) -> Generator[TestClient, None, None]:
    with _client(db_session, "Admin") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def agent_client(db_session: Session) -> Generator[TestClient, None, None]:
    with _client(db_session, "Sales Agent") as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_metrics(admin_client: TestClient) -> None:
    health = admin_client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    missing = admin_client.get(f"/api/leads/{uuid.uuid4()}")
    assert missing.status_code == 404

    metrics = admin_client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert 'path="/health"' in body
    assert 'path="/api/leads/{id}"' in body


def test_metrics_require_permission(agent_client: TestClient) -> None:
    response = agent_client.get("/metrics")

    assert response.status_code == 403


def test_metrics_hidden_when_disabled(admin_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = admin_client.get("/metrics")

    assert response.status_code == 404
