from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from werkzeug.security import generate_password_hash

from buildmart.core.config import get_settings
from buildmart.core.database import Base, get_db
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
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def agent(db_session: Session) -> User:
    role = Role(name="Sales Agent")
    permission = Permission(name="read:all_leads", module="Lead Management")
    db_session.add_all([role, permission])
    db_session.flush()
    db_session.add(RolePermission(role_id=role.id, permission_id=permission.id))
    user = User(
        name="Ana Reyes",
        email="ana@buildmart.ph",
        password_hash=generate_password_hash("correct-horse"),
        role_id=role.id,
    )
    db_session.add(user)
    db_session.commit()
    return user


def test_login_sets_session_cookie_and_me_returns_permissions(client: TestClient, agent: User) -> None:
    response = client.post("/api/auth/login", json={"email": "ANA@buildmart.ph", "password": "correct-horse"})

    assert response.status_code == 200
    assert "connect.sid" in response.cookies
    body = response.json()
    assert body["email"] == "ana@buildmart.ph"
    assert body["role"]["name"] == "Sales Agent"
    assert body["permissions"] == ["read:all_leads"]

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["id"] == str(agent.id)

    assert client.get("/api/leads").status_code == 200


def test_wrong_password_is_rejected(client: TestClient, agent: User) -> None:
    response = client.post("/api/auth/login", json={"email": "ana@buildmart.ph", "password": "wrong-horse"})

    assert response.status_code == 401
    assert response.json()["message"] == "invalid email or password"


def test_inactive_user_cannot_log_in(client: TestClient, agent: User, db_session: Session) -> None:
    agent.is_active = False
    db_session.commit()

    response = client.post("/api/auth/login", json={"email": "ana@buildmart.ph", "password": "correct-horse"})

    assert response.status_code == 401


def test_logout_clears_session(client: TestClient, agent: User) -> None:
    client.post("/api/auth/login", json={"email": "ana@buildmart.ph", "password": "correct-horse"})

    response = client.post("/api/auth/logout")

    assert response.status_code == 200
    assert client.get("/api/auth/me").status_code == 401
