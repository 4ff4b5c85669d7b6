from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from werkzeug.security import generate_password_hash

from buildmart import events
from buildmart.core.auth import create_session_token
from buildmart.core.config import get_settings
from buildmart.core.database import Base, get_db
from buildmart.core.rbac import InMemoryPermissionStore, PermissionCache, has_any_permission
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
        permission = Permission(name=permission_name, module="Test")
        session.add(permission)
        session.flush()
        session.add(RolePermission(role_id=role.id, permission_id=permission.id))
    session.commit()
    return role


def _user(session: Session, email: str, role: Role | None) -> User:
    user = User(
        name=email.split("@")[0],
        email=email,
        password_hash=generate_password_hash("secret-pass"),
        role_id=role.id if role else None,
    )
    session.add(user)
    session.commit()
    return user


def _auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_session_token(user.id)}"}


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_has_any_permission() -> None:
    assert has_any_permission(["read:clients"], ("read:clients", "manage:clients"))
    assert not has_any_permission(["read:leads"], ("read:clients",))
    assert has_any_permission([], ())


def test_cache_serves_hits_until_invalidated(db_session: Session) -> None:
    role = _role(db_session, "Sales Agent", ["read:all_leads"])
    cache = PermissionCache(InMemoryPermissionStore(), ttl_seconds=300)

    assert cache.get_role_permissions(db_session, role.id) == ["read:all_leads"]

    extra = Permission(name="create:lead", module="Lead Management")
    db_session.add(extra)
    db_session.flush()
    db_session.add(RolePermission(role_id=role.id, permission_id=extra.id))
    db_session.commit()

    assert cache.get_role_permissions(db_session, role.id) == ["read:all_leads"]
    cache.invalidate(role.id)
    assert cache.get_role_permissions(db_session, role.id) == ["create:lead", "read:all_leads"]


def test_cache_entries_expire_after_ttl(db_session: Session) -> None:
    role = _role(db_session, "Sales Agent", ["read:all_leads"])
    clock = FakeClock()
    store = InMemoryPermissionStore(clock=clock)
    cache = PermissionCache(store, ttl_seconds=60)

    cache.get_role_permissions(db_session, role.id)
    assert store.get(str(role.id)) == ["read:all_leads"]

    clock.now += 61
    assert store.get(str(role.id)) is None


def test_missing_session_is_unauthorized(client: TestClient) -> None:
    response = client.get("/api/leads")

    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "unauthorized"
    assert body["correlation_id"] == response.headers["x-correlation-id"]


def test_invalid_token_is_unauthorized(client: TestClient) -> None:
    response = client.get("/api/leads", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401


def test_missing_permission_is_forbidden_with_details(client: TestClient, db_session: Session) -> None:
    role = _role(db_session, "Warehouse", ["read:products"])
    user = _user(db_session, "warehouse@buildmart.ph", role)

    response = client.get("/api/leads", headers=_auth(user))

    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "forbidden"
    assert body["details"]["required"] == ["read:all_leads"]
    assert body["details"]["actual"] == ["read:products"]
    assert body["details"]["role"]["name"] == "Warehouse"


def test_user_without_role_is_forbidden(client: TestClient, db_session: Session) -> None:
    user = _user(db_session, "norole@buildmart.ph", None)

    response = client.get("/api/leads", headers=_auth(user))

    assert response.status_code == 403
    assert response.json()["details"]["role"] is None


def test_any_listed_permission_is_enough(client: TestClient, db_session: Session) -> None:
    role = _role(db_session, "Viewer", ["read:clients"])
    user = _user(db_session, "viewer@buildmart.ph", role)

    response = client.get("/api/clients", headers=_auth(user))

    assert response.status_code == 200
    assert response.json() == []


def test_admin_role_bypasses_permission_checks(client: TestClient, db_session: Session) -> None:
    role = _role(db_session, "Admin", [])
    user = _user(db_session, "admin@buildmart.ph", role)

    response = client.get("/api/leads", headers=_auth(user))

    assert response.status_code == 200
    assert response.json()["total"] == 0


def test_updating_role_permissions_takes_effect_immediately(client: TestClient, db_session: Session) -> None:
    admin = _user(db_session, "admin@buildmart.ph", _role(db_session, "Admin", []))
    agent_role = _role(db_session, "Sales Agent", [])
    agent = _user(db_session, "agent@buildmart.ph", agent_role)
    read_leads = Permission(name="read:all_leads", module="Lead Management")
    db_session.add(read_leads)
    db_session.commit()

    assert client.get("/api/leads", headers=_auth(agent)).status_code == 403

    updated = client.put(
        f"/api/users/roles/{agent_role.id}/permissions",
        json={"permission_ids": [str(read_leads.id)]},
        headers=_auth(admin),
    )
    assert updated.status_code == 200
    assert updated.json()["permissions"] == ["read:all_leads"]

    assert client.get("/api/leads", headers=_auth(agent)).status_code == 200


def test_unknown_permission_ids_are_rejected(client: TestClient, db_session: Session) -> None:
    admin = _user(db_session, "admin@buildmart.ph", _role(db_session, "Admin", []))
    role = _role(db_session, "Sales Agent", [])

    response = client.put(
        f"/api/users/roles/{role.id}/permissions",
        json={"permission_ids": [str(uuid.uuid4())]},
        headers=_auth(admin),
    )

    assert response.status_code == 400
    assert response.json()["code"] == "validation_failed"
