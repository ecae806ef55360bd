from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_access.access.models import AccessGrant
from crm_access.core.auth import AuthUser, get_current_user
from crm_access.core.config import get_settings
from crm_access.core.database import Base, get_db
from crm_access.directory.models import UserProfile, UserRole
from crm_access.main import app


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
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def identity() -> dict[str, AuthUser]:
    return {"current": AuthUser(sub="ext-alice", email="alice@example.com", name="Alice")}


@pytest.fixture()
def client(db_session: Session, identity: dict[str, AuthUser]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return identity["current"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _login(client: TestClient, identity: dict[str, AuthUser], name: str) -> dict:
    identity["current"] = AuthUser(sub=f"ext-{name}", email=f"{name}@example.com", name=name.title())
    response = client.get("/me")
    assert response.status_code == 200
    return response.json()


def _promote(db_session: Session, user_id: str) -> None:
    profile = db_session.get(UserProfile, uuid.UUID(user_id))
    assert profile is not None
    profile.role = UserRole.ADMIN
    db_session.commit()


def _accessible_emails(client: TestClient) -> set[str]:
    response = client.get("/api/access/accessible-users")
    assert response.status_code == 200
    return {row["email"] for row in response.json()}


def test_me_provisions_user_profile(client: TestClient, identity: dict[str, AuthUser]) -> None:
    profile = _login(client, identity, "alice")

    assert profile["email"] == "alice@example.com"
    assert profile["role"] == "user"
    assert profile["external_id"] == "ext-alice"

    again = client.get("/me")
    assert again.json()["id"] == profile["id"]


def test_missing_bearer_token_returns_401_envelope(client: TestClient) -> None:
    app.dependency_overrides.pop(get_current_user)

    response = client.get("/api/access/users", headers={"X-Correlation-Id": "corr-401"})

    assert response.status_code == 401
    assert response.json() == {
        "code": "unauthenticated",
        "message": "missing bearer token",
        "details": None,
        "correlation_id": "corr-401",
    }


def test_jwt_role_claim_is_ignored(client: TestClient) -> None:
    app.dependency_overrides.pop(get_current_user)
    settings = get_settings()
    token = jwt.encode(
        {"sub": "ext-dave", "email": "Dave@Example.com", "role": "admin"},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )

    response = client.get("/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["email"] == "dave@example.com"
    assert response.json()["role"] == "user"

    invalid = client.get("/me", headers={"Authorization": "Bearer not-a-token"})
    assert invalid.status_code == 401
    assert invalid.json()["code"] == "unauthenticated"


def test_request_accept_and_revoke_over_http(
    client: TestClient,
    db_session: Session,
    identity: dict[str, AuthUser],
) -> None:
    bob = _login(client, identity, "bob")
    alice = _login(client, identity, "alice")
    assert _accessible_emails(client) == {"alice@example.com"}

    users = client.get("/api/access/users")
    assert [row["email"] for row in users.json()] == ["alice@example.com", "bob@example.com"]

    sent = client.post("/api/access/requests", json={"receiver_id": "bob@example.com"})
    assert sent.status_code == 201
    request_id = sent.json()["id"]
    assert sent.json()["receiver_id"] == bob["id"]
    assert sent.json()["status"] == "pending"

    _login(client, identity, "bob")
    pending = client.get("/api/access/requests/pending")
    assert pending.status_code == 200
    assert [row["requester"]["email"] for row in pending.json()] == ["alice@example.com"]

    accepted = client.post(f"/api/access/requests/{request_id}/status", json={"new_status": "accepted"})
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"
    assert client.get("/api/access/requests/pending").json() == []

    _login(client, identity, "alice")
    assert _accessible_emails(client) == {"alice@example.com", "bob@example.com"}

    managed = client.get("/api/access/managed-users")
    assert [row["user_id"] for row in managed.json()] == [bob["id"]]

    history = client.get("/api/access/requests/history")
    assert [(row["receiver_email"], row["status"]) for row in history.json()] == [("bob@example.com", "accepted")]

    revoked = client.delete(f"/api/access/requests/{request_id}")
    assert revoked.status_code == 200
    assert revoked.json() == {"success": True}
    assert _accessible_emails(client) == {"alice@example.com"}
    assert db_session.scalar(select(AccessGrant.id)) is None

    history = client.get("/api/access/requests/history")
    assert [(row["requester_id"], row["status"]) for row in history.json()] == [(alice["id"], "revoked")]


def test_workflow_error_envelopes(client: TestClient, identity: dict[str, AuthUser]) -> None:
    _login(client, identity, "bob")
    _login(client, identity, "carol")
    _login(client, identity, "alice")

    missing = client.post(
        "/api/access/requests",
        json={"receiver_id": "nobody@example.com"},
        headers={"X-Correlation-Id": "corr-404"},
    )
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"
    assert missing.json()["correlation_id"] == "corr-404"

    sent = client.post("/api/access/requests", json={"receiver_id": "bob@example.com"})
    assert sent.status_code == 201
    request_id = sent.json()["id"]

    duplicate = client.post("/api/access/requests", json={"receiver_id": "bob@example.com"})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "conflict"
    assert duplicate.json()["details"]["request_id"] == request_id

    not_receiver = client.post(f"/api/access/requests/{request_id}/status", json={"new_status": "accepted"})
    assert not_receiver.status_code == 403
    assert not_receiver.json()["code"] == "forbidden"

    bad_status = client.post(f"/api/access/requests/{request_id}/status", json={"new_status": "maybe"})
    assert bad_status.status_code == 400
    assert bad_status.json()["code"] == "validation_error"

    empty_receiver = client.post("/api/access/requests", json={"receiver_id": ""})
    assert empty_receiver.status_code == 400

    pending_revoke = client.delete(f"/api/access/requests/{request_id}")
    assert pending_revoke.status_code == 400

    _login(client, identity, "carol")
    stranger_revoke = client.delete(f"/api/access/requests/{request_id}")
    assert stranger_revoke.status_code == 403

    unknown = client.post(
        "/api/access/requests/00000000-0000-4000-8000-000000000000/status",
        json={"new_status": "rejected"},
    )
    assert unknown.status_code == 404


def test_unique_violation_in_a_route_returns_409_envelope(
    client: TestClient,
    identity: dict[str, AuthUser],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _login(client, identity, "bob")
    _login(client, identity, "alice")

    def colliding_send(*args: object, **kwargs: object) -> None:
        raise IntegrityError(
            "INSERT INTO access_request",
            {},
            Exception("UNIQUE constraint failed: access_request.requester_id, access_request.receiver_id"),
        )

    monkeypatch.setattr("crm_access.access.service.access_request_service.send_request", colliding_send)

    response = client.post(
        "/api/access/requests",
        json={"receiver_id": "bob@example.com"},
        headers={"X-Correlation-Id": "corr-409"},
    )

    assert response.status_code == 409
    assert response.json() == {
        "code": "conflict",
        "message": "request conflicts with existing data",
        "details": None,
        "correlation_id": "corr-409",
    }


def test_permissions_endpoints(client: TestClient, db_session: Session, identity: dict[str, AuthUser]) -> None:
    bob = _login(client, identity, "bob")
    admin = _login(client, identity, "admin")
    _promote(db_session, admin["id"])

    sent = client.post("/api/access/requests", json={"receiver_id": bob["id"]})
    assert sent.status_code == 201

    _login(client, identity, "bob")
    forbidden = client.put(
        "/api/access/permissions",
        json={"target_user_id": bob["id"], "can_view_other_users_data": True},
    )
    assert forbidden.status_code == 403
    client.post(f"/api/access/requests/{sent.json()['id']}/status", json={"new_status": "accepted"})

    _login(client, identity, "admin")
    listed = client.get("/api/access/permissions")
    assert listed.status_code == 200
    assert [(row["email"], row["can_view_other_users_data"]) for row in listed.json()] == [("bob@example.com", False)]

    granted = client.put(
        "/api/access/permissions",
        json={"target_user_id": bob["id"], "can_view_other_users_data": True},
    )
    assert granted.status_code == 200
    assert granted.json() == {
        "success": True,
        "message": "User permission granted successfully. Role updated to admin.",
        "new_role": "admin",
    }

    listed = client.get("/api/access/permissions")
    assert listed.json()[0]["can_view_other_users_data"] is True
    assert listed.json()[0]["role"] == "admin"

    _login(client, identity, "bob")
    assert _accessible_emails(client) == {"admin@example.com", "bob@example.com"}

    _login(client, identity, "admin")
    revoked = client.put(
        "/api/access/permissions",
        json={"target_user_id": bob["id"], "can_view_other_users_data": False},
    )
    assert revoked.json()["new_role"] == "user"

    not_bool = client.put(
        "/api/access/permissions",
        json={"target_user_id": bob["id"], "can_view_other_users_data": "yes"},
    )
    assert not_bool.status_code == 400


def test_assignee_endpoints(client: TestClient, db_session: Session, identity: dict[str, AuthUser]) -> None:
    assignee = _login(client, identity, "sam")
    admin = _login(client, identity, "admin")
    _promote(db_session, admin["id"])

    created = client.post("/api/access/assignees", json={"assignee_user_id": "sam@example.com"})
    assert created.status_code == 201
    assert created.json()["assignee_id"] == assignee["id"]
    assert created.json()["admin_owner_id"] == admin["id"]

    repeated = client.post("/api/access/assignees", json={"assignee_user_id": assignee["id"]})
    assert repeated.status_code == 201
    assert repeated.json()["id"] == created.json()["id"]

    _login(client, identity, "sam")
    assert _accessible_emails(client) == {"sam@example.com", "admin@example.com"}
    assert [row["id"] for row in client.get("/api/access/assignees").json()] == [created.json()["id"]]

    forbidden = client.post("/api/access/assignees", json={"assignee_user_id": "admin@example.com"})
    assert forbidden.status_code == 403

    _login(client, identity, "admin")
    removed = client.delete(f"/api/access/assignees/{assignee['id']}")
    assert removed.status_code == 200
    missing = client.delete(f"/api/access/assignees/{assignee['id']}")
    assert missing.status_code == 404

    _login(client, identity, "sam")
    assert _accessible_emails(client) == {"sam@example.com"}


def test_admin_can_change_roles(client: TestClient, db_session: Session, identity: dict[str, AuthUser]) -> None:
    bob = _login(client, identity, "bob")
    denied = client.patch(f"/admin/users/{bob['id']}/role", json={"role": "admin"})
    assert denied.status_code == 403

    admin = _login(client, identity, "admin")
    _promote(db_session, admin["id"])

    promoted = client.patch(f"/admin/users/{bob['id']}/role", json={"role": "admin"})
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "admin"

    invalid = client.patch(f"/admin/users/{bob['id']}/role", json={"role": "owner"})
    assert invalid.status_code == 400


def test_health_is_public(client: TestClient) -> None:
    app.dependency_overrides.pop(get_current_user)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
