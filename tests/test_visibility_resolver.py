from __future__ import annotations

import logging
import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_access.access.grants import GrantEdge, ensure_grant
from crm_access.access.models import AssigneeLink, UserPermission
from crm_access.core.database import Base
from crm_access.directory.models import UserProfile, UserRole
from crm_access.platform.security.resolver import (
    accessible_owner_ids,
    can_access_owner,
    resolve_visibility_scope,
    viewer_role,
)


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


def _profile(session: Session, name: str, role: UserRole = UserRole.USER) -> UserProfile:
    profile = UserProfile(external_id=f"ext-{name}", email=f"{name}@example.com", name=name.title(), role=role)
    session.add(profile)
    session.commit()
    return profile


def _grant(session: Session, owner: UserProfile, grantee: UserProfile) -> None:
    ensure_grant(session, GrantEdge(owner_user_id=owner.id, grantee_user_id=grantee.id))
    session.commit()


def test_user_without_edges_sees_only_self(db_session: Session) -> None:
    alice = _profile(db_session, "alice")
    _profile(db_session, "bob")

    assert accessible_owner_ids(db_session, alice.id) == {alice.id}


def test_admin_sees_every_profile(db_session: Session) -> None:
    admin = _profile(db_session, "admin", UserRole.ADMIN)
    alice = _profile(db_session, "alice")
    bob = _profile(db_session, "bob")

    assert accessible_owner_ids(db_session, admin.id) == {admin.id, alice.id, bob.id}
    scope = resolve_visibility_scope(db_session, admin.id)
    assert scope.is_admin


def test_grants_and_assignee_links_extend_the_owner_set(db_session: Session) -> None:
    admin = _profile(db_session, "admin", UserRole.ADMIN)
    alice = _profile(db_session, "alice")
    bob = _profile(db_session, "bob")
    carol = _profile(db_session, "carol")

    _grant(db_session, bob, alice)
    db_session.add(AssigneeLink(assignee_id=alice.id, admin_owner_id=admin.id))
    db_session.commit()

    assert accessible_owner_ids(db_session, alice.id) == {alice.id, bob.id, admin.id}
    # Grants are directional.
    assert accessible_owner_ids(db_session, bob.id) == {bob.id}
    assert carol.id not in accessible_owner_ids(db_session, alice.id)


def test_grants_are_not_transitive(db_session: Session) -> None:
    alice = _profile(db_session, "alice")
    bob = _profile(db_session, "bob")
    carol = _profile(db_session, "carol")

    _grant(db_session, carol, bob)
    _grant(db_session, bob, alice)

    assert accessible_owner_ids(db_session, alice.id) == {alice.id, bob.id}
    assert accessible_owner_ids(db_session, bob.id) == {bob.id, carol.id}


def test_self_grant_is_not_recorded(db_session: Session) -> None:
    alice = _profile(db_session, "alice")

    inserted = ensure_grant(db_session, GrantEdge(owner_user_id=alice.id, grantee_user_id=alice.id))
    db_session.commit()

    assert inserted is False
    assert accessible_owner_ids(db_session, alice.id) == {alice.id}


def test_permission_flag_alone_does_not_widen_visibility(db_session: Session) -> None:
    alice = _profile(db_session, "alice")
    bob = _profile(db_session, "bob")
    db_session.add(UserPermission(user_id=alice.id, can_view_other_users_data=True))
    db_session.commit()

    assert accessible_owner_ids(db_session, alice.id) == {alice.id}
    assert bob.id not in accessible_owner_ids(db_session, alice.id)


def test_unknown_viewer_is_treated_as_plain_user(db_session: Session) -> None:
    _profile(db_session, "alice")
    stranger = uuid.uuid4()

    scope = resolve_visibility_scope(db_session, stranger)

    assert scope.owner_ids == frozenset({stranger})
    assert scope.role == UserRole.USER
    assert viewer_role(db_session, stranger) == UserRole.USER


def test_viewer_role_reads_the_directory(db_session: Session) -> None:
    admin = _profile(db_session, "admin", UserRole.ADMIN)
    alice = _profile(db_session, "alice")

    assert viewer_role(db_session, admin.id) == UserRole.ADMIN
    assert viewer_role(db_session, alice.id) == UserRole.USER


def test_storage_failure_degrades_to_viewer_only(
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    admin = _profile(db_session, "admin", UserRole.ADMIN)
    alice = _profile(db_session, "alice")
    admin_id, alice_id = admin.id, alice.id

    def failing_scalar(*args: object, **kwargs: object) -> None:
        raise OperationalError("SELECT role", {}, Exception("database unavailable"))

    db_session.execute(select(UserProfile.id))
    assert db_session.in_transaction()
    monkeypatch.setattr(db_session, "scalar", failing_scalar)
    caplog.set_level(logging.ERROR, logger="crm_access.security.resolver")

    scope = resolve_visibility_scope(db_session, admin_id, correlation_id="corr-resolver")

    assert scope.owner_ids == frozenset({admin_id})
    assert not scope.is_admin
    assert scope.correlation_id == "corr-resolver"
    record = next(record for record in caplog.records if record.getMessage() == "visibility.resolution_failed")
    assert getattr(record, "user_id", None) == str(admin_id)

    # The failed transaction is rolled back, so later queries in the request still work.
    assert not db_session.in_transaction()
    monkeypatch.undo()
    assert accessible_owner_ids(db_session, admin_id) == {admin_id, alice_id}


def test_can_access_owner(db_session: Session) -> None:
    admin = _profile(db_session, "admin", UserRole.ADMIN)
    alice = _profile(db_session, "alice")
    bob = _profile(db_session, "bob")
    _grant(db_session, bob, alice)

    assert can_access_owner(db_session, alice.id, alice.id)
    assert can_access_owner(db_session, alice.id, bob.id)
    assert not can_access_owner(db_session, bob.id, alice.id)
    assert can_access_owner(db_session, admin.id, bob.id)
    assert can_access_owner(db_session, bob.id, bob.id)
