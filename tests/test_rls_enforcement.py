from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, insert, select, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_access.core.database import Base
from crm_access.crm.models import CRMCustomer, CRMLead
from crm_access.crm.repositories import customer_repository
from crm_access.directory.models import UserProfile, UserRole
from crm_access.platform.security.context import VisibilityScope
from crm_access.platform.security.errors import NotFoundError, RowLevelSecurityError
from crm_access.platform.security.rls import apply_rls_filter, validate_rls_read, validate_rls_write
from crm_access.platform.security.session import (
    INCLUDE_ALL_OWNERS,
    bind_visibility_scope,
    clear_visibility_scope,
    get_visibility_scope,
    visibility_scope,
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


@pytest.fixture()
def users(db_session: Session) -> dict[str, UserProfile]:
    profiles = {
        name: UserProfile(
            external_id=f"ext-{name}",
            email=f"{name}@example.com",
            name=name.title(),
            role=UserRole.ADMIN if name == "admin" else UserRole.USER,
        )
        for name in ("admin", "alice", "bob", "carol")
    }
    db_session.add_all(profiles.values())
    db_session.commit()
    return profiles


@pytest.fixture()
def customers(db_session: Session, users: dict[str, UserProfile]) -> dict[str, CRMCustomer]:
    rows = {name: CRMCustomer(name=f"{name}-customer", owner_user_id=users[name].id) for name in ("alice", "bob", "carol")}
    db_session.add_all(rows.values())
    db_session.commit()
    return rows


def _scope(viewer: UserProfile, *owners: UserProfile, admin: bool = False) -> VisibilityScope:
    return VisibilityScope(
        viewer_id=viewer.id,
        role=UserRole.ADMIN if admin else UserRole.USER,
        owner_ids=frozenset({viewer.id, *(owner.id for owner in owners)}),
    )


def _names(session: Session) -> set[str]:
    return {row.name for row in session.scalars(select(CRMCustomer)).all()}


def test_bound_scope_filters_owner_scoped_selects(
    db_session: Session,
    users: dict[str, UserProfile],
    customers: dict[str, CRMCustomer],
) -> None:
    with visibility_scope(db_session, _scope(users["alice"], users["bob"])):
        assert _names(db_session) == {"alice-customer", "bob-customer"}
        assert db_session.scalar(select(CRMCustomer).where(CRMCustomer.name == "carol-customer")) is None

    assert _names(db_session) == {"alice-customer", "bob-customer", "carol-customer"}


def test_admin_scope_is_not_filtered(
    db_session: Session,
    users: dict[str, UserProfile],
    customers: dict[str, CRMCustomer],
) -> None:
    with visibility_scope(db_session, _scope(users["admin"], admin=True)):
        assert _names(db_session) == {"alice-customer", "bob-customer", "carol-customer"}

        carol_row = db_session.scalar(select(CRMCustomer).where(CRMCustomer.name == "carol-customer"))
        assert carol_row is not None
        carol_row.status = "Archived"
        db_session.commit()

    db_session.refresh(carol_row)
    assert carol_row.status == "Archived"


def test_insert_defaults_owner_to_viewer(db_session: Session, users: dict[str, UserProfile]) -> None:
    with visibility_scope(db_session, _scope(users["alice"])):
        lead = CRMLead(company_name="Acme")
        db_session.add(lead)
        db_session.commit()

    assert lead.owner_user_id == users["alice"].id


def test_insert_for_another_owner_is_rejected_even_for_admins(db_session: Session, users: dict[str, UserProfile]) -> None:
    with visibility_scope(db_session, _scope(users["alice"], users["bob"])):
        db_session.add(CRMLead(company_name="Acme", owner_user_id=users["bob"].id))
        with pytest.raises(RowLevelSecurityError) as exc_info:
            db_session.flush()
        db_session.rollback()

    assert exc_info.value.action == "create"
    assert exc_info.value.resource == "crm.lead"

    with visibility_scope(db_session, _scope(users["admin"], admin=True)):
        db_session.add(CRMLead(company_name="Acme", owner_user_id=users["alice"].id))
        with pytest.raises(RowLevelSecurityError):
            db_session.flush()
        db_session.rollback()


def test_update_and_delete_outside_owner_set_are_rejected(
    db_session: Session,
    users: dict[str, UserProfile],
    customers: dict[str, CRMCustomer],
) -> None:
    with visibility_scope(db_session, _scope(users["alice"], users["bob"])):
        carol_row = db_session.scalar(
            select(CRMCustomer)
            .where(CRMCustomer.name == "carol-customer")
            .execution_options(**{INCLUDE_ALL_OWNERS: True})
        )
        assert carol_row is not None

        carol_row.name = "renamed"
        with pytest.raises(RowLevelSecurityError) as update_exc:
            db_session.flush()
        db_session.rollback()
        assert update_exc.value.action == "update"

        db_session.delete(carol_row)
        with pytest.raises(RowLevelSecurityError) as delete_exc:
            db_session.flush()
        db_session.rollback()
        assert delete_exc.value.action == "delete"


def test_moving_a_row_to_an_invisible_owner_is_rejected(
    db_session: Session,
    users: dict[str, UserProfile],
    customers: dict[str, CRMCustomer],
) -> None:
    with visibility_scope(db_session, _scope(users["alice"], users["bob"])):
        bob_row = db_session.scalar(select(CRMCustomer).where(CRMCustomer.name == "bob-customer"))
        assert bob_row is not None

        bob_row.owner_user_id = users["alice"].id
        db_session.flush()

        bob_row.owner_user_id = users["carol"].id
        with pytest.raises(RowLevelSecurityError):
            db_session.flush()
        db_session.rollback()


def test_bulk_update_only_touches_visible_rows(
    db_session: Session,
    users: dict[str, UserProfile],
    customers: dict[str, CRMCustomer],
) -> None:
    carol_customer_id = customers["carol"].id

    with visibility_scope(db_session, _scope(users["alice"], users["bob"])):
        db_session.execute(
            update(CRMCustomer).values(status="Archived").execution_options(synchronize_session=False)
        )
        db_session.commit()

        with pytest.raises(RowLevelSecurityError) as moved:
            db_session.execute(
                update(CRMCustomer)
                .values(owner_user_id=users["carol"].id)
                .execution_options(synchronize_session=False)
            )
        db_session.rollback()
        assert moved.value.action == "update"

        with pytest.raises(RowLevelSecurityError):
            db_session.execute(update(CRMCustomer), [{"id": carol_customer_id, "status": "Archived"}])
        db_session.rollback()

    db_session.expire_all()
    rows = db_session.scalars(select(CRMCustomer)).all()
    assert {row.name: row.status for row in rows} == {
        "alice-customer": "Archived",
        "bob-customer": "Archived",
        "carol-customer": "Active",
    }
    assert {row.name: row.owner_user_id for row in rows} == {
        "alice-customer": users["alice"].id,
        "bob-customer": users["bob"].id,
        "carol-customer": users["carol"].id,
    }


def test_bulk_insert_rows_must_belong_to_the_viewer(db_session: Session, users: dict[str, UserProfile]) -> None:
    alice_id = users["alice"].id
    bob_id = users["bob"].id

    with visibility_scope(db_session, _scope(users["alice"], users["bob"])):
        with pytest.raises(RowLevelSecurityError) as planted:
            db_session.execute(insert(CRMCustomer), [{"name": "planted", "owner_user_id": bob_id}])
        db_session.rollback()
        assert planted.value.action == "create"

        with pytest.raises(RowLevelSecurityError):
            db_session.execute(insert(CRMCustomer).values(name="planted", owner_user_id=bob_id))
        db_session.rollback()

        db_session.execute(insert(CRMCustomer), [{"name": "mine"}, {"name": "also-mine", "owner_user_id": alice_id}])
        db_session.commit()

    with visibility_scope(db_session, _scope(users["admin"], admin=True)):
        with pytest.raises(RowLevelSecurityError):
            db_session.execute(insert(CRMCustomer), [{"name": "for-alice", "owner_user_id": alice_id}])
        db_session.rollback()

    owners = {row.name: row.owner_user_id for row in db_session.scalars(select(CRMCustomer)).all()}
    assert owners == {"mine": alice_id, "also-mine": alice_id}


def test_visibility_scope_context_restores_previous_binding(db_session: Session, users: dict[str, UserProfile]) -> None:
    outer = _scope(users["alice"])
    inner = _scope(users["bob"])

    bind_visibility_scope(db_session, outer)
    with visibility_scope(db_session, inner):
        assert get_visibility_scope(db_session) is inner
    assert get_visibility_scope(db_session) is outer

    clear_visibility_scope(db_session)
    with visibility_scope(db_session, inner):
        pass
    assert get_visibility_scope(db_session) is None


def test_apply_rls_filter_restricts_query(
    db_session: Session,
    users: dict[str, UserProfile],
    customers: dict[str, CRMCustomer],
) -> None:
    scope = _scope(users["bob"])
    query = apply_rls_filter(select(CRMCustomer), "crm.customer", scope)
    assert {row.name for row in db_session.scalars(query).all()} == {"bob-customer"}

    admin_query = apply_rls_filter(select(CRMCustomer), "crm.customer", _scope(users["admin"], admin=True))
    assert len(db_session.scalars(admin_query).all()) == 3


def test_validate_rls_helpers(users: dict[str, UserProfile]) -> None:
    scope = _scope(users["alice"], users["bob"])

    validate_rls_read("crm.customer", scope, owner_user_id=users["bob"].id)
    with pytest.raises(NotFoundError):
        validate_rls_read("crm.customer", scope, owner_user_id=users["carol"].id)

    validate_rls_write("crm.customer", {"owner_user_id": str(users["alice"].id)}, scope, action="create")
    with pytest.raises(RowLevelSecurityError):
        validate_rls_write("crm.customer", {"owner_user_id": users["bob"].id}, scope, action="create")
    with pytest.raises(RowLevelSecurityError):
        validate_rls_write("crm.customer", {}, scope, action="update", existing_owner_id=users["carol"].id)
    with pytest.raises(RowLevelSecurityError):
        validate_rls_write("crm.customer", {"owner_user_id": None}, scope, action="update", existing_owner_id=users["bob"].id)


def test_repository_hides_invisible_rows_as_missing(
    db_session: Session,
    users: dict[str, UserProfile],
    customers: dict[str, CRMCustomer],
) -> None:
    scope = _scope(users["alice"])

    with visibility_scope(db_session, scope):
        visible = customer_repository.list_visible(db_session, scope)
        assert [row.name for row in visible] == ["alice-customer"]

        with pytest.raises(NotFoundError):
            customer_repository.get(db_session, scope, customers["carol"].id)
        with pytest.raises(NotFoundError):
            customer_repository.get(db_session, scope, uuid.uuid4())

        created = customer_repository.create(db_session, scope, {"name": "new-customer"})
        db_session.commit()
        assert created.owner_user_id == users["alice"].id

        with pytest.raises(RowLevelSecurityError):
            customer_repository.create(db_session, scope, {"name": "x", "owner_user_id": users["carol"].id})
        db_session.rollback()
