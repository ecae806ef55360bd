from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import and_, delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_access.access.models import AccessGrant, utcnow
from crm_access.directory.models import UserRole
from crm_access.metrics import observe_grant_mutation


@dataclass(frozen=True, slots=True)
class GrantEdge:
    owner_user_id: uuid.UUID
    grantee_user_id: uuid.UUID

    @property
    def is_self_grant(self) -> bool:
        return self.owner_user_id == self.grantee_user_id


def derive_grant_edge(
    *,
    requester_id: uuid.UUID,
    requester_role: UserRole,
    receiver_id: uuid.UUID,
    receiver_role: UserRole,
) -> GrantEdge:
    """Direction of the grant created when an access request is accepted.

    Across roles the requester's data is shared one way or the other depending on
    who is the admin; between peers the receiver's data is shared with the requester.
    """

    if requester_role == UserRole.ADMIN and receiver_role != UserRole.ADMIN:
        # The user gains visibility into the admin's data.
        return GrantEdge(owner_user_id=requester_id, grantee_user_id=receiver_id)
    if requester_role != UserRole.ADMIN and receiver_role == UserRole.ADMIN:
        # The admin gains visibility into the user's data.
        return GrantEdge(owner_user_id=requester_id, grantee_user_id=receiver_id)
    return GrantEdge(owner_user_id=receiver_id, grantee_user_id=requester_id)


def ensure_grant(session: Session, edge: GrantEdge) -> bool:
    """Insert the grant unless it already exists. Does not commit.

    Returns True when a row was inserted. Self-grants are skipped.
    """

    if edge.is_self_grant:
        return False

    values = {
        "id": uuid.uuid4(),
        "owner_user_id": edge.owner_user_id,
        "grantee_user_id": edge.grantee_user_id,
        "granted_at": utcnow(),
    }
    conflict_columns = [AccessGrant.__table__.c.owner_user_id, AccessGrant.__table__.c.grantee_user_id]
    dialect_name = session.get_bind().dialect.name

    if dialect_name == "postgresql":
        stmt = postgresql.insert(AccessGrant.__table__).values(**values).on_conflict_do_nothing(
            index_elements=conflict_columns
        )
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(AccessGrant.__table__).values(**values).on_conflict_do_nothing(
            index_elements=conflict_columns
        )
    else:
        return _ensure_grant_with_savepoint(session, edge)

    inserted = session.execute(stmt).rowcount == 1
    if inserted:
        observe_grant_mutation("created")
    return inserted


def _ensure_grant_with_savepoint(session: Session, edge: GrantEdge) -> bool:
    if grant_exists(session, edge):
        return False
    try:
        with session.begin_nested():
            session.add(AccessGrant(owner_user_id=edge.owner_user_id, grantee_user_id=edge.grantee_user_id))
    except IntegrityError:
        return False
    observe_grant_mutation("created")
    return True


def remove_grant(session: Session, edge: GrantEdge) -> int:
    """Delete the grant for exactly this edge. Does not commit."""

    result = session.execute(
        delete(AccessGrant.__table__).where(
            and_(
                AccessGrant.__table__.c.owner_user_id == edge.owner_user_id,
                AccessGrant.__table__.c.grantee_user_id == edge.grantee_user_id,
            )
        )
    )
    removed = result.rowcount or 0
    if removed:
        observe_grant_mutation("removed")
    return removed


def grant_exists(session: Session, edge: GrantEdge) -> bool:
    grant_id = session.scalar(
        select(AccessGrant.id).where(
            and_(
                AccessGrant.owner_user_id == edge.owner_user_id,
                AccessGrant.grantee_user_id == edge.grantee_user_id,
            )
        )
    )
    return grant_id is not None
