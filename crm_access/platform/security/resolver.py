from __future__ import annotations

import logging
import uuid

from sqlalchemy import String, select, type_coerce
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_access.access.models import AccessGrant, AssigneeLink
from crm_access.directory.models import UserProfile, UserRole
from crm_access.metrics import observe_visibility_resolution
from crm_access.platform.security.context import VisibilityScope


logger = logging.getLogger("crm_access.security.resolver")


def viewer_role(session: Session, viewer_id: uuid.UUID) -> UserRole:
    raw_role = session.scalar(select(type_coerce(UserProfile.role, String)).where(UserProfile.id == viewer_id))
    return UserRole.parse(raw_role)


def accessible_owner_ids(session: Session, viewer_id: uuid.UUID) -> set[uuid.UUID]:
    """Owner ids whose records ``viewer_id`` may read.

    Admins see every profile. Everyone else sees their own records, the owners that
    granted them access, and the admins they are assigned to. Edges are one hop only.
    The result always contains the viewer; storage failures degrade to ``{viewer_id}``.
    """

    return set(resolve_visibility_scope(session, viewer_id).owner_ids)


def can_access_owner(session: Session, viewer_id: uuid.UUID, owner_id: uuid.UUID) -> bool:
    if owner_id == viewer_id:
        return True
    return resolve_visibility_scope(session, viewer_id).allows(owner_id)


def resolve_visibility_scope(
    session: Session,
    viewer_id: uuid.UUID,
    *,
    correlation_id: str | None = None,
) -> VisibilityScope:
    try:
        role = viewer_role(session, viewer_id)
        owners: set[uuid.UUID] = {viewer_id}
        if role == UserRole.ADMIN:
            owners.update(session.scalars(select(UserProfile.id)).all())
        else:
            owners.update(
                session.scalars(select(AccessGrant.owner_user_id).where(AccessGrant.grantee_user_id == viewer_id)).all()
            )
            owners.update(
                session.scalars(select(AssigneeLink.admin_owner_id).where(AssigneeLink.assignee_id == viewer_id)).all()
            )
    except SQLAlchemyError:
        # Leave the session usable for the rest of the request.
        session.rollback()
        logger.exception("visibility.resolution_failed", extra={"user_id": str(viewer_id)})
        observe_visibility_resolution("error", 1)
        return VisibilityScope(
            viewer_id=viewer_id,
            role=UserRole.USER,
            owner_ids=frozenset({viewer_id}),
            correlation_id=correlation_id,
        )

    observe_visibility_resolution(role.value, len(owners))
    return VisibilityScope(
        viewer_id=viewer_id,
        role=role,
        owner_ids=frozenset(owners),
        correlation_id=correlation_id,
    )
