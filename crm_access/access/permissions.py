from __future__ import annotations

import logging
import uuid

from sqlalchemy import and_, delete, select
from sqlalchemy.orm import Session

from crm_access.access.models import AccessRequest, AccessRequestStatus, UserPermission
from crm_access.access.schemas import UserPermissionUpdateResult, UserWithPermissionsRead
from crm_access.directory.models import UserProfile, UserRole
from crm_access.directory.service import DirectoryService, Viewer, directory_service
from crm_access.platform.security.errors import ForbiddenError


logger = logging.getLogger("crm_access.access.permissions")


def remove_permissions_granted_by(session: Session, *, user_id: uuid.UUID, granted_by: uuid.UUID) -> int:
    """Delete the user's override row if ``granted_by`` set it. Does not commit."""

    result = session.execute(
        delete(UserPermission.__table__).where(
            and_(
                UserPermission.__table__.c.user_id == user_id,
                UserPermission.__table__.c.granted_by == granted_by,
            )
        )
    )
    return result.rowcount or 0


class UserPermissionService:
    """Legacy "can view other users' data" override, toggled by admins."""

    def __init__(self, directory: DirectoryService | None = None) -> None:
        self._directory = directory or directory_service

    def list_users_with_permissions(self, session: Session, viewer: Viewer) -> list[UserWithPermissionsRead]:
        accepted = session.scalars(
            select(AccessRequest)
            .where(
                and_(
                    AccessRequest.requester_id == viewer.user_id,
                    AccessRequest.status == AccessRequestStatus.ACCEPTED.value,
                )
            )
            .order_by(AccessRequest.created_at.asc())
        ).all()

        first_request_by_user: dict[uuid.UUID, AccessRequest] = {}
        for request in accepted:
            first_request_by_user.setdefault(request.receiver_id, request)
        if not first_request_by_user:
            return []

        user_ids = list(first_request_by_user)
        profiles = {
            profile.id: profile
            for profile in session.scalars(select(UserProfile).where(UserProfile.id.in_(user_ids))).all()
        }
        permissions = {
            permission.user_id: permission
            for permission in session.scalars(select(UserPermission).where(UserPermission.user_id.in_(user_ids))).all()
        }
        roles = self._directory.get_roles(session, user_ids)

        results: list[UserWithPermissionsRead] = []
        for user_id, request in first_request_by_user.items():
            profile = profiles.get(user_id)
            permission = permissions.get(user_id)
            results.append(
                UserWithPermissionsRead(
                    user_id=user_id,
                    email=profile.email if profile is not None else "Unknown",
                    name=(profile.name or profile.email) if profile is not None else None,
                    role=roles[user_id],
                    can_view_other_users_data=bool(permission.can_view_other_users_data) if permission else False,
                    permission_granted_by=permission.granted_by if permission else None,
                    permission_updated_at=permission.updated_at if permission else None,
                    access_granted_at=request.created_at,
                    access_request_id=request.id,
                )
            )
        return results

    def update_user_permission(
        self,
        session: Session,
        viewer: Viewer,
        *,
        target_user_id: uuid.UUID,
        can_view_other_users_data: bool,
    ) -> UserPermissionUpdateResult:
        if not viewer.is_admin:
            raise ForbiddenError("only admins can update user permissions")

        target = self._directory.get_profile(session, target_user_id)
        previous_role = UserRole.parse(target.role)
        new_role = UserRole.ADMIN if can_view_other_users_data else UserRole.USER

        permission = session.scalar(select(UserPermission).where(UserPermission.user_id == target.id))
        if permission is None:
            permission = UserPermission(user_id=target.id)
            session.add(permission)
        permission.can_view_other_users_data = can_view_other_users_data
        permission.granted_by = viewer.user_id
        target.role = new_role

        try:
            session.commit()
        except Exception:
            session.rollback()
            raise

        logger.info(
            "permission.updated",
            extra={
                "user_id": str(target.id),
                "actor_user_id": str(viewer.user_id),
                "can_view_other_users_data": can_view_other_users_data,
                "previous_role": previous_role.value,
                "role": new_role.value,
            },
        )
        verb = "granted" if can_view_other_users_data else "revoked"
        return UserPermissionUpdateResult(
            message=f"User permission {verb} successfully. Role updated to {new_role.value}.",
            new_role=new_role,
        )


user_permission_service = UserPermissionService()
