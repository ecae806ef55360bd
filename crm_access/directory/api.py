from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from crm_access.context import get_correlation_id
from crm_access.core.auth import AuthUser, get_current_user
from crm_access.core.context import get_request_context
from crm_access.core.database import get_db
from crm_access.directory.models import UserRole
from crm_access.directory.schemas import UserProfileRead, UserRoleUpdate
from crm_access.directory.service import Viewer, directory_service


router = APIRouter(tags=["auth"])
admin_router = APIRouter(prefix="/admin", tags=["admin.directory"])


def get_current_viewer(
    request: Request,
    auth_user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Viewer:
    """Authenticated caller as a directory profile; the role always comes from the directory."""

    profile = directory_service.sync_identity(
        db,
        external_id=auth_user.sub,
        email=auth_user.email,
        name=auth_user.name,
    )
    context = get_request_context(request)
    if context is not None:
        context.user_id = profile.external_id
        context.viewer_id = str(profile.id)
    correlation_id = get_correlation_id() or (context.request_id if context is not None else None)
    return Viewer(
        user_id=profile.id,
        role=UserRole.parse(profile.role),
        email=profile.email,
        external_id=profile.external_id,
        correlation_id=correlation_id,
    )


@router.get("/me", response_model=UserProfileRead)
def me(
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> UserProfileRead:
    return UserProfileRead.model_validate(directory_service.get_profile(db, viewer.user_id))


@admin_router.patch("/users/{user_id}/role", response_model=UserProfileRead)
def set_user_role(
    user_id: uuid.UUID,
    dto: UserRoleUpdate,
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> UserProfileRead:
    return directory_service.set_role(db, viewer, user_id, dto.role)
