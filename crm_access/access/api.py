from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from crm_access.access.assignees import assignee_service
from crm_access.access.permissions import user_permission_service
from crm_access.access.schemas import (
    AccessHistoryRead,
    AccessRequestCreate,
    AccessRequestRead,
    AccessRequestStatusUpdate,
    AckRead,
    AssigneeLinkCreate,
    AssigneeLinkRead,
    ManagedUserRead,
    PendingAccessRequestRead,
    UserPermissionUpdate,
    UserPermissionUpdateResult,
    UserWithPermissionsRead,
)
from crm_access.access.service import access_request_service
from crm_access.core.database import get_db
from crm_access.directory.api import get_current_viewer
from crm_access.directory.schemas import UserProfileRead
from crm_access.directory.service import Viewer, directory_service
from crm_access.platform.security.resolver import accessible_owner_ids


router = APIRouter(prefix="/api/access", tags=["access.requests"])
permissions_router = APIRouter(prefix="/api/access", tags=["access.permissions"])
assignees_router = APIRouter(prefix="/api/access", tags=["access.assignees"])


@router.get("/users", response_model=list[UserProfileRead])
def list_available_users(
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> list[UserProfileRead]:
    return directory_service.list_profiles(db)


@router.get("/accessible-users", response_model=list[UserProfileRead])
def list_accessible_users(
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> list[UserProfileRead]:
    return directory_service.list_profiles_by_ids(db, accessible_owner_ids(db, viewer.user_id))


@router.post("/requests", response_model=AccessRequestRead, status_code=status.HTTP_201_CREATED)
def send_access_request(
    dto: AccessRequestCreate,
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> AccessRequestRead:
    return access_request_service.send_request(db, viewer, dto.receiver_id)


@router.get("/requests/pending", response_model=list[PendingAccessRequestRead])
def list_pending_requests(
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> list[PendingAccessRequestRead]:
    return access_request_service.list_pending_requests(db, viewer)


@router.get("/requests/history", response_model=list[AccessHistoryRead])
def list_access_history(
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> list[AccessHistoryRead]:
    return access_request_service.list_access_history(db, viewer)


@router.post("/requests/{request_id}/status", response_model=AccessRequestRead)
def update_request_status(
    request_id: uuid.UUID,
    dto: AccessRequestStatusUpdate,
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> AccessRequestRead:
    return access_request_service.respond_to_request(db, viewer, request_id, dto.new_status)


@router.delete("/requests/{request_id}", response_model=AckRead)
def revoke_access(
    request_id: uuid.UUID,
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> AckRead:
    access_request_service.revoke_request(db, viewer, request_id)
    return AckRead()


@router.get("/managed-users", response_model=list[ManagedUserRead])
def list_managed_users(
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> list[ManagedUserRead]:
    return access_request_service.list_managed_users(db, viewer)


@permissions_router.get("/permissions", response_model=list[UserWithPermissionsRead])
def list_users_with_permissions(
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> list[UserWithPermissionsRead]:
    return user_permission_service.list_users_with_permissions(db, viewer)


@permissions_router.put("/permissions", response_model=UserPermissionUpdateResult)
def update_user_permission(
    dto: UserPermissionUpdate,
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> UserPermissionUpdateResult:
    return user_permission_service.update_user_permission(
        db,
        viewer,
        target_user_id=dto.target_user_id,
        can_view_other_users_data=dto.can_view_other_users_data,
    )


@assignees_router.get("/assignees", response_model=list[AssigneeLinkRead])
def list_assignee_links(
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> list[AssigneeLinkRead]:
    return assignee_service.list_links(db, viewer)


@assignees_router.post("/assignees", response_model=AssigneeLinkRead, status_code=status.HTTP_201_CREATED)
def create_assignee_link(
    dto: AssigneeLinkCreate,
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> AssigneeLinkRead:
    return assignee_service.create_link(db, viewer, dto.assignee_user_id)


@assignees_router.delete("/assignees/{assignee_id}", response_model=AckRead)
def remove_assignee_link(
    assignee_id: uuid.UUID,
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> AckRead:
    assignee_service.remove_link(db, viewer, assignee_id)
    return AckRead()
