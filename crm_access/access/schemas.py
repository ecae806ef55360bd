from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StrictBool

from crm_access.directory.models import UserRole
from crm_access.directory.schemas import UserSummary


class AccessRequestCreate(BaseModel):
    # Email, internal id or external id of the receiver.
    receiver_id: str = Field(min_length=1, max_length=320)


class AccessRequestStatusUpdate(BaseModel):
    new_status: str = Field(pattern="^(accepted|rejected)$")


class AccessRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    requester_id: UUID
    receiver_id: UUID
    status: str
    created_at: datetime
    updated_at: datetime


class PendingAccessRequestRead(BaseModel):
    id: UUID
    requester: UserSummary
    status: str
    created_at: datetime


class AccessHistoryRead(BaseModel):
    id: UUID
    requester_id: UUID
    receiver_id: UUID
    requester_email: str
    receiver_email: str
    status: str
    created_at: datetime
    updated_at: datetime


class ManagedUserRead(BaseModel):
    access_request_id: UUID
    user_id: UUID
    email: str
    created_at: datetime


class UserWithPermissionsRead(BaseModel):
    user_id: UUID
    email: str
    name: str | None
    role: UserRole
    can_view_other_users_data: bool
    permission_granted_by: UUID | None = None
    permission_updated_at: datetime | None = None
    access_granted_at: datetime
    access_request_id: UUID


class UserPermissionUpdate(BaseModel):
    target_user_id: UUID
    can_view_other_users_data: StrictBool


class UserPermissionUpdateResult(BaseModel):
    success: bool = True
    message: str
    new_role: UserRole


class AssigneeLinkCreate(BaseModel):
    assignee_user_id: str = Field(min_length=1, max_length=320)


class AssigneeLinkRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    assignee_id: UUID
    admin_owner_id: UUID
    created_at: datetime


class AckRead(BaseModel):
    success: bool = True
