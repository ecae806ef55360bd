from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from crm_access.directory.models import UserRole


class UserProfileRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    external_id: str
    email: str
    name: str | None
    role: UserRole
    status: str
    created_at: datetime


class UserSummary(BaseModel):
    id: UUID
    email: str
    name: str | None


class UserRoleUpdate(BaseModel):
    role: UserRole
