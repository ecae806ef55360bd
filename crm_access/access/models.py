from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from crm_access.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessRequestStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    REVOKED = "revoked"


OPEN_REQUEST_STATUSES = (AccessRequestStatus.PENDING.value, AccessRequestStatus.ACCEPTED.value)
_OPEN_REQUEST_PREDICATE = text("status IN ('pending', 'accepted')")


def _profile_fk() -> ForeignKey:
    return ForeignKey("directory_user_profile.id", ondelete="CASCADE")


class AccessGrant(Base):
    __tablename__ = "access_grant"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), _profile_fk(), nullable=False)
    grantee_user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), _profile_fk(), nullable=False, index=True)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("owner_user_id", "grantee_user_id", name="uq_access_grant_owner_grantee"),
    )


class AssigneeLink(Base):
    __tablename__ = "access_assignee_link"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    assignee_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), _profile_fk(), nullable=False, index=True)
    admin_owner_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), _profile_fk(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("assignee_id", "admin_owner_id", name="uq_access_assignee_link_pair"),
    )


class AccessRequest(Base):
    __tablename__ = "access_request"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    requester_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), _profile_fk(), nullable=False, index=True)
    receiver_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), _profile_fk(), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=AccessRequestStatus.PENDING.value,
        server_default=AccessRequestStatus.PENDING.value,
    )
    # Edge inserted on acceptance, so revocation removes exactly that grant.
    grant_owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    grant_grantee_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        Index(
            "uq_access_request_open_pair",
            "requester_id",
            "receiver_id",
            unique=True,
            postgresql_where=_OPEN_REQUEST_PREDICATE,
            sqlite_where=_OPEN_REQUEST_PREDICATE,
        ),
    )


class UserPermission(Base):
    __tablename__ = "access_user_permission"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), _profile_fk(), nullable=False, unique=True)
    can_view_other_users_data: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )
    granted_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("directory_user_profile.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
