"""create access grant, assignee link, request and permission tables

Revision ID: 202610170002
Revises: 202610170001
Create Date: 2026-10-17 00:02:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610170002"
down_revision: str | None = "202610170001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

_PROFILE_ID = "directory_user_profile.id"
_OPEN_REQUEST_PREDICATE = sa.text("status IN ('pending', 'accepted')")


def upgrade() -> None:
    op.create_table(
        "access_grant",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_user_id", sa.Uuid(), sa.ForeignKey(_PROFILE_ID, ondelete="CASCADE"), nullable=False),
        sa.Column("grantee_user_id", sa.Uuid(), sa.ForeignKey(_PROFILE_ID, ondelete="CASCADE"), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_user_id", "grantee_user_id", name="uq_access_grant_owner_grantee"),
    )
    op.create_index("ix_access_grant_grantee_user_id", "access_grant", ["grantee_user_id"], unique=False)

    op.create_table(
        "access_assignee_link",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("assignee_id", sa.Uuid(), sa.ForeignKey(_PROFILE_ID, ondelete="CASCADE"), nullable=False),
        sa.Column("admin_owner_id", sa.Uuid(), sa.ForeignKey(_PROFILE_ID, ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("assignee_id", "admin_owner_id", name="uq_access_assignee_link_pair"),
    )
    op.create_index("ix_access_assignee_link_assignee_id", "access_assignee_link", ["assignee_id"], unique=False)

    op.create_table(
        "access_request",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("requester_id", sa.Uuid(), sa.ForeignKey(_PROFILE_ID, ondelete="CASCADE"), nullable=False),
        sa.Column("receiver_id", sa.Uuid(), sa.ForeignKey(_PROFILE_ID, ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("grant_owner_id", sa.Uuid(), nullable=True),
        sa.Column("grant_grantee_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'revoked')",
            name="ck_access_request_status",
        ),
    )
    op.create_index("ix_access_request_requester_id", "access_request", ["requester_id"], unique=False)
    op.create_index("ix_access_request_receiver_id", "access_request", ["receiver_id"], unique=False)
    op.create_index(
        "uq_access_request_open_pair",
        "access_request",
        ["requester_id", "receiver_id"],
        unique=True,
        postgresql_where=_OPEN_REQUEST_PREDICATE,
        sqlite_where=_OPEN_REQUEST_PREDICATE,
    )

    op.create_table(
        "access_user_permission",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey(_PROFILE_ID, ondelete="CASCADE"), nullable=False),
        sa.Column("can_view_other_users_data", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("granted_by", sa.Uuid(), sa.ForeignKey(_PROFILE_ID, ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )


def downgrade() -> None:
    op.drop_table("access_user_permission")
    op.drop_index("uq_access_request_open_pair", table_name="access_request")
    op.drop_index("ix_access_request_receiver_id", table_name="access_request")
    op.drop_index("ix_access_request_requester_id", table_name="access_request")
    op.drop_table("access_request")
    op.drop_index("ix_access_assignee_link_assignee_id", table_name="access_assignee_link")
    op.drop_table("access_assignee_link")
    op.drop_index("ix_access_grant_grantee_user_id", table_name="access_grant")
    op.drop_table("access_grant")
