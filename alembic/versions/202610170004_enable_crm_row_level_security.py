"""enable row level security on owner-scoped crm tables

Revision ID: 202610170004
Revises: 202610170003
Create Date: 2026-10-17 00:04:00
"""

from collections.abc import Sequence

from alembic import op


revision: str = "202610170004"
down_revision: str | None = "202610170003"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

_TABLES = ("crm_customer", "crm_lead", "crm_opportunity", "crm_activity")
_VISIBLE = "owner_user_id IN (SELECT crm_accessible_owner_ids(crm_current_viewer()))"


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute(
        """
        CREATE OR REPLACE FUNCTION crm_current_viewer() RETURNS uuid
        LANGUAGE sql STABLE
        AS $$
            SELECT NULLIF(current_setting('app.current_user_id', true), '')::uuid
        $$
        """
    )
    # Mirrors crm_access.platform.security.resolver: admins see everyone, others see
    # themselves plus one hop of access grants and assignee links.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION crm_accessible_owner_ids(viewer uuid) RETURNS SETOF uuid
        LANGUAGE sql STABLE SECURITY DEFINER
        SET search_path = public
        AS $$
            SELECT viewer
            UNION
            SELECT p.id FROM directory_user_profile p
            WHERE EXISTS (
                SELECT 1 FROM directory_user_profile v WHERE v.id = viewer AND v.role = 'admin'
            )
            UNION
            SELECT g.owner_user_id FROM access_grant g WHERE g.grantee_user_id = viewer
            UNION
            SELECT l.admin_owner_id FROM access_assignee_link l WHERE l.assignee_id = viewer
        $$
        """
    )

    for table in _TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        op.execute(f"CREATE POLICY {table}_select ON {table} FOR SELECT USING ({_VISIBLE})")
        op.execute(
            f"CREATE POLICY {table}_insert ON {table} FOR INSERT WITH CHECK (owner_user_id = crm_current_viewer())"
        )
        op.execute(f"CREATE POLICY {table}_update ON {table} FOR UPDATE USING ({_VISIBLE}) WITH CHECK ({_VISIBLE})")
        op.execute(f"CREATE POLICY {table}_delete ON {table} FOR DELETE USING ({_VISIBLE})")


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    for table in _TABLES:
        for action in ("delete", "update", "insert", "select"):
            op.execute(f"DROP POLICY IF EXISTS {table}_{action} ON {table}")
        op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")

    op.execute("DROP FUNCTION IF EXISTS crm_accessible_owner_ids(uuid)")
    op.execute("DROP FUNCTION IF EXISTS crm_current_viewer()")
