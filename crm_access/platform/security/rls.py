from __future__ import annotations

import logging
import uuid
from typing import Any, ClassVar

from sqlalchemy import ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import Select

from crm_access.metrics import observe_rls_denied_read, observe_rls_denied_write
from crm_access.platform.security.context import VisibilityScope
from crm_access.platform.security.errors import NotFoundError, RowLevelSecurityError


logger = logging.getLogger("crm_access.security.rls")

OWNER_COLUMN = "owner_user_id"


class OwnerScopedMixin:
    """Marks a mapped class whose rows belong to one directory user."""

    __rls_resource__: ClassVar[str] = ""

    owner_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("directory_user_profile.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


def resource_name(model: Any) -> str:
    return getattr(model, "__rls_resource__", "") or getattr(model, "__tablename__", "") or type(model).__name__


def apply_rls_filter(query: Select[Any], resource: str, scope: VisibilityScope) -> Select[Any]:
    """Restrict every owner-scoped entity in ``query`` to the scope's owner set."""

    if scope.is_admin:
        return query

    owner_ids = sorted(scope.owner_ids, key=str)
    for description in query.column_descriptions:
        model = description.get("entity")
        if model is None:
            continue
        if hasattr(model, OWNER_COLUMN):
            query = query.where(getattr(model, OWNER_COLUMN).in_(owner_ids))
    return query


def validate_rls_write(
    resource: str,
    payload: dict[str, Any],
    scope: VisibilityScope,
    *,
    action: str = "write",
    existing_owner_id: uuid.UUID | None = None,
) -> None:
    """Inserts must be owned by the viewer; updates and deletes must stay inside the owner set."""

    new_owner = _as_uuid(payload.get(OWNER_COLUMN))

    if action == "create":
        if new_owner != scope.viewer_id:
            _deny_write(resource, new_owner, action, scope)
        return

    if scope.is_admin:
        return
    if existing_owner_id is not None and not scope.allows(existing_owner_id):
        _deny_write(resource, existing_owner_id, action, scope)
    if OWNER_COLUMN in payload and not scope.allows(new_owner):
        _deny_write(resource, new_owner, action, scope)


def validate_rls_read(
    resource: str,
    scope: VisibilityScope,
    *,
    owner_user_id: uuid.UUID | None,
    action: str = "read",
) -> None:
    """Detail reads of rows outside the owner set look like missing rows."""

    if scope.allows(_as_uuid(owner_user_id)):
        return

    observe_rls_denied_read(resource)
    logger.warning(
        "rls.denied",
        extra={"resource": resource, "action": action, "user_id": str(scope.viewer_id)},
    )
    raise NotFoundError(f"{resource} not found")


def _deny_write(resource: str, owner_user_id: uuid.UUID | None, action: str, scope: VisibilityScope) -> None:
    observe_rls_denied_write(resource, action)
    logger.warning(
        "rls.denied",
        extra={
            "resource": resource,
            "action": action,
            "user_id": str(scope.viewer_id),
            "owner_user_id": str(owner_user_id) if owner_user_id is not None else None,
        },
    )
    raise RowLevelSecurityError(resource=resource, owner_user_id=owner_user_id, action=action)


def _as_uuid(value: Any) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
