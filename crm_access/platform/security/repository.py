from __future__ import annotations

import uuid
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from crm_access.platform.security.context import VisibilityScope
from crm_access.platform.security.errors import NotFoundError
from crm_access.platform.security.rls import (
    OWNER_COLUMN,
    OwnerScopedMixin,
    apply_rls_filter,
    validate_rls_read,
    validate_rls_write,
)
from crm_access.platform.security.session import INCLUDE_ALL_OWNERS


ModelT = TypeVar("ModelT", bound=OwnerScopedMixin)


class OwnerScopedRepository(Generic[ModelT]):
    model: type[ModelT]
    resource = ""

    def apply_scope_query(self, query: Select[Any], scope: VisibilityScope) -> Select[Any]:
        return apply_rls_filter(query, self.resource, scope)

    def validate_write_security(
        self,
        payload: dict[str, Any],
        scope: VisibilityScope,
        *,
        existing_owner_id: uuid.UUID | None = None,
        action: str = "write",
    ) -> None:
        validate_rls_write(self.resource, payload, scope, existing_owner_id=existing_owner_id, action=action)

    def validate_read_scope(self, scope: VisibilityScope, *, owner_user_id: uuid.UUID | None, action: str = "read") -> None:
        validate_rls_read(self.resource, scope, owner_user_id=owner_user_id, action=action)

    def list_visible(self, session: Session, scope: VisibilityScope, *, limit: int = 100, offset: int = 0) -> list[ModelT]:
        query = self.apply_scope_query(select(self.model), scope)
        query = query.order_by(getattr(self.model, "created_at").desc()).limit(limit).offset(offset)
        return list(session.scalars(query).all())

    def get(self, session: Session, scope: VisibilityScope, record_id: uuid.UUID) -> ModelT:
        record = session.scalar(
            select(self.model)
            .where(getattr(self.model, "id") == record_id)
            .execution_options(**{INCLUDE_ALL_OWNERS: True})
        )
        if record is None:
            raise NotFoundError(f"{self.resource} not found")
        self.validate_read_scope(scope, owner_user_id=record.owner_user_id)
        return record

    def create(self, session: Session, scope: VisibilityScope, payload: dict[str, Any]) -> ModelT:
        values = dict(payload)
        values.setdefault(OWNER_COLUMN, scope.viewer_id)
        self.validate_write_security(values, scope, action="create")
        record = self.model(**values)
        session.add(record)
        session.flush()
        return record

    def update(self, session: Session, scope: VisibilityScope, record_id: uuid.UUID, changes: dict[str, Any]) -> ModelT:
        record = self.get(session, scope, record_id)
        self.validate_write_security(changes, scope, existing_owner_id=record.owner_user_id, action="update")
        for field_name, value in changes.items():
            setattr(record, field_name, value)
        session.flush()
        return record

    def delete(self, session: Session, scope: VisibilityScope, record_id: uuid.UUID) -> None:
        record = self.get(session, scope, record_id)
        self.validate_write_security({}, scope, existing_owner_id=record.owner_user_id, action="delete")
        session.delete(record)
        session.flush()
