from __future__ import annotations

import logging
import uuid
from typing import Any, Generic, TypeVar

from opentelemetry import trace
from sqlalchemy.orm import Session

from crm_access.crm.repositories import (
    activity_repository,
    customer_repository,
    lead_repository,
    opportunity_repository,
)
from crm_access.platform.security.context import VisibilityScope
from crm_access.platform.security.repository import OwnerScopedRepository


logger = logging.getLogger("crm_access.crm")
tracer = trace.get_tracer("crm_access.crm")

ModelT = TypeVar("ModelT")


class OwnerScopedRecordService(Generic[ModelT]):
    """CRUD over one owner-scoped CRM table; every call is filtered by the viewer's scope."""

    def __init__(self, repository: OwnerScopedRepository[Any]) -> None:
        self.repository = repository

    def list_records(self, session: Session, scope: VisibilityScope, *, limit: int = 100, offset: int = 0) -> list[ModelT]:
        return self.repository.list_visible(session, scope, limit=limit, offset=offset)

    def get_record(self, session: Session, scope: VisibilityScope, record_id: uuid.UUID) -> ModelT:
        return self.repository.get(session, scope, record_id)

    def create_record(self, session: Session, scope: VisibilityScope, payload: dict[str, Any]) -> ModelT:
        with tracer.start_as_current_span(f"{self.repository.resource}.create"):
            try:
                record = self.repository.create(session, scope, payload)
                session.commit()
            except Exception:
                session.rollback()
                raise
            session.refresh(record)
            logger.info(
                "crm.record_created",
                extra={"resource": self.repository.resource, "record_id": str(record.id), "user_id": str(scope.viewer_id)},
            )
            return record

    def update_record(
        self,
        session: Session,
        scope: VisibilityScope,
        record_id: uuid.UUID,
        changes: dict[str, Any],
    ) -> ModelT:
        with tracer.start_as_current_span(f"{self.repository.resource}.update"):
            try:
                record = self.repository.update(session, scope, record_id, changes)
                session.commit()
            except Exception:
                session.rollback()
                raise
            session.refresh(record)
            return record

    def delete_record(self, session: Session, scope: VisibilityScope, record_id: uuid.UUID) -> None:
        with tracer.start_as_current_span(f"{self.repository.resource}.delete"):
            try:
                self.repository.delete(session, scope, record_id)
                session.commit()
            except Exception:
                session.rollback()
                raise
            logger.info(
                "crm.record_deleted",
                extra={"resource": self.repository.resource, "record_id": str(record_id), "user_id": str(scope.viewer_id)},
            )


customer_service: OwnerScopedRecordService[Any] = OwnerScopedRecordService(customer_repository)
lead_service: OwnerScopedRecordService[Any] = OwnerScopedRecordService(lead_repository)
opportunity_service: OwnerScopedRecordService[Any] = OwnerScopedRecordService(opportunity_repository)
activity_service: OwnerScopedRecordService[Any] = OwnerScopedRecordService(activity_repository)
