from __future__ import annotations

import logging
import uuid

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_access.access.models import AssigneeLink
from crm_access.access.schemas import AssigneeLinkRead
from crm_access.directory.service import DirectoryService, Viewer, directory_service
from crm_access.platform.security.errors import ForbiddenError, NotFoundError


logger = logging.getLogger("crm_access.access.assignees")


class AssigneeService:
    """Admin-managed delegation links: an assignee sees the linking admin's data."""

    def __init__(self, directory: DirectoryService | None = None) -> None:
        self._directory = directory or directory_service

    def create_link(self, session: Session, viewer: Viewer, assignee_identifier: str) -> AssigneeLinkRead:
        self._require_admin(viewer, "create")
        assignee = self._directory.resolve_identifier(session, assignee_identifier)

        link = self._find(session, assignee_id=assignee.id, admin_owner_id=viewer.user_id)
        if link is not None:
            return AssigneeLinkRead.model_validate(link)

        link = AssigneeLink(assignee_id=assignee.id, admin_owner_id=viewer.user_id)
        session.add(link)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            # Lost a race against an identical insert; the link exists either way.
            link = self._find(session, assignee_id=assignee.id, admin_owner_id=viewer.user_id)
            if link is None:
                raise
            return AssigneeLinkRead.model_validate(link)

        session.refresh(link)
        logger.info(
            "assignee.link_created",
            extra={"assignee_id": str(assignee.id), "admin_owner_id": str(viewer.user_id)},
        )
        return AssigneeLinkRead.model_validate(link)

    def remove_link(self, session: Session, viewer: Viewer, assignee_id: uuid.UUID) -> None:
        self._require_admin(viewer, "remove")
        link = self._find(session, assignee_id=assignee_id, admin_owner_id=viewer.user_id)
        if link is None:
            raise NotFoundError("assignee relationship not found")

        session.delete(link)
        session.commit()
        logger.info(
            "assignee.link_removed",
            extra={"assignee_id": str(assignee_id), "admin_owner_id": str(viewer.user_id)},
        )

    def list_links(self, session: Session, viewer: Viewer) -> list[AssigneeLinkRead]:
        rows = session.scalars(
            select(AssigneeLink)
            .where(or_(AssigneeLink.assignee_id == viewer.user_id, AssigneeLink.admin_owner_id == viewer.user_id))
            .order_by(AssigneeLink.created_at.desc())
        ).all()
        return [AssigneeLinkRead.model_validate(row) for row in rows]

    @staticmethod
    def _find(session: Session, *, assignee_id: uuid.UUID, admin_owner_id: uuid.UUID) -> AssigneeLink | None:
        return session.scalar(
            select(AssigneeLink).where(
                and_(AssigneeLink.assignee_id == assignee_id, AssigneeLink.admin_owner_id == admin_owner_id)
            )
        )

    @staticmethod
    def _require_admin(viewer: Viewer, verb: str) -> None:
        if not viewer.is_admin:
            raise ForbiddenError(f"only admins can {verb} assignee relationships")


assignee_service = AssigneeService()
