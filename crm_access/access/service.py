from __future__ import annotations

import logging
import uuid

from opentelemetry import trace
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_access.access.grants import GrantEdge, derive_grant_edge, ensure_grant, remove_grant
from crm_access.access.models import OPEN_REQUEST_STATUSES, AccessRequest, AccessRequestStatus, utcnow
from crm_access.access.permissions import remove_permissions_granted_by
from crm_access.access.schemas import (
    AccessHistoryRead,
    AccessRequestRead,
    ManagedUserRead,
    PendingAccessRequestRead,
)
from crm_access.directory.models import UserProfile
from crm_access.directory.schemas import UserSummary
from crm_access.directory.service import DirectoryService, Viewer, directory_service
from crm_access.metrics import observe_access_request_transition
from crm_access.platform.security.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError


logger = logging.getLogger("crm_access.access.requests")
tracer = trace.get_tracer("crm_access.access.requests")

DECIDABLE_STATUSES = {AccessRequestStatus.ACCEPTED, AccessRequestStatus.REJECTED}


def parse_decision(value: str) -> AccessRequestStatus:
    normalized = value.strip().lower() if isinstance(value, str) else ""
    aliases = {"accept": AccessRequestStatus.ACCEPTED, "reject": AccessRequestStatus.REJECTED}
    if normalized in aliases:
        return aliases[normalized]
    try:
        decision = AccessRequestStatus(normalized)
    except ValueError:
        decision = None
    if decision not in DECIDABLE_STATUSES:
        raise ValidationError('new_status must be either "accepted" or "rejected"')
    return decision


class AccessRequestService:
    """Request/accept/reject/revoke workflow; the only path that creates or removes access grants."""

    def __init__(self, directory: DirectoryService | None = None) -> None:
        self._directory = directory or directory_service

    def send_request(self, session: Session, viewer: Viewer, receiver_identifier: str) -> AccessRequestRead:
        with tracer.start_as_current_span("access.request.send") as span:
            span.set_attribute("requester_id", str(viewer.user_id))
            if viewer.correlation_id:
                span.set_attribute("correlation_id", viewer.correlation_id)

            # Resolved before any write so a raw email never reaches an id column.
            receiver = self._directory.resolve_identifier(session, receiver_identifier)

            existing = session.scalar(
                select(AccessRequest).where(
                    and_(
                        AccessRequest.requester_id == viewer.user_id,
                        AccessRequest.receiver_id == receiver.id,
                        AccessRequest.status.in_(OPEN_REQUEST_STATUSES),
                    )
                )
            )
            if existing is not None:
                raise ConflictError(
                    "an access request between these users already exists",
                    details={"request_id": str(existing.id), "status": existing.status},
                )

            request = AccessRequest(
                requester_id=viewer.user_id,
                receiver_id=receiver.id,
                status=AccessRequestStatus.PENDING.value,
            )
            session.add(request)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise ConflictError("an access request between these users already exists")

            session.refresh(request)
            span.set_attribute("request_id", str(request.id))
            observe_access_request_transition(AccessRequestStatus.PENDING.value)
            logger.info(
                "access_request.sent",
                extra={
                    "request_id": str(request.id),
                    "requester_id": str(viewer.user_id),
                    "receiver_id": str(receiver.id),
                },
            )
            return AccessRequestRead.model_validate(request)

    def respond_to_request(
        self,
        session: Session,
        viewer: Viewer,
        request_id: uuid.UUID,
        new_status: str,
    ) -> AccessRequestRead:
        decision = parse_decision(new_status)

        with tracer.start_as_current_span("access.request.respond") as span:
            span.set_attribute("request_id", str(request_id))
            span.set_attribute("decision", decision.value)
            if viewer.correlation_id:
                span.set_attribute("correlation_id", viewer.correlation_id)

            request = self._get_request(session, request_id)
            if request.receiver_id != viewer.user_id:
                raise ForbiddenError("only the receiver can respond to this access request")

            if request.status == AccessRequestStatus.PENDING.value:
                if self._transition_pending(session, request, decision):
                    return AccessRequestRead.model_validate(request)
                # Another responder decided the request first.
                session.refresh(request)

            return self._confirm_decided(session, request, decision)

    def revoke_request(self, session: Session, viewer: Viewer, request_id: uuid.UUID) -> None:
        with tracer.start_as_current_span("access.request.revoke") as span:
            span.set_attribute("request_id", str(request_id))
            if viewer.correlation_id:
                span.set_attribute("correlation_id", viewer.correlation_id)

            request = self._get_request(session, request_id)
            if request.requester_id != viewer.user_id:
                raise ForbiddenError("only the requester can revoke this access request")
            if request.status != AccessRequestStatus.ACCEPTED.value:
                raise ValidationError(
                    f"only accepted access requests can be revoked (current status: {request.status})"
                )

            edge = self._edge_for(session, request)
            try:
                result = session.execute(
                    update(AccessRequest)
                    .where(
                        and_(
                            AccessRequest.id == request.id,
                            AccessRequest.status == AccessRequestStatus.ACCEPTED.value,
                        )
                    )
                    .values(status=AccessRequestStatus.REVOKED.value, updated_at=utcnow())
                )
                if result.rowcount == 0:
                    session.rollback()
                    raise ValidationError("access request is no longer accepted")
                removed = 0
                if not self._edge_recorded_elsewhere(session, request, edge):
                    removed = remove_grant(session, edge)
                remove_permissions_granted_by(session, user_id=request.receiver_id, granted_by=request.requester_id)
                session.commit()
            except ValidationError:
                raise
            except Exception:
                session.rollback()
                raise

            observe_access_request_transition(AccessRequestStatus.REVOKED.value)
            logger.info(
                "access_request.revoked",
                extra={
                    "request_id": str(request.id),
                    "owner_user_id": str(edge.owner_user_id),
                    "grantee_user_id": str(edge.grantee_user_id),
                    "grants_removed": removed,
                },
            )

    def list_pending_requests(self, session: Session, viewer: Viewer) -> list[PendingAccessRequestRead]:
        rows = session.execute(
            select(AccessRequest, UserProfile)
            .outerjoin(UserProfile, UserProfile.id == AccessRequest.requester_id)
            .where(
                and_(
                    AccessRequest.receiver_id == viewer.user_id,
                    AccessRequest.status == AccessRequestStatus.PENDING.value,
                )
            )
            .order_by(AccessRequest.created_at.desc())
        ).all()
        return [
            PendingAccessRequestRead(
                id=request.id,
                requester=UserSummary(
                    id=request.requester_id,
                    email=requester.email if requester is not None else "Unknown User",
                    name=(requester.name or requester.email) if requester is not None else "Unknown",
                ),
                status=request.status,
                created_at=request.created_at,
            )
            for request, requester in rows
        ]

    def list_access_history(self, session: Session, viewer: Viewer) -> list[AccessHistoryRead]:
        requests = session.scalars(
            select(AccessRequest)
            .where(or_(AccessRequest.requester_id == viewer.user_id, AccessRequest.receiver_id == viewer.user_id))
            .order_by(AccessRequest.updated_at.desc())
        ).all()
        emails = self._emails_for(session, {r.requester_id for r in requests} | {r.receiver_id for r in requests})
        return [
            AccessHistoryRead(
                id=request.id,
                requester_id=request.requester_id,
                receiver_id=request.receiver_id,
                requester_email=emails.get(request.requester_id, "Unknown"),
                receiver_email=emails.get(request.receiver_id, "Unknown"),
                status=request.status,
                created_at=request.created_at,
                updated_at=request.updated_at,
            )
            for request in requests
        ]

    def list_managed_users(self, session: Session, viewer: Viewer) -> list[ManagedUserRead]:
        requests = session.scalars(
            select(AccessRequest)
            .where(
                and_(
                    AccessRequest.requester_id == viewer.user_id,
                    AccessRequest.status == AccessRequestStatus.ACCEPTED.value,
                )
            )
            .order_by(AccessRequest.created_at.asc())
        ).all()
        emails = self._emails_for(session, {request.receiver_id for request in requests})
        return [
            ManagedUserRead(
                access_request_id=request.id,
                user_id=request.receiver_id,
                email=emails.get(request.receiver_id, "Unknown"),
                created_at=request.created_at,
            )
            for request in requests
        ]

    def _transition_pending(self, session: Session, request: AccessRequest, decision: AccessRequestStatus) -> bool:
        edge = self._derive_edge(session, request) if decision == AccessRequestStatus.ACCEPTED else None
        values: dict[str, object] = {"status": decision.value, "updated_at": utcnow()}
        if edge is not None:
            values["grant_owner_id"] = edge.owner_user_id
            values["grant_grantee_id"] = edge.grantee_user_id

        # Status change and grant insert commit together or not at all.
        try:
            result = session.execute(
                update(AccessRequest)
                .where(
                    and_(
                        AccessRequest.id == request.id,
                        AccessRequest.status == AccessRequestStatus.PENDING.value,
                    )
                )
                .values(**values)
            )
            if result.rowcount == 0:
                session.rollback()
                return False
            if edge is not None:
                ensure_grant(session, edge)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("access grant could not be recorded")
        except Exception:
            session.rollback()
            raise

        session.refresh(request)
        observe_access_request_transition(decision.value)
        extra: dict[str, object] = {
            "request_id": str(request.id),
            "requester_id": str(request.requester_id),
            "receiver_id": str(request.receiver_id),
            "decision": decision.value,
        }
        if edge is not None:
            extra["owner_user_id"] = str(edge.owner_user_id)
            extra["grantee_user_id"] = str(edge.grantee_user_id)
        logger.info("access_request.decided", extra=extra)
        return True

    def _confirm_decided(
        self,
        session: Session,
        request: AccessRequest,
        decision: AccessRequestStatus,
    ) -> AccessRequestRead:
        if request.status != decision.value:
            raise ValidationError(f"access request is already {request.status}")

        if decision == AccessRequestStatus.ACCEPTED:
            # Repeated accepts converge on the same grant.
            try:
                ensure_grant(session, self._edge_for(session, request))
                session.commit()
            except Exception:
                session.rollback()
                raise
        return AccessRequestRead.model_validate(request)

    def _derive_edge(self, session: Session, request: AccessRequest) -> GrantEdge:
        roles = self._directory.get_roles(session, [request.requester_id, request.receiver_id])
        return derive_grant_edge(
            requester_id=request.requester_id,
            requester_role=roles[request.requester_id],
            receiver_id=request.receiver_id,
            receiver_role=roles[request.receiver_id],
        )

    def _edge_for(self, session: Session, request: AccessRequest) -> GrantEdge:
        if request.grant_owner_id is not None and request.grant_grantee_id is not None:
            return GrantEdge(owner_user_id=request.grant_owner_id, grantee_user_id=request.grant_grantee_id)
        return self._derive_edge(session, request)

    @staticmethod
    def _edge_recorded_elsewhere(session: Session, request: AccessRequest, edge: GrantEdge) -> bool:
        """True when another accepted request still relies on the same grant."""

        other_id = session.scalar(
            select(AccessRequest.id)
            .where(
                and_(
                    AccessRequest.id != request.id,
                    AccessRequest.status == AccessRequestStatus.ACCEPTED.value,
                    AccessRequest.grant_owner_id == edge.owner_user_id,
                    AccessRequest.grant_grantee_id == edge.grantee_user_id,
                )
            )
            .limit(1)
        )
        return other_id is not None

    @staticmethod
    def _get_request(session: Session, request_id: uuid.UUID) -> AccessRequest:
        request = session.get(AccessRequest, request_id)
        if request is None:
            raise NotFoundError("access request not found")
        return request

    @staticmethod
    def _emails_for(session: Session, user_ids: set[uuid.UUID]) -> dict[uuid.UUID, str]:
        if not user_ids:
            return {}
        rows = session.execute(select(UserProfile.id, UserProfile.email).where(UserProfile.id.in_(user_ids))).all()
        return {row[0]: row[1] for row in rows}


access_request_service = AccessRequestService()
