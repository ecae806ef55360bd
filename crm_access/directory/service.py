from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import String, func, select, type_coerce
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_access.directory.models import UserProfile, UserRole, UserStatus
from crm_access.directory.schemas import UserProfileRead
from crm_access.platform.security.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError


logger = logging.getLogger("crm_access.directory")


@dataclass
class Viewer:
    user_id: uuid.UUID
    role: UserRole
    email: str
    external_id: str
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def normalize_email(value: str) -> str:
    return value.strip().lower()


def parse_user_id(value: object) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return uuid.UUID(value.strip())
    except ValueError:
        return None


class DirectoryService:
    def sync_identity(self, session: Session, *, external_id: str, email: str, name: str | None = None) -> UserProfile:
        """Provision or refresh the profile of an authenticated external identity.

        New identities always start with the ``user`` role; the role is never taken
        from the identity provider.
        """

        external_id = external_id.strip()
        if not external_id:
            raise ValidationError("external identity is required")
        normalized_email = normalize_email(email)
        if not normalized_email:
            raise ValidationError("email is required")

        profile = session.scalar(select(UserProfile).where(UserProfile.external_id == external_id))
        if profile is not None:
            changed = False
            if profile.email != normalized_email:
                profile.email = normalized_email
                changed = True
            if name and profile.name != name:
                profile.name = name
                changed = True
            if changed:
                self._commit_identity(session, external_id)
                session.refresh(profile)
            return profile

        profile = UserProfile(
            external_id=external_id,
            email=normalized_email,
            name=name,
            role=UserRole.USER,
            status=UserStatus.ACTIVE.value,
        )
        session.add(profile)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            # A concurrent first login may have provisioned the same identity.
            existing = session.scalar(select(UserProfile).where(UserProfile.external_id == external_id))
            if existing is None:
                raise ConflictError("email is already bound to another identity")
            return existing

        session.refresh(profile)
        logger.info("directory.profile_provisioned", extra={"user_id": str(profile.id), "external_id": external_id})
        return profile

    def resolve_identifier(self, session: Session, identifier: str) -> UserProfile:
        """Resolve an email, internal id or external id to a profile."""

        raw = identifier.strip() if isinstance(identifier, str) else ""
        if not raw:
            raise ValidationError("user identifier is required")

        if "@" in raw:
            profile = session.scalar(select(UserProfile).where(func.lower(UserProfile.email) == normalize_email(raw)))
            if profile is None:
                raise NotFoundError(f"user with email {raw} not found")
            return profile

        user_id = parse_user_id(raw)
        if user_id is not None:
            profile = session.get(UserProfile, user_id)
            if profile is not None:
                return profile

        profile = session.scalar(select(UserProfile).where(UserProfile.external_id == raw))
        if profile is None:
            raise NotFoundError(f"user {raw} not found")
        return profile

    def get_profile(self, session: Session, user_id: uuid.UUID) -> UserProfile:
        profile = session.get(UserProfile, user_id)
        if profile is None:
            raise NotFoundError("user not found")
        return profile

    def get_roles(self, session: Session, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, UserRole]:
        if not user_ids:
            return {}
        rows = session.execute(
            select(UserProfile.id, type_coerce(UserProfile.role, String)).where(UserProfile.id.in_(user_ids))
        ).all()
        roles = {row[0]: UserRole.parse(row[1]) for row in rows}
        return {user_id: roles.get(user_id, UserRole.USER) for user_id in user_ids}

    def list_profiles(self, session: Session) -> list[UserProfileRead]:
        rows = session.scalars(select(UserProfile).order_by(UserProfile.email.asc())).all()
        return [UserProfileRead.model_validate(row) for row in rows]

    def list_profiles_by_ids(self, session: Session, user_ids: set[uuid.UUID]) -> list[UserProfileRead]:
        if not user_ids:
            return []
        rows = session.scalars(
            select(UserProfile).where(UserProfile.id.in_(user_ids)).order_by(UserProfile.email.asc())
        ).all()
        return [UserProfileRead.model_validate(row) for row in rows]

    def set_role(self, session: Session, viewer: Viewer, target_user_id: uuid.UUID, role: UserRole) -> UserProfileRead:
        if not viewer.is_admin:
            raise ForbiddenError("only admins can change user roles")

        profile = self.get_profile(session, target_user_id)
        previous = UserRole.parse(profile.role)
        profile.role = role
        session.commit()
        session.refresh(profile)
        logger.info(
            "directory.role_changed",
            extra={
                "user_id": str(profile.id),
                "actor_user_id": str(viewer.user_id),
                "role": role.value,
                "previous_role": previous.value,
            },
        )
        return UserProfileRead.model_validate(profile)

    @staticmethod
    def _commit_identity(session: Session, external_id: str) -> None:
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError(f"email for identity {external_id} is already bound to another identity")


directory_service = DirectoryService()
