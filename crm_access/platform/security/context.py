from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from crm_access.directory.models import UserRole


@dataclass(slots=True)
class VisibilityScope:
    """Accessible owner set of one viewer, bound to a session for enforcement."""

    viewer_id: uuid.UUID
    role: UserRole = UserRole.USER
    owner_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def allows(self, owner_id: uuid.UUID | None) -> bool:
        if self.is_admin:
            return True
        return owner_id is not None and owner_id in self.owner_ids
