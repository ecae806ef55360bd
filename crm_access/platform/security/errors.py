from __future__ import annotations

from typing import Any


class AccessControlError(Exception):
    """Base error for directory, access workflow and row-level enforcement failures."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AccessControlError):
    status_code = 400
    code = "validation_error"


class UnauthenticatedError(AccessControlError):
    status_code = 401
    code = "unauthenticated"


class ForbiddenError(AccessControlError):
    status_code = 403
    code = "forbidden"


class NotFoundError(AccessControlError):
    status_code = 404
    code = "not_found"


class ConflictError(AccessControlError):
    status_code = 409
    code = "conflict"


class RowLevelSecurityError(ForbiddenError):
    """Raised when a write touches a row outside the viewer's accessible owner set."""

    code = "row_level_security"

    def __init__(self, resource: str, owner_user_id: object, action: str) -> None:
        self.resource = resource
        self.owner_user_id = owner_user_id
        self.action = action
        super().__init__(
            f"{action} denied for resource '{resource}' owned by {owner_user_id}",
            details={"resource": resource, "action": action},
        )
