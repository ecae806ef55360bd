from crm_access.platform.security.context import VisibilityScope
from crm_access.platform.security.errors import (
    AccessControlError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RowLevelSecurityError,
    UnauthenticatedError,
    ValidationError,
)
from crm_access.platform.security.repository import OwnerScopedRepository
from crm_access.platform.security.resolver import accessible_owner_ids, can_access_owner, resolve_visibility_scope
from crm_access.platform.security.rls import OwnerScopedMixin, apply_rls_filter, validate_rls_read, validate_rls_write
from crm_access.platform.security.session import (
    bind_visibility_scope,
    clear_visibility_scope,
    get_visibility_scope,
    visibility_scope,
)

__all__ = [
    "VisibilityScope",
    "AccessControlError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "RowLevelSecurityError",
    "UnauthenticatedError",
    "ValidationError",
    "OwnerScopedRepository",
    "OwnerScopedMixin",
    "accessible_owner_ids",
    "can_access_owner",
    "resolve_visibility_scope",
    "apply_rls_filter",
    "validate_rls_read",
    "validate_rls_write",
    "bind_visibility_scope",
    "clear_visibility_scope",
    "get_visibility_scope",
    "visibility_scope",
]
