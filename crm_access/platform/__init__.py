from crm_access.platform.security import (
    OwnerScopedMixin,
    OwnerScopedRepository,
    VisibilityScope,
    accessible_owner_ids,
    apply_rls_filter,
    bind_visibility_scope,
    resolve_visibility_scope,
    validate_rls_read,
    validate_rls_write,
)

__all__ = [
    "OwnerScopedMixin",
    "OwnerScopedRepository",
    "VisibilityScope",
    "accessible_owner_ids",
    "apply_rls_filter",
    "bind_visibility_scope",
    "resolve_visibility_scope",
    "validate_rls_read",
    "validate_rls_write",
]
