from crm_access.access.models import AccessGrant, AccessRequest, AccessRequestStatus, AssigneeLink, UserPermission

__all__ = [
    "AccessGrant",
    "AccessRequest",
    "AccessRequestStatus",
    "AssigneeLink",
    "UserPermission",
]
