from crm_access.directory.models import UserProfile, UserRole, UserStatus

__all__ = [
    "UserProfile",
    "UserRole",
    "UserStatus",
]
