from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from crm_access.core.config import get_settings
from crm_access.platform.security.errors import UnauthenticatedError


@dataclass
class AuthUser:
    sub: str
    email: str
    name: str | None = None


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        raise UnauthenticatedError("missing bearer token")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise UnauthenticatedError("invalid bearer token") from exc

    subject = payload.get("sub")
    email = payload.get("email")
    if not isinstance(subject, str) or not subject or not isinstance(email, str) or not email:
        raise UnauthenticatedError("token is missing the sub or email claim")

    name = payload.get("name")
    return AuthUser(sub=subject, email=email, name=name if isinstance(name, str) else None)
