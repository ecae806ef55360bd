from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


@dataclass
class RequestContext:
    request_id: str
    correlation_id: str
    # External identity from the bearer token.
    user_id: str | None = None
    # Directory profile id, set once the caller has been synced.
    viewer_id: str | None = None


def get_request_context(request: Request) -> RequestContext | None:
    context = getattr(request.state, "context", None)
    return context if isinstance(context, RequestContext) else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = getattr(request.state, "correlation_id", None) or ""
        request.state.context = RequestContext(request_id=correlation_id, correlation_id=correlation_id)
        response = await call_next(request)
        response.headers["x-request-id"] = request.state.context.request_id
        return response
