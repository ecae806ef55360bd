from __future__ import annotations

import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crm_access.context import correlation_scope, is_acceptable_correlation_id


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Adopt ``X-Correlation-Id`` (or mint one) for the request, its logs, spans and error envelopes."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        supplied = request.headers.get("x-correlation-id")
        correlation_id = supplied if is_acceptable_correlation_id(supplied) else str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        with correlation_scope(correlation_id):
            response = await call_next(request)

        response.headers["x-correlation-id"] = correlation_id
        return response
