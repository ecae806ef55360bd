from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

access_request_transitions_total = Counter(
    "access_request_transitions_total",
    "Access request state transitions by resulting status",
    ["status"],
)

access_grant_mutations_total = Counter(
    "access_grant_mutations_total",
    "Access grant inserts and deletes",
    ["action"],
)

visibility_resolutions_total = Counter(
    "visibility_resolutions_total",
    "Visibility resolver evaluations by outcome",
    ["outcome"],
)

visibility_owner_set_size = Histogram(
    "visibility_owner_set_size",
    "Size of resolved accessible owner sets",
    buckets=(1, 2, 5, 10, 25, 50, 100, 250, 1000),
)

rls_denied_reads_count = Counter(
    "rls_denied_reads_count",
    "Total denied reads by RLS",
    ["resource"],
)

rls_denied_writes_count = Counter(
    "rls_denied_writes_count",
    "Total denied writes by RLS",
    ["resource", "action"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_access_request_transition(status: str) -> None:
    access_request_transitions_total.labels(status=status).inc()


def observe_grant_mutation(action: str) -> None:
    access_grant_mutations_total.labels(action=action).inc()


def observe_visibility_resolution(outcome: str, owner_count: int) -> None:
    visibility_resolutions_total.labels(outcome=outcome).inc()
    if owner_count > 0:
        visibility_owner_set_size.observe(owner_count)


def observe_rls_denied_read(resource: str) -> None:
    rls_denied_reads_count.labels(resource=resource).inc()


def observe_rls_denied_write(resource: str, action: str) -> None:
    rls_denied_writes_count.labels(resource=resource, action=action).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
