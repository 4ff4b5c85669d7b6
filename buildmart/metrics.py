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

permission_cache_hit_total = Counter(
    "permission_cache_hit_total",
    "Role permission cache hits",
)

permission_cache_miss_total = Counter(
    "permission_cache_miss_total",
    "Role permission cache misses",
)

lead_status_transitions_total = Counter(
    "lead_status_transitions_total",
    "Lead status transitions caused by inquiry events",
    ["trigger", "new_status"],
)

quotations_sent_total = Counter(
    "quotations_sent_total",
    "Quotations e-mailed to customers",
)

stock_movements_total = Counter(
    "stock_movements_total",
    "Stock movement rows written by type",
    ["movement_type"],
)

facebook_sync_total = Counter(
    "facebook_sync_total",
    "Facebook sync runs by target and outcome",
    ["target", "outcome"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_permission_cache_hit() -> None:
    permission_cache_hit_total.inc()


def observe_permission_cache_miss() -> None:
    permission_cache_miss_total.inc()


def observe_lead_status_transition(trigger: str, new_status: str) -> None:
    lead_status_transitions_total.labels(trigger=trigger, new_status=new_status).inc()


def observe_quotation_sent() -> None:
    quotations_sent_total.inc()


def observe_stock_movement(movement_type: str, count: int = 1) -> None:
    if count > 0:
        stock_movements_total.labels(movement_type=movement_type).inc(count)


def observe_facebook_sync(target: str, outcome: str) -> None:
    facebook_sync_total.labels(target=target, outcome=outcome).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
