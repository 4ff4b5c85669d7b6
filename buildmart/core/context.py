"""Per-request context shared by the middleware, the log formatter and domain events.

The correlation id lives in a context variable so log records and event
envelopes pick it up without access to the request object.
"""

from __future__ import annotations

import re
import uuid
from contextvars import ContextVar
from dataclasses import dataclass

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

CORRELATION_HEADER = "x-correlation-id"
REQUEST_ID_HEADER = "x-request-id"

_MAX_CORRELATION_ID_LENGTH = 128
_CORRELATION_ID_RE = re.compile(r"^[A-Za-z0-9._:-]+$")

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def accept_correlation_id(raw: str | None) -> str:
    """Reuse a caller supplied id when it is short and header safe, otherwise mint one."""
    candidate = (raw or "").strip()
    if candidate and len(candidate) <= _MAX_CORRELATION_ID_LENGTH and _CORRELATION_ID_RE.match(candidate):
        return candidate
    return str(uuid.uuid4())


@dataclass
class RequestContext:
    correlation_id: str
    client_ip: str | None
    user_id: str | None = None


def resolve_client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = accept_correlation_id(request.headers.get(CORRELATION_HEADER))
        request.state.context = RequestContext(correlation_id=correlation_id, client_ip=resolve_client_ip(request))

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers[REQUEST_ID_HEADER] = correlation_id
        return response
