from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from buildmart.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("buildmart.request")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access log line and one metrics observation per request, labelled by route template."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = _elapsed_ms(started)
            path = resolve_http_path_label(request)
            observe_http_request(method=request.method, path=path, status=status_code, duration=duration_ms / 1000)

            context = getattr(request.state, "context", None)
            fields = {
                "method": request.method,
                "path": path,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "client_ip": getattr(context, "client_ip", None),
                "user_id": getattr(context, "user_id", None),
            }
            if status_code >= 500:
                logger.error("http.request", extra=fields)
            else:
                logger.info("http.request", extra=fields)
