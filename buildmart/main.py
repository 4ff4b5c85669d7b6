from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from buildmart import events
from buildmart.api.errors import install_exception_handlers
from buildmart.api.routes import router as api_router
from buildmart.core.config import get_settings
from buildmart.core.context import RequestContextMiddleware
from buildmart.core.rbac import build_permission_cache, set_permission_cache
from buildmart.logging import configure_logging
from buildmart.middleware.request_logging import RequestLoggingMiddleware
from buildmart.otel import server_request_hook, setup_otel


settings = get_settings()
configure_logging(settings)
logger = logging.getLogger("buildmart.lifecycle")
_subscriptions_registered = False

_logged_event_types = [
    "system.started",
    "inquiry.created",
    "inquiry.quoted",
    "inquiry.cancelled",
    "inquiry.converted_to_lead",
    "lead.created",
    "lead.converted_to_client",
    "quotation.created",
    "quotation.sent",
    "sales_order.created",
]


def _on_domain_event(envelope: events.EventEnvelope) -> None:
    logger.info("domain_event", extra={"event_name": envelope["event_type"]})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        for event_type in _logged_event_types:
            events.subscribe(event_type, _on_domain_event)
        _subscriptions_registered = True
    events.publish("system.started", {"service": "api"})
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
# Added last so the request context wraps request logging.
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestContextMiddleware)
install_exception_handlers(app)
app.include_router(api_router)

set_permission_cache(build_permission_cache(settings))
setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=server_request_hook)
