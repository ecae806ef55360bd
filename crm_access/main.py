import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from crm_access.api.errors import register_exception_handlers
from crm_access.api.routes import router as api_router
from crm_access.core.config import get_settings
from crm_access.core.context import RequestContextMiddleware
from crm_access.logging import configure_logging
from crm_access.middleware.correlation_id import CorrelationIdMiddleware
from crm_access.middleware.request_logging import RequestLoggingMiddleware
from crm_access.otel import correlation_request_hook, setup_otel


configure_logging(get_settings().log_level)
logger = logging.getLogger("crm_access.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(
        "system.started",
        extra={"service": settings.app_name, "environment": settings.app_env},
    )
    yield


app = FastAPI(title="CRM Access API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)
register_exception_handlers(app)

settings = get_settings()
setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=correlation_request_hook)
