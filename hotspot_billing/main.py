"""
Main Application - captive portal billing API.

Serves the package catalog and purchase sessions to the hotspot login page.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from hotspot_billing.api.dependencies import get_session_registry, set_session_registry
from hotspot_billing.api.routes import router
from hotspot_billing.api.status_routes import router as status_router
from hotspot_billing.config import settings
from hotspot_billing.observability import (
    get_logger,
    log_context,
    metrics,
    setup_logging,
    setup_tracing,
)
from hotspot_billing.observability.tracing import instrument_fastapi

# Logging must be configured before the first logger is bound
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log configuration on startup; cancel pending purchases on shutdown."""
    logger.info(
        "hotspot_billing_starting",
        environment=settings.environment,
        payment_api=settings.api_base_url,
        polling_interval_ms=settings.polling_interval_ms,
        max_polling_attempts=settings.max_polling_attempts,
        catalog_enforced=settings.enforce_package_catalog,
        tracing_enabled=settings.tracing_enabled,
    )
    if settings.placeholder_identity_enabled:
        logger.warning(
            "placeholder_identity_enabled",
            unsafe=True,
            placeholder_ip=settings.placeholder_ip,
            placeholder_mac=settings.placeholder_mac,
        )

    yield

    registry = get_session_registry()
    logger.info("hotspot_billing_stopping", active_sessions=registry.active_count())
    await registry.shutdown()
    set_session_registry(None)


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Flatten schema errors for the portal form.

    `detail` is the first message, ready to show next to the form;
    `errors` lists every offending field.
    """
    errors = [
        {
            # Drop the leading "body"/"query" segment
            "field": ".".join(str(part) for part in error.get("loc", ())[1:]) or None,
            "message": error.get("msg"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]
    logger.info("purchase_request_invalid", path=request.url.path, errors=errors)
    return JSONResponse(
        status_code=422,
        content={"detail": errors[0]["message"] if errors else "Invalid request", "errors": errors},
    )


setup_tracing()
instrument_fastapi(app)

# The login page is served by the hotspot itself, from another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


def _route_label(request: Request) -> str:
    """Route template (/v1/purchases/{session_id}) so session ids stay out of labels."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


@app.middleware("http")
async def request_logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Time each request and tag its log lines with the request id."""
    started = time.perf_counter()
    method = request.method

    with log_context(request_id=request.headers.get("X-Request-ID", "-")):
        try:
            response = await call_next(request)
        except Exception as exc:
            endpoint = _route_label(request)
            elapsed = time.perf_counter() - started
            metrics.record_http_request(endpoint, method, 500, elapsed)
            metrics.record_error(type(exc).__name__, "http_request")
            logger.error(
                "request_failed",
                method=method,
                endpoint=endpoint,
                duration_seconds=round(elapsed, 4),
                exc_info=True,
            )
            raise

        endpoint = _route_label(request)
        elapsed = time.perf_counter() - started
        metrics.record_http_request(endpoint, method, response.status_code, elapsed)
        logger.info(
            "request_handled",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
            duration_seconds=round(elapsed, 4),
        )
        return response


app.include_router(router)
app.include_router(status_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Service banner."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "environment": settings.environment,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus scrape endpoint; 404 when metrics are disabled."""
    if not settings.metrics_enabled:
        return Response("metrics disabled", status_code=404, media_type="text/plain")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "hotspot_billing.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
