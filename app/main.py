"""FastAPI application for media asset reconciliation and enrichment.

This is the web service entry point. Workflow runs are executed by the
separate worker process (app.worker); this service only creates and
enqueues them.

Error Mapping:
    ClientError                  → 400
    WebhookSignatureError        → 401
    NotFoundError                → 404
    InvalidStateTransitionError  → 409
    UncorrelatedEventError       → 409 (provider redelivers)
    ExternalServiceError         → 502
    ConfigurationError           → 503
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.database import dispose_engine
from app.exceptions import (
    ClientError,
    ConfigurationError,
    ExternalServiceError,
    InvalidStateTransitionError,
    NotFoundError,
    UncorrelatedEventError,
    WebhookSignatureError,
)
from app.routes import assets, webhooks, workflows
from app.utils.logging import configure_logging

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Configure logging on startup; dispose the database engine on shutdown."""
    configure_logging()
    log.info("api_starting")

    yield  # Application runs here

    await dispose_engine()
    log.info("api_stopped")


app = FastAPI(
    title="Media Asset Pipeline",
    description="Encoding webhook reconciliation and AI enrichment workflows for video assets",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(webhooks.router)
app.include_router(assets.router)
app.include_router(workflows.router)


def _error_response(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


@app.exception_handler(ClientError)
async def client_error_handler(request: Request, exc: ClientError) -> JSONResponse:
    log.warning("client_error", path=request.url.path, error=str(exc))
    return _error_response(status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(WebhookSignatureError)
async def signature_error_handler(request: Request, exc: WebhookSignatureError) -> JSONResponse:
    log.warning("unauthorized", path=request.url.path, error=str(exc))
    return _error_response(status.HTTP_401_UNAUTHORIZED, "Invalid signature")


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, str(exc))


@app.exception_handler(InvalidStateTransitionError)
async def invalid_transition_handler(
    request: Request, exc: InvalidStateTransitionError
) -> JSONResponse:
    log.warning("invalid_state_transition", path=request.url.path, error=str(exc))
    return _error_response(status.HTTP_409_CONFLICT, str(exc))


@app.exception_handler(UncorrelatedEventError)
async def uncorrelated_event_handler(request: Request, exc: UncorrelatedEventError) -> JSONResponse:
    log.warning(
        "webhook_event_deferred",
        path=request.url.path,
        lookup=exc.lookup,
        key=exc.key,
    )
    return _error_response(status.HTTP_409_CONFLICT, str(exc))


@app.exception_handler(ExternalServiceError)
async def external_service_handler(request: Request, exc: ExternalServiceError) -> JSONResponse:
    log.error(
        "external_service_failed",
        path=request.url.path,
        service=exc.service,
        status_code=exc.status_code,
        error=str(exc),
    )
    return _error_response(status.HTTP_502_BAD_GATEWAY, f"Upstream service failed: {exc.service}")


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    log.error("configuration_error", path=request.url.path, error=str(exc))
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Service not configured")


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> JSONResponse:
    """Health check endpoint for deployment validation."""
    return JSONResponse(content={"status": "healthy", "service": "media-asset-pipeline"})


if __name__ == "__main__":
    import uvicorn

    # Binding to 0.0.0.0 is intentional for container deployments
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",  # noqa: S104
        port=8000,
        reload=True,
    )
