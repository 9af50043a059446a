from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from founditure_gamification.core.settings import settings
from founditure_gamification.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.gamification import get_gamification_store
from .observability.tracing import configure_tracing, flush_tracing
from .services.gamification import StorageError, get_event_publisher
from .workers import PointsReconciliationWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    reconciliation_worker = PointsReconciliationWorker(
        session_factory=_session_factory,
        interval_seconds=settings.points_reconciliation_interval_seconds,
        batch_size=settings.points_reconciliation_batch_size,
    )
    app.state.points_reconciliation_worker = reconciliation_worker

    reconciliation_enabled = settings.points_reconciliation_worker_enabled
    if reconciliation_enabled:
        reconciliation_worker.start()
        logger.info(
            "Points reconciliation worker enabled",
            interval_seconds=reconciliation_worker.interval_seconds,
            batch_size=settings.points_reconciliation_batch_size,
        )
    else:
        logger.info(
            "Points reconciliation worker disabled",
            reason="points_reconciliation_worker_enabled is false",
        )

    try:
        yield
    finally:
        if reconciliation_enabled and reconciliation_worker.is_running:
            await reconciliation_worker.stop()
        await get_event_publisher().drain()
        flush_tracing()


async def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Ledger store unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": {"message": str(exc), "errors": []}},
    )


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")),
            "message": error.get("msg", "Invalid value"),
            "code": "INVALID_VALUE",
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"message": "Invalid request", "errors": errors}},
    )


def create_app() -> FastAPI:
    """Application factory for the Founditure gamification service."""
    configure_logging(
        service_name="founditure-gamification",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
        json_output=settings.log_json,
    )

    app = FastAPI(
        title="Founditure Gamification API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="founditure-gamification",
        service_version=APP_VERSION,
        environment=settings.environment,
        exporter_endpoint=settings.otel_exporter_otlp_endpoint,
        exporter_headers=settings.otel_exporter_otlp_headers,
        enabled=settings.tracing_enabled,
    )

    get_gamification_store().attach(get_event_publisher())

    app.add_exception_handler(StorageError, _storage_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
