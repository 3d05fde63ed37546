from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from riselocal_api import models  # noqa: F401 - register mappers
from riselocal_api.core.settings import settings
from riselocal_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import RedemptionSweepWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweep_worker = RedemptionSweepWorker(
        session_factory=_session_factory,
        interval_seconds=settings.redemption_sweep_interval_seconds,
        trigger_label=settings.redemption_sweep_trigger_label,
    )
    app.state.redemption_sweep_worker = sweep_worker

    sweep_enabled = settings.redemption_sweep_worker_enabled
    if sweep_enabled:
        sweep_worker.start()
        logger.info(
            "Redemption sweep worker enabled",
            interval_seconds=sweep_worker.interval_seconds,
        )
    else:
        logger.info(
            "Redemption sweep worker disabled",
            reason="redemption_sweep_worker_enabled is false",
        )

    try:
        yield
    finally:
        if sweep_enabled and sweep_worker.is_running:
            await sweep_worker.stop()


async def _handle_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.bind(path=request.url.path, method=request.method).opt(exception=exc).error(
        "Unhandled database error",
        error_type=exc.__class__.__name__,
    )
    return JSONResponse(
        status_code=500,
        content={"success": False, "reason": "internal_error", "message": "Something went wrong. Please try again."},
    )


def create_app() -> FastAPI:
    """Application factory for the Rise Local API service."""
    configure_logging(
        service_name="riselocal-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Rise Local API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name="riselocal-api",
            service_version=APP_VERSION,
            environment=settings.environment,
        )

    app.add_exception_handler(SQLAlchemyError, _handle_database_error)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
