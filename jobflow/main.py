"""
JobFlow - lead management for contracting companies.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from jobflow.config import get_settings
from jobflow.api.router import api_router
from jobflow.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("jobflow")

DEFAULT_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("JobFlow starting up (env=%s)", settings.app_env)

    if not settings.webhook_signing_key:
        logger.warning(
            "WEBHOOK_SIGNING_KEY not set - CRM webhooks are accepted unsigned. "
            "Configure a signing key for production."
        )

    worker_tasks: list[asyncio.Task] = []

    if settings.crm_sync_enabled:
        from jobflow.workers.crm_sync import run_crm_sync
        worker_tasks.append(asyncio.create_task(run_crm_sync()))
    else:
        logger.info("CRM sync worker disabled (CRM_SYNC_ENABLED=false)")

    yield

    # Let in-flight sync pushes finish before stopping workers
    from jobflow.services.sync_dispatcher import get_sync_dispatcher
    await get_sync_dispatcher().drain(timeout=10.0)

    logger.info("JobFlow shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        await asyncio.gather(*worker_tasks, return_exceptions=True)
    logger.info("JobFlow shutdown complete")


def _allowed_origins(raw: str) -> list[str]:
    extra = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return DEFAULT_ORIGINS + [o for o in extra if o not in DEFAULT_ORIGINS]


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="JobFlow",
        description="Lead reconciliation and sales pipeline for contracting companies",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS - allow dashboard origins
    application.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=[
            "Content-Type", "X-Correlation-ID", "X-Company-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()
