"""Statement Ingestion API: FastAPI entry point.

Serves the statement upload endpoint from apps/api/domains/ingestion/
and the health probes. The parsing itself lives in
packages/ingestion_engine/, which has no web dependencies.
"""

import structlog
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.api.core.config import settings
from apps.api.core.errors import register_error_handlers
from apps.api.core.logging import setup_logging
from apps.api.domains.ingestion.router import router as ingestion_router
from apps.api.routers import health

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup/shutdown hooks."""
    setup_logging(log_level=settings.log_level, json_output=settings.json_logs)
    config = settings.pipeline_config()
    logger.info(
        "app_starting",
        version=settings.APP_VERSION,
        external_extraction=config.external_enabled,
        providers=[p.name for p in config.providers],
        strict_privacy=config.strict_privacy,
    )
    yield
    logger.info("app_stopping")


app = FastAPI(
    title="Statement Ingestion API",
    description="Turns bank and card statement spreadsheets into normalized transactions.",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingestion_router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")
