"""
ubl-sender - SUNAT document delivery service

FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from ublsender.config import settings
from ublsender.database import engine
from ublsender.logging_config import configure_logging, logger
from ublsender.sentry_config import configure_sentry
from ublsender.middleware.logging import LoggingMiddleware
from ublsender.routes.metrics import router as metrics_router
from ublsender.routes.documents import router as documents_router
from ublsender.services.channel import MessageChannel
from ublsender.services.storage_service import create_storage

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the blob store client and the shared channel pool."""
    app.state.storage = create_storage(settings)
    app.state.channel = MessageChannel.from_settings(settings)
    logger.info("app_started", queue=settings.SEND_FILE_QUEUE, storage=settings.STORAGE_BACKEND)
    yield
    await app.state.channel.close()
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Schedules UBL documents for asynchronous delivery to SUNAT",
    lifespan=lifespan,
)

app.add_middleware(LoggingMiddleware)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

app.include_router(documents_router)


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    database = "connected"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health_database_failed", error=str(e))
        database = "unavailable"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
    }
