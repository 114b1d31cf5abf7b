import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from matchrelay.config import settings
from matchrelay.api.v1 import outbox
from matchrelay.core.logging_config import setup_logging
from matchrelay.core.redis import close_redis
from matchrelay.middleware.api_key import APIKeyMiddleware
from matchrelay.middleware.logging import LoggingMiddleware
from matchrelay.middleware.monitoring import MonitoringMiddleware
from matchrelay.middleware.request_id import RequestIDMiddleware
from matchrelay.monitoring import metrics
from matchrelay.services.health_service import get_detailed_health

setup_logging(settings.LOG_LEVEL)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME}, data dir {settings.DATA_DIR}")
    yield
    close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Durable outbox for hockey match results.

    ## Channels
		* **document**: match export files sent to a Telegram chat
		* **http**: finished-game JSON uploaded to the scoreboard server

    Items are queued here and delivered by Celery retry sweeps.
    """,
    version=settings.APP_VERSION,
    openapi_tags=[
        {"name": "outbox", "description": "Queue deliverables and inspect their state"},
        {"name": "monitoring", "description": "System monitoring"},
    ],
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc" if settings.DEBUG else None,
)

# =====================================
# Configure Middleware Stack
# =====================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)

app.add_middleware(MonitoringMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(LoggingMiddleware)

if settings.REQUIRE_API_KEY:
    app.add_middleware(APIKeyMiddleware, exclude_paths=["/docs", "/redoc", "/openapi.json", "/internal"])

# Include routers
app.include_router(outbox.router, prefix=f"{settings.API_V1_PREFIX}/outbox", tags=["outbox"])

# Monitoring endpoints (internal use)
if settings.EXPOSE_METRICS:
    app.include_router(
        metrics.router,
        prefix="/internal",
        tags=["monitoring"]
    )


@app.get("/health", tags=["monitoring"])
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.APP_VERSION
    }


@app.get("/health/detailed", tags=["monitoring"])
def detailed_health_check():
    return get_detailed_health()
