import logging
from contextlib import asynccontextmanager

import httpx
import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from app.api.v1.router import api_router
from app.api.v1.health import router as health_router
from app.config import settings
from app.core.logging_config import configure_logging
from app.core.redis import redis_client
from app.middleware.request_id import RequestIDMiddleware

# Configure structured logging (must happen before any logger is created)
configure_logging(log_format=settings.LOG_FORMAT, log_level=settings.LOG_LEVEL)

# Initialize Sentry error tracking
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.SENTRY_ENVIRONMENT,
        release=f"productshots@{settings.APP_VERSION}",
        send_default_pii=False,
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(
        f"Harvest mode={settings.HARVEST_FORMAT_MODE}, "
        f"probe failure policy={settings.PROBE_FAILURE_POLICY}, "
        f"page cache={'on' if settings.CACHE_ENABLED else 'off'}"
    )
    # One pooled client for Firecrawl, image downloads, probes and webhooks
    app.state.http_client = httpx.AsyncClient(
        headers={"User-Agent": f"{settings.APP_NAME}/{settings.APP_VERSION}"},
        timeout=httpx.Timeout(settings.IMAGE_FETCH_TIMEOUT, connect=5.0),
        limits=httpx.Limits(
            max_connections=settings.DEDUP_CONCURRENCY * 4,
            max_keepalive_connections=settings.DEDUP_CONCURRENCY * 2,
        ),
    )

    yield

    logger.info("Shutting down...")
    await app.state.http_client.aclose()
    await redis_client.close()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="ProductShots - extract a small, deduplicated set of product images "
    "from a website for marketing use.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Request ID middleware (must be added before other middleware)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(GZipMiddleware, minimum_size=500)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)

# Health & metrics routes (no /v1 prefix)
app.include_router(health_router)


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "status": "running",
    }
