import json
import logging

from fastapi import APIRouter
from fastapi.responses import Response

from app.config import settings
from app.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/health",
    summary="Liveness check",
    description="Basic liveness probe that returns HTTP 200 if the application process is running.",
)
async def liveness():
    """Liveness probe, returns 200 if the process is running."""
    return {"status": "healthy"}


@router.get(
    "/health/ready",
    summary="Readiness check",
    description="Readiness probe that verifies connectivity to the Redis page cache. Returns HTTP 503 if it is unavailable. Jobs still run without Redis, uncached.",
)
async def readiness():
    """Readiness probe: Redis and Firecrawl configuration."""
    checks = {}

    from app.core.redis import redis_client

    if not settings.CACHE_ENABLED:
        checks["redis"] = "disabled"
    elif await redis_client.ping():
        checks["redis"] = "ok"
    else:
        checks["redis"] = "error: ping failed"

    checks["firecrawl"] = "ok" if settings.FIRECRAWL_API_KEY else "error: no API key"

    all_ok = all(v in ("ok", "disabled") for v in checks.values())
    status_code = 200 if all_ok else 503

    return Response(
        content=json.dumps(
            {"status": "ready" if all_ok else "not ready", "checks": checks}
        ),
        status_code=status_code,
        media_type="application/json",
    )


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose application metrics in Prometheus exposition format. Returns HTTP 404 if metrics collection is disabled.",
)
async def metrics():
    """Prometheus metrics endpoint."""
    if not settings.METRICS_ENABLED:
        return Response(content="Metrics disabled", status_code=404)

    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )
