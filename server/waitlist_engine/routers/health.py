"""Health and readiness router."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.dependencies import get_db
from ..schemas.health import HealthResponse, HealthStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

VERSION = "1.0.0"


def _liveness() -> JSONResponse:
    response_data = HealthResponse(
        status=HealthStatus.HEALTHY,
        timestamp=utcnow(),
        version=VERSION,
    )
    logger.debug("Health check requested", extra={"status": response_data.status.value})
    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json", exclude_none=True)
    )


@router.get("/health", response_model=HealthResponse)
async def health() -> JSONResponse:
    """Liveness probe: the process is up and serving requests."""
    return _liveness()


@router.post("/v1/health/ping", response_model=HealthResponse)
async def health_ping() -> JSONResponse:
    """
    Health check endpoint.

    Returns current service status and timestamp.
    """
    return _liveness()


@router.get("/ready", response_model=HealthResponse, responses={503: {"model": HealthResponse}})
async def ready(db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """Readiness probe: the database answers queries."""
    checks = {}
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.warning("Readiness check failed", extra={"check": "database", "error": str(e)})
        checks["database"] = "unavailable"

    ready_ = all(value == "ok" for value in checks.values())
    response_data = HealthResponse(
        status=HealthStatus.READY if ready_ else HealthStatus.UNAVAILABLE,
        timestamp=utcnow(),
        version=VERSION,
        checks=checks,
    )
    return JSONResponse(
        status_code=200 if ready_ else 503,
        content=response_data.model_dump(mode="json")
    )
