"""
Health check API endpoints.
Provides health status and service information.
"""

import time
from fastapi import APIRouter, Request

from ...utils.logger import get_logger

logger = get_logger("health")

SERVICE_NAME = "CertChain Backend"
SERVICE_VERSION = "1.0.0"

router = APIRouter(
    prefix="/api/v1",
    tags=["health"],
    responses={
        404: {"description": "Not found"},
        500: {"description": "Internal server error"}
    }
)


async def _database_status(request: Request) -> str:
    """Ping MongoDB; the in-memory store is always reachable"""
    database = getattr(request.app.state, "database", None)
    if database is None:
        return "in-memory"
    await database.command("ping")
    return "connected"


@router.get(
    "/health",
    summary="Health Check",
    description="Returns the health status of the CertChain Backend service",
    response_description="Service health information"
)
async def health_check(request: Request):
    """
    Health check endpoint that returns service status and basic information.

    Returns:
        Dictionary containing service status, store and ledger mode, and timestamp
    """
    ledger_mode = request.app.state.ledger_client.mode
    try:
        database = await _database_status(request)
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "timestamp": int(time.time()),
            "version": SERVICE_VERSION,
            "database": database,
            "blockchain": ledger_mode,
        }

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {
            "status": "error",
            "service": SERVICE_NAME,
            "timestamp": int(time.time()),
            "version": SERVICE_VERSION,
            "database": "disconnected",
            "blockchain": ledger_mode,
            "error": str(e)
        }


@router.get(
    "/health/ready",
    summary="Readiness Check",
    description="Returns readiness status for Kubernetes/Docker health checks",
    response_description="Service readiness information"
)
async def readiness_check(request: Request):
    """
    Readiness check endpoint for container orchestration.
    More comprehensive than basic health check.
    """
    try:
        await _database_status(request)
        logger.info("Readiness check passed")
        return {
            "status": "ready",
            "service": SERVICE_NAME,
            "timestamp": int(time.time()),
            "dependencies": {
                "database": "healthy",
                "api": "healthy"
            }
        }

    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return {
            "status": "not_ready",
            "service": SERVICE_NAME,
            "timestamp": int(time.time()),
            "dependencies": {
                "database": "unhealthy",
                "api": "healthy"
            },
            "error": str(e)
        }


@router.get(
    "/health/live",
    summary="Liveness Check",
    description="Returns liveness status for Kubernetes/Docker health checks",
    response_description="Service liveness information"
)
async def liveness_check():
    """
    Liveness check endpoint for container orchestration.
    Simple check to verify the service is running.
    """
    return {
        "status": "alive",
        "service": SERVICE_NAME,
        "timestamp": int(time.time())
    }
