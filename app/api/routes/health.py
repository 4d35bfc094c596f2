"""Health check endpoint with real service connectivity probes.

Each check has a short timeout. A service reporting "disconnected" does not
change the overall status: the endpoint always returns 200 so load balancers
keep routing. Temporal is reported "disabled" when running inline.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter

from app.config import settings

logger = structlog.get_logger()

router = APIRouter(tags=["health"])

_CHECK_TIMEOUT = 3.0  # seconds per service check


async def _check_temporal() -> str:
    """Connect to Temporal server with a short timeout."""
    if not settings.use_temporal:
        return "disabled"

    from app.worker import create_temporal_client

    try:
        client = await asyncio.wait_for(create_temporal_client(), timeout=_CHECK_TIMEOUT)
        await client.service_client.check_health()
        return "connected"
    except Exception as exc:
        logger.debug("health_temporal_failed", error=str(exc))
        return "disconnected"


async def _check_s3() -> str:
    """Check capture bucket accessibility via head_bucket."""
    from app.utils.s3 import head_bucket

    try:
        await asyncio.wait_for(asyncio.to_thread(head_bucket), timeout=_CHECK_TIMEOUT)
        return "connected"
    except Exception as exc:
        logger.debug("health_s3_failed", error=str(exc))
        return "disconnected"


@router.get("/health")
async def health_check() -> dict:
    """Probes Temporal and S3 in parallel. Always returns 200."""
    temporal, s3 = await asyncio.gather(_check_temporal(), _check_s3())
    return {
        "status": "ok",
        "version": "0.1.0",
        "environment": settings.environment,
        "temporal": temporal,
        "s3": s3,
    }
