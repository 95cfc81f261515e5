"""
Health check endpoints.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

import sentry_sdk
from fastapi import APIRouter

from socialsync import __version__
from socialsync.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def get_sentry_status() -> Dict[str, Any]:
    """Whether Sentry is configured and its client is active."""
    settings = get_settings()
    try:
        client = sentry_sdk.get_client()
        active = client.is_active()
    except Exception as e:
        logger.warning(f"Sentry status check failed: {e}")
        active = False

    return {
        "configured": settings.is_sentry_configured,
        "active": active if settings.is_sentry_configured else False,
        "environment": settings.sentry.sentry_environment if settings.is_sentry_configured else None,
    }


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint for monitoring and load balancers.

    Reports configuration only; it never calls a platform API.
    Use GET /social/status for live connection checks.
    """
    summary = get_settings().get_config_summary()
    sentry_status = get_sentry_status()

    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "environment": summary["environment"],
        "configured_platforms": summary["configured_platforms"],
        "services": {
            "sentry": {
                "status": "up" if sentry_status["active"] else ("unconfigured" if not sentry_status["configured"] else "down"),
            },
        },
    }
