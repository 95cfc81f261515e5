"""
Backend server for socialsync.

Assembles the FastAPI application: logging, Sentry, the platform manager
(built once at startup from settings) and the API routers.
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import sentry_sdk
import uvicorn
from fastapi import FastAPI
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

# Configure structured logging FIRST, before other imports that use logging
from socialsync.config import Settings, get_settings
from socialsync.utils.logging import setup_logging

settings: Settings = get_settings()
logger = setup_logging(
    service_name="socialsync-api",
    log_level=settings.logging.log_level,
    force_json=settings.logging.log_format_json,
)

from app.routes import health_router, social_router
from socialsync import __version__
from socialsync.social.manager import PlatformManager

SENSITIVE_QUERY_KEYS = ("code", "state", "access_token", "refresh_token", "client_secret", "code_verifier")


def filter_sensitive_breadcrumbs(crumb: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Strip OAuth codes, tokens and auth headers from Sentry breadcrumbs.

    Platform calls go through httpx, whose breadcrumbs include full URLs.
    """
    if crumb.get("category") in ("http", "httplib"):
        data = crumb.get("data")
        if isinstance(data, dict):
            headers = data.get("headers")
            if isinstance(headers, dict):
                for key in list(headers):
                    if key.lower() == "authorization":
                        headers[key] = "[FILTERED]"
            url = data.get("url")
            if isinstance(url, str):
                for key in SENSITIVE_QUERY_KEYS:
                    url = re.sub(f"([?&]{key}=)[^&]*", r"\1[FILTERED]", url, flags=re.IGNORECASE)
                data["url"] = url
    return crumb


def init_sentry(settings: Settings) -> bool:
    """Initialise Sentry when a DSN is configured. Returns True if initialised."""
    if not settings.is_sentry_configured:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return False

    sentry_settings = settings.sentry
    sentry_sdk.init(
        dsn=sentry_settings.sentry_dsn,
        environment=sentry_settings.sentry_environment,
        traces_sample_rate=sentry_settings.sentry_traces_sample_rate,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        before_breadcrumb=filter_sensitive_breadcrumbs,
        send_default_pii=False,
        release=f"socialsync@{__version__}",
    )
    logger.info(f"Sentry initialized for environment: {sentry_settings.sentry_environment}")
    return True


def create_app(
    app_settings: Optional[Settings] = None,
    platform_manager: Optional[PlatformManager] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    When ``platform_manager`` is given it is used as is; otherwise one is
    built from settings at startup, sharing a single httpx client that is
    closed on shutdown.
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client: Optional[httpx.AsyncClient] = None
        if platform_manager is not None:
            app.state.platform_manager = platform_manager
        else:
            http_client = httpx.AsyncClient(timeout=app_settings.social.social_http_timeout)
            app.state.platform_manager = PlatformManager.from_settings(
                app_settings,
                http_client=http_client,
            )
        logger.info("socialsync started", extra=app_settings.get_config_summary())
        yield
        if http_client is not None:
            try:
                await http_client.aclose()
            except Exception as e:
                logger.warning("Failed to close platform HTTP client: %s", e)

    app = FastAPI(
        title="socialsync API",
        description="Connect social accounts and publish media to several platforms at once.",
        version=__version__,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Health checks and system status"},
            {"name": "social", "description": "Social account connections and publishing"},
        ],
    )

    app.include_router(health_router)
    app.include_router(social_router)
    return app


init_sentry(settings)
app = create_app()


if __name__ == "__main__":
    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)
