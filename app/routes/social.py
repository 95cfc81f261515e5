"""
Social publishing API routes.

Endpoints for connecting social accounts over OAuth, checking connection
health, and publishing one piece of media to several platforms at once.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from socialsync.social.manager import PlatformManager
from socialsync.types.social import (
    MediaType,
    PlatformStatus,
    PublishOptions,
    PublishResult,
    SocialPlatform,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/social", tags=["social"])


def get_platform_manager(request: Request) -> PlatformManager:
    """The manager built at startup and stored on app.state."""
    manager = getattr(request.app.state, "platform_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Social publishing is not initialized",
        )
    return manager


# Request/Response models for the API
class PublishRequestAPI(BaseModel):
    """API request for multi-platform publishing."""
    platforms: List[SocialPlatform] = Field(
        ...,
        min_length=1,
        description="Target platforms (e.g. 'linkedin', 'twitter')"
    )
    media_url: str = Field(
        ...,
        min_length=1,
        description="Publicly reachable URL of the image or video"
    )
    media_type: MediaType = Field(
        ...,
        description="'image' or 'video'"
    )
    options: PublishOptions = Field(default_factory=PublishOptions)


class PublishResponseAPI(BaseModel):
    results: Dict[SocialPlatform, PublishResult]


class ConnectResponse(BaseModel):
    platform: SocialPlatform
    authorization_url: str


class CallbackResponse(BaseModel):
    platform: SocialPlatform
    connected: bool
    error: Optional[str] = None


@router.get("/platforms", response_model=List[SocialPlatform])
async def list_platforms(manager: PlatformManager = Depends(get_platform_manager)):
    """Platforms with client credentials configured."""
    return manager.configured_platforms


@router.get("/status", response_model=Dict[SocialPlatform, PlatformStatus])
async def get_statuses(manager: PlatformManager = Depends(get_platform_manager)):
    """
    Connection health of every configured platform.

    Each platform is probed concurrently with one identity call.
    """
    return await manager.get_all_statuses()


@router.get("/{platform}/connect", response_model=ConnectResponse)
async def connect_platform(
    platform: SocialPlatform,
    redirect_uri: str = Query(..., min_length=1),
    manager: PlatformManager = Depends(get_platform_manager),
):
    """Start the OAuth flow; the client redirects the user to the returned URL."""
    url = await manager.get_auth_url(platform, redirect_uri)
    if url is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Platform {platform.value} is not configured",
        )
    return ConnectResponse(platform=platform, authorization_url=url)


@router.get("/{platform}/callback", response_model=CallbackResponse)
async def oauth_callback(
    platform: SocialPlatform,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    manager: PlatformManager = Depends(get_platform_manager),
):
    """
    OAuth redirect target.

    A provider-side denial (``error`` query parameter) or a missing code is
    reported without calling the connector.
    """
    if error:
        logger.warning(
            f"OAuth authorization denied for {platform.value}: {error}",
            extra={"error_description": error_description},
        )
        return CallbackResponse(platform=platform, connected=False, error=error_description or error)

    if not code:
        return CallbackResponse(platform=platform, connected=False, error="Missing authorization code")

    if not manager.is_configured(platform):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Platform {platform.value} is not configured",
        )

    connected = await manager.handle_auth_callback(platform, code, state=state)
    return CallbackResponse(
        platform=platform,
        connected=connected,
        error=None if connected else "Authorization failed",
    )


@router.post("/publish", response_model=PublishResponseAPI)
async def publish(
    request: PublishRequestAPI,
    manager: PlatformManager = Depends(get_platform_manager),
):
    """
    Publish one piece of media to several platforms.

    Always answers 200; per-platform failures are reported in ``results``.
    """
    results = await manager.publish_to_multiple_platforms(
        request.platforms,
        request.media_url,
        request.media_type,
        request.options,
    )
    return PublishResponseAPI(results=results)


@router.delete("/{platform}")
async def disconnect_platform(
    platform: SocialPlatform,
    manager: PlatformManager = Depends(get_platform_manager),
):
    """Forget the stored credentials for a platform."""
    if not manager.disconnect(platform):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Platform {platform.value} is not configured",
        )
    return {"platform": platform, "disconnected": True}
