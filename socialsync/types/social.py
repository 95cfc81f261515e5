"""
Type definitions for social media publishing.

Provides models for:
- Supported platforms and their hard-coded limits
- Per-connector OAuth credentials
- Publish intent, publish outcomes and connection health
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


MediaType = Literal["image", "video"]


class SocialPlatform(str, Enum):
    """Supported social media platforms."""

    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    LINKEDIN = "linkedin"
    TWITTER = "twitter"


class ErrorKind(str, Enum):
    """Closed set of failure categories carried by failed results."""

    CONFIGURATION = "configuration"
    AUTH = "auth"
    VALIDATION = "validation"
    NETWORK = "network"
    UNKNOWN = "unknown"


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# OAuth Models
# -----------------------------------------------------------------------------


class PlatformCredentials(BaseModel):
    """Authentication state held by a single connector."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    account_id: str = ""
    account_name: str = ""

    @field_validator("expires_at")
    @classmethod
    def ensure_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Treat naive expiry timestamps as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @classmethod
    def expiry_from(cls, expires_in: Optional[int]) -> Optional[datetime]:
        """Turn a relative ``expires_in`` (seconds) into an absolute expiry."""
        if expires_in is None:
            return None
        return utcnow() + timedelta(seconds=int(expires_in))

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """True iff an access token is held and it has not expired."""
        if not self.access_token:
            return False
        if self.expires_at is None:
            return True
        return self.expires_at > (now or utcnow())

    def expires_within(self, seconds: int, now: Optional[datetime] = None) -> bool:
        """True if the token expires within ``seconds`` (always False without expiry)."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow()) + timedelta(seconds=seconds)


# -----------------------------------------------------------------------------
# Publish Models
# -----------------------------------------------------------------------------


class PublishOptions(BaseModel):
    """Caller-supplied publish intent shared by every target platform."""

    caption: Optional[str] = None
    hashtags: List[str] = Field(default_factory=list)
    aspect_ratio: str = "1:1"
    file_size_bytes: Optional[int] = Field(default=None, ge=0)
    privacy_level: Optional[str] = None  # TikTok only


class PublishResult(BaseModel):
    """Outcome of one publish attempt on one platform."""

    success: bool
    platform: Optional[SocialPlatform] = None
    post_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def ok(
        cls,
        platform: SocialPlatform,
        post_id: str,
        url: Optional[str] = None,
    ) -> "PublishResult":
        return cls(success=True, platform=platform, post_id=post_id, url=url)

    @classmethod
    def failed(
        cls,
        platform: Optional[SocialPlatform],
        error: str,
        error_kind: ErrorKind = ErrorKind.UNKNOWN,
    ) -> "PublishResult":
        return cls(success=False, platform=platform, error=error, error_kind=error_kind)


class PlatformStatus(BaseModel):
    """Point-in-time connection health for one platform."""

    connected: bool
    account_name: Optional[str] = None
    account_id: Optional[str] = None
    last_sync: Optional[datetime] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class MediaValidationResult(BaseModel):
    """Result of checking declared media against platform limits."""

    valid: bool
    errors: List[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Platform Limits
# -----------------------------------------------------------------------------


MB = 1024 * 1024
GB = 1024 * MB


@dataclass(frozen=True)
class PlatformLimits:
    """Hard-coded constraints for a social media platform."""

    platform: SocialPlatform
    name: str
    max_caption_length: int
    max_image_bytes: int
    max_video_bytes: int
    supported_media_types: Tuple[str, ...] = ("image", "video")
    # (min, max) width/height ratio per media type; absent means not enforced
    aspect_ratio_ranges: Dict[str, Tuple[float, float]] = field(default_factory=dict)
    oauth_scopes: Tuple[str, ...] = ()

    def max_bytes_for(self, media_type: str) -> int:
        return self.max_image_bytes if media_type == "image" else self.max_video_bytes


PLATFORM_LIMITS: Dict[SocialPlatform, PlatformLimits] = {
    SocialPlatform.INSTAGRAM: PlatformLimits(
        platform=SocialPlatform.INSTAGRAM,
        name="Instagram",
        max_caption_length=2200,
        max_image_bytes=8 * MB,
        max_video_bytes=100 * MB,
        aspect_ratio_ranges={
            "image": (4 / 5, 1.91),
            "video": (9 / 16, 1.91),
        },
        oauth_scopes=(
            "instagram_business_basic",
            "instagram_business_content_publish",
        ),
    ),
    SocialPlatform.TIKTOK: PlatformLimits(
        platform=SocialPlatform.TIKTOK,
        name="TikTok",
        max_caption_length=2200,
        max_image_bytes=20 * MB,
        max_video_bytes=4 * GB,
        aspect_ratio_ranges={
            "image": (9 / 16, 16 / 9),
            "video": (9 / 16, 16 / 9),
        },
        oauth_scopes=("user.info.basic", "video.publish"),
    ),
    SocialPlatform.LINKEDIN: PlatformLimits(
        platform=SocialPlatform.LINKEDIN,
        name="LinkedIn",
        max_caption_length=3000,
        max_image_bytes=8 * MB,
        max_video_bytes=200 * MB,
        oauth_scopes=("openid", "profile", "email", "w_member_social"),
    ),
    SocialPlatform.TWITTER: PlatformLimits(
        platform=SocialPlatform.TWITTER,
        name="Twitter/X",
        max_caption_length=280,
        max_image_bytes=5 * MB,
        max_video_bytes=512 * MB,
        oauth_scopes=("tweet.read", "tweet.write", "users.read", "offline.access"),
    ),
}


def get_platform_limits(platform: SocialPlatform) -> PlatformLimits:
    """Get hard-coded limits for a platform."""
    return PLATFORM_LIMITS[platform]
