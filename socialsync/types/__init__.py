"""
Type definitions for the socialsync project.
"""

from .social import (
    PLATFORM_LIMITS,
    ErrorKind,
    MediaType,
    MediaValidationResult,
    PlatformCredentials,
    PlatformLimits,
    PlatformStatus,
    PublishOptions,
    PublishResult,
    SocialPlatform,
    get_platform_limits,
    utcnow,
)

__all__ = [
    "PLATFORM_LIMITS",
    "ErrorKind",
    "MediaType",
    "MediaValidationResult",
    "PlatformCredentials",
    "PlatformLimits",
    "PlatformStatus",
    "PublishOptions",
    "PublishResult",
    "SocialPlatform",
    "get_platform_limits",
    "utcnow",
]
