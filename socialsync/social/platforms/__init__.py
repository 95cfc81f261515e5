"""
Platform connectors.

Each connector implements the SocialMediaPlatform protocol on its own;
shared behaviour lives in ``base`` as helpers.
"""

from .base import (
    AuthenticationError,
    InMemoryVerifierStore,
    PlatformAPIError,
    PlatformError,
    SocialMediaPlatform,
    VerifierStore,
)
from .instagram import InstagramPlatform
from .linkedin import LinkedInPlatform
from .tiktok import TikTokPlatform
from .twitter import TwitterPlatform

__all__ = [
    "AuthenticationError",
    "InMemoryVerifierStore",
    "PlatformAPIError",
    "PlatformError",
    "SocialMediaPlatform",
    "VerifierStore",
    "InstagramPlatform",
    "LinkedInPlatform",
    "TikTokPlatform",
    "TwitterPlatform",
]
