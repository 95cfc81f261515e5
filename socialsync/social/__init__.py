"""
Social media publishing services.

This package provides:
- Platform connectors (Instagram, TikTok, LinkedIn, Twitter/X)
- OAuth 2.0 authorization with PKCE where the platform requires it
- A platform manager with concurrent multi-platform publishing
"""

from .manager import PlatformManager, publish_to_multiple_platforms

__all__ = [
    "PlatformManager",
    "publish_to_multiple_platforms",
]
