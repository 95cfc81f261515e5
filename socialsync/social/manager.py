"""
Platform manager: registry of configured connectors and multi-platform publishing.

Provides:
- A registry built once from injected settings
- Guarded single-platform publish (configuration, auth and media checks)
- Concurrent fan-out publish with one result per requested platform
- Concurrent status aggregation
- OAuth bridge (authorization URL, callback handling, disconnect)
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Mapping, Optional

import httpx
import sentry_sdk

from socialsync.config import Settings
from socialsync.types.social import (
    ErrorKind,
    PlatformStatus,
    PublishOptions,
    PublishResult,
    SocialPlatform,
)
from socialsync.utils.logging import Timer, platform_context

from .platforms.base import (
    InMemoryVerifierStore,
    PlatformError,
    SocialMediaPlatform,
    TokenRefreshCallback,
    VerifierStore,
    status_failure,
)
from .platforms.instagram import InstagramPlatform
from .platforms.linkedin import LinkedInPlatform
from .platforms.tiktok import TikTokPlatform
from .platforms.twitter import TwitterPlatform

logger = logging.getLogger(__name__)


class PlatformManager:
    """
    Registry of platform connectors.

    The registry is fixed at construction; connectors keep their own
    credentials, so the manager itself holds no mutable state beyond it.
    """

    def __init__(self, connectors: Mapping[SocialPlatform, SocialMediaPlatform]) -> None:
        self._connectors: Dict[SocialPlatform, SocialMediaPlatform] = dict(connectors)
        logger.info(
            "Platform manager initialized",
            extra={"platforms": [p.value for p in self._connectors]},
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        verifier_store: Optional[VerifierStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        on_token_refresh: Optional[TokenRefreshCallback] = None,
    ) -> "PlatformManager":
        """
        Build the registry from configuration.

        A connector is registered only when its client id and secret are both
        present. All connectors share one verifier store.
        """
        store = verifier_store
        if store is None:
            store = InMemoryVerifierStore(ttl_seconds=settings.social.oauth_state_ttl_seconds)

        social = settings.social
        connectors: Dict[SocialPlatform, SocialMediaPlatform] = {}

        for platform in SocialPlatform:
            pair = settings.platforms.client_credentials(platform)
            if pair is None:
                logger.debug(f"{platform.value} not configured, skipping")
                continue

            client_id, client_secret = pair
            common = dict(
                verifier_store=store,
                http_client=http_client,
                timeout=social.social_http_timeout,
                default_redirect_uri=social.default_redirect_uri(platform),
                on_token_refresh=on_token_refresh,
            )

            if platform == SocialPlatform.INSTAGRAM:
                connectors[platform] = InstagramPlatform(client_id, client_secret, **common)
            elif platform == SocialPlatform.TIKTOK:
                connectors[platform] = TikTokPlatform(
                    client_id,
                    client_secret,
                    default_privacy_level=social.tiktok_default_privacy_level,
                    **common,
                )
            elif platform == SocialPlatform.LINKEDIN:
                connectors[platform] = LinkedInPlatform(client_id, client_secret, **common)
            elif platform == SocialPlatform.TWITTER:
                connectors[platform] = TwitterPlatform(client_id, client_secret, **common)

        return cls(connectors)

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def get_platform(self, platform: SocialPlatform) -> Optional[SocialMediaPlatform]:
        return self._connectors.get(platform)

    @property
    def configured_platforms(self) -> List[SocialPlatform]:
        return list(self._connectors)

    def is_configured(self, platform: SocialPlatform) -> bool:
        return platform in self._connectors

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(
        self,
        platform: SocialPlatform,
        media_url: str,
        media_type: str,
        options: PublishOptions,
    ) -> PublishResult:
        """
        Publish to one platform.

        Configuration, authentication and media problems are reported as
        failed results without touching the network. Never raises.
        """
        connector = self._connectors.get(platform)
        if connector is None:
            return PublishResult.failed(
                platform,
                f"Platform {platform.value} is not configured",
                ErrorKind.CONFIGURATION,
            )

        # An expired token with a refresh token is refreshed inside publish
        if not connector.is_authenticated() and not connector.can_refresh():
            return PublishResult.failed(
                platform,
                f"Not authenticated with {platform.value}",
                ErrorKind.AUTH,
            )

        validation = connector.validate_media(
            media_type,
            options.aspect_ratio,
            options.file_size_bytes,
        )
        if not validation.valid:
            return PublishResult.failed(
                platform,
                f"Media validation failed: {', '.join(validation.errors)}",
                ErrorKind.VALIDATION,
            )

        with platform_context(platform.value):
            try:
                return await connector.publish(media_url, media_type, options)
            except Exception as e:
                logger.exception(f"Unexpected error publishing to {platform.value}")
                return PublishResult.failed(platform, str(e) or "Unknown error", ErrorKind.UNKNOWN)

    async def publish_to_multiple_platforms(
        self,
        platforms: Iterable[SocialPlatform],
        media_url: str,
        media_type: str,
        options: PublishOptions,
    ) -> Dict[SocialPlatform, PublishResult]:
        """
        Publish the same media to several platforms concurrently.

        Returns exactly one result per distinct requested platform, in request
        order. A failure on one platform never affects the others.
        """
        targets = list(dict.fromkeys(platforms))
        if not targets:
            return {}

        with Timer("fan_out_publish", logger):
            outcomes = await asyncio.gather(
                *(self.publish(p, media_url, media_type, options) for p in targets),
                return_exceptions=True,
            )

        results: Dict[SocialPlatform, PublishResult] = {}
        for platform, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Publish task for {platform.value} raised: {outcome!r}")
                outcome = PublishResult.failed(platform, str(outcome) or "Unknown error", ErrorKind.UNKNOWN)
            results[platform] = outcome

        succeeded = sum(1 for r in results.values() if r.success)
        logger.info(
            f"Fan-out publish finished: {succeeded}/{len(results)} succeeded",
            extra={
                "platforms": [p.value for p in targets],
                "failed": [p.value for p, r in results.items() if not r.success],
            },
        )
        return results

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def _status_of(self, connector: SocialMediaPlatform) -> PlatformStatus:
        with platform_context(connector.platform.value):
            try:
                return await connector.get_status()
            except Exception as e:
                logger.warning(f"Status probe raised: {e}")
                return status_failure(e)

    async def get_all_statuses(self) -> Dict[SocialPlatform, PlatformStatus]:
        """Probe every registered connector concurrently."""
        platforms = list(self._connectors)
        statuses = await asyncio.gather(
            *(self._status_of(self._connectors[p]) for p in platforms)
        )
        return dict(zip(platforms, statuses))

    async def is_connected(self, platform: SocialPlatform) -> bool:
        connector = self._connectors.get(platform)
        if connector is None:
            return False
        status = await self._status_of(connector)
        return status.connected

    # -------------------------------------------------------------------------
    # OAuth bridge
    # -------------------------------------------------------------------------

    async def get_auth_url(self, platform: SocialPlatform, redirect_uri: str) -> Optional[str]:
        """Authorization URL for a platform, or None when it is not configured."""
        connector = self._connectors.get(platform)
        if connector is None:
            return None
        return await connector.get_auth_url(redirect_uri)

    async def handle_auth_callback(
        self,
        platform: SocialPlatform,
        auth_code: str,
        redirect_uri: Optional[str] = None,
        state: Optional[str] = None,
    ) -> bool:
        """
        Complete the authorization-code exchange.

        Returns True on success; failures are logged and reported as False.
        """
        connector = self._connectors.get(platform)
        if connector is None:
            logger.warning(f"Auth callback for unconfigured platform {platform.value}")
            return False

        try:
            await connector.authenticate(auth_code, redirect_uri=redirect_uri, state=state)
        except Exception as e:
            logger.error(
                f"Auth callback failed for {platform.value}: {e}",
                extra={"error_type": type(e).__name__},
            )
            if not isinstance(e, PlatformError):
                sentry_sdk.capture_exception(e)
            return False

        return True

    def disconnect(self, platform: SocialPlatform) -> bool:
        """Forget a platform's credentials. Returns False if it is not configured."""
        connector = self._connectors.get(platform)
        if connector is None:
            return False
        connector.clear_credentials()
        logger.info(f"Disconnected {platform.value}")
        return True


async def publish_to_multiple_platforms(
    manager: PlatformManager,
    platforms: Iterable[SocialPlatform],
    media_url: str,
    media_type: str,
    options: PublishOptions,
) -> Dict[SocialPlatform, PublishResult]:
    """Module-level form of PlatformManager.publish_to_multiple_platforms."""
    return await manager.publish_to_multiple_platforms(platforms, media_url, media_type, options)
