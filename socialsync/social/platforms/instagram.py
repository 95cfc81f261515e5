"""
Instagram API integration (Instagram API with Instagram Login).

Implements the Instagram OAuth flow with long-lived token upgrade and the
two-step container publishing flow of the Graph API.
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from socialsync.types.social import (
    MediaValidationResult,
    PLATFORM_LIMITS,
    PlatformCredentials,
    PlatformStatus,
    PublishOptions,
    PublishResult,
    SocialPlatform,
    utcnow,
)

from .base import (
    DEFAULT_TIMEOUT,
    AuthenticationError,
    CredentialHolder,
    InMemoryVerifierStore,
    PlatformAPIError,
    TokenRefreshCallback,
    VerifierStore,
    begin_oauth_session,
    bearer_headers,
    build_caption,
    error_message_from,
    forget_oauth_session,
    http_session,
    not_authenticated_result,
    not_authenticated_status,
    publish_failure,
    raise_for_platform_error,
    resolve_redirect_uri,
    response_json,
    status_failure,
    validate_media_against,
    validation_failure,
    verify_state,
)

logger = logging.getLogger(__name__)

# Lifetime Instagram gives short-lived tokens
SHORT_LIVED_TOKEN_SECONDS = 3600


class InstagramPlatform:
    """
    Instagram professional account integration.

    Long-lived Instagram tokens are refreshed with the token itself, so the
    long-lived token doubles as the refresh credential. When the long-lived
    upgrade fails the short-lived token is kept without a refresh credential.
    """

    platform = SocialPlatform.INSTAGRAM
    limits = PLATFORM_LIMITS[SocialPlatform.INSTAGRAM]

    AUTHORIZATION_URL = "https://www.instagram.com/oauth/authorize"
    TOKEN_URL = "https://api.instagram.com/oauth/access_token"
    LONG_LIVED_TOKEN_URL = "https://graph.instagram.com/access_token"
    REFRESH_URL = "https://graph.instagram.com/refresh_access_token"

    API_BASE = "https://graph.instagram.com/v21.0"

    # Reels containers are processed asynchronously before they can be published
    CONTAINER_POLL_ATTEMPTS = 10
    CONTAINER_POLL_INTERVAL = 3.0

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        credentials: Optional[PlatformCredentials] = None,
        verifier_store: Optional[VerifierStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        default_redirect_uri: Optional[str] = None,
        on_token_refresh: Optional[TokenRefreshCallback] = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._store = verifier_store if verifier_store is not None else InMemoryVerifierStore()
        self._http = http_client
        self._timeout = timeout
        self._default_redirect_uri = default_redirect_uri
        self._holder = CredentialHolder(self.platform, credentials, on_token_refresh)

    @property
    def credentials(self) -> Optional[PlatformCredentials]:
        return self._holder.credentials

    def is_authenticated(self) -> bool:
        return self._holder.is_authenticated()

    def can_refresh(self) -> bool:
        return self._holder.can_refresh()

    def load_credentials(self, credentials: PlatformCredentials) -> None:
        self._holder.set(credentials)

    def clear_credentials(self) -> None:
        self._holder.clear()
        forget_oauth_session(self._store, self.platform)

    # -------------------------------------------------------------------------
    # OAuth Methods
    # -------------------------------------------------------------------------

    async def get_auth_url(self, redirect_uri: str) -> str:
        state = begin_oauth_session(self._store, self.platform, redirect_uri)

        params = {
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": ",".join(self.limits.oauth_scopes),
            "state": state,
        }

        return f"{self.AUTHORIZATION_URL}?{urlencode(params)}"

    async def _exchange_code(self, auth_code: str, redirect_uri: str) -> Dict[str, Any]:
        try:
            async with http_session(self._http, self._timeout) as client:
                response = await client.post(
                    self.TOKEN_URL,
                    data={
                        "client_id": self._client_id,
                        "client_secret": self._client_secret,
                        "grant_type": "authorization_code",
                        "redirect_uri": redirect_uri,
                        "code": auth_code,
                    },
                )
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Token exchange failed: {e}", platform=self.platform) from e

        token_data = response_json(response)
        # Newer API versions wrap the token in a one-element "data" list
        if isinstance(token_data.get("data"), list) and token_data["data"]:
            token_data = token_data["data"][0]

        if response.status_code != 200 or "access_token" not in token_data:
            raise AuthenticationError(
                f"Token exchange failed: {error_message_from(token_data, 'Instagram authentication failed')}",
                platform=self.platform,
                status_code=response.status_code,
                raw_error=token_data,
            )
        return token_data

    async def _upgrade_to_long_lived(self, short_lived_token: str) -> Optional[Dict[str, Any]]:
        """Exchange a short-lived token for a 60-day token; None on failure."""
        try:
            async with http_session(self._http, self._timeout) as client:
                response = await client.get(
                    self.LONG_LIVED_TOKEN_URL,
                    params={
                        "grant_type": "ig_exchange_token",
                        "client_secret": self._client_secret,
                        "access_token": short_lived_token,
                    },
                )
        except httpx.HTTPError as e:
            logger.warning(f"Instagram long-lived token exchange failed: {e}")
            return None

        data = response_json(response)
        if response.status_code != 200 or "access_token" not in data:
            logger.warning(
                "Instagram long-lived token exchange rejected",
                extra={"status_code": response.status_code},
            )
            return None
        return data

    async def authenticate(
        self,
        auth_code: str,
        redirect_uri: Optional[str] = None,
        state: Optional[str] = None,
    ) -> PlatformCredentials:
        """Exchange the code, upgrade to a long-lived token and look up the account."""
        verify_state(self._store, self.platform, state)
        redirect = resolve_redirect_uri(
            self._store, self.platform, redirect_uri, self._default_redirect_uri
        )

        token_data = await self._exchange_code(auth_code, redirect)

        access_token = token_data["access_token"]
        expires_in = SHORT_LIVED_TOKEN_SECONDS
        refresh_token = None

        long_lived = await self._upgrade_to_long_lived(access_token)
        if long_lived:
            access_token = long_lived["access_token"]
            expires_in = long_lived.get("expires_in", expires_in)
            refresh_token = access_token

        try:
            profile = await self._get_user_profile(access_token)
        except Exception as e:
            raise AuthenticationError(
                f"Profile lookup after token exchange failed: {e}",
                platform=self.platform,
            ) from e

        credentials = PlatformCredentials(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=PlatformCredentials.expiry_from(expires_in),
            account_id=str(profile.get("user_id") or token_data.get("user_id") or profile.get("id", "")),
            account_name=profile.get("username", ""),
        )
        self._holder.set(credentials)
        forget_oauth_session(self._store, self.platform)

        logger.info(f"Instagram account connected: @{credentials.account_name}")
        return credentials

    async def _refresh_grant(self, current: PlatformCredentials) -> PlatformCredentials:
        try:
            async with http_session(self._http, self._timeout) as client:
                response = await client.get(
                    self.REFRESH_URL,
                    params={
                        "grant_type": "ig_refresh_token",
                        "access_token": current.refresh_token or "",
                    },
                )
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Token refresh failed: {e}", platform=self.platform) from e

        data = response_json(response)
        if response.status_code != 200 or "access_token" not in data:
            raise AuthenticationError(
                f"Token refresh failed: {error_message_from(data, 'Instagram token refresh failed')}",
                platform=self.platform,
                status_code=response.status_code,
                raw_error=data,
            )

        return current.model_copy(
            update={
                "access_token": data["access_token"],
                "refresh_token": data["access_token"],
                "expires_at": PlatformCredentials.expiry_from(data.get("expires_in")),
            }
        )

    async def refresh_access_token(self) -> PlatformCredentials:
        """Refresh the long-lived token."""
        return await self._holder.refresh(self._refresh_grant)

    # -------------------------------------------------------------------------
    # User/Account Methods
    # -------------------------------------------------------------------------

    async def _get_user_profile(self, access_token: str) -> Dict[str, Any]:
        async with http_session(self._http, self._timeout) as client:
            response = await client.get(
                f"{self.API_BASE}/me",
                params={"fields": "user_id,username,name,account_type"},
                headers=bearer_headers(access_token),
            )
        return raise_for_platform_error(response, self.platform, "Profile lookup")

    async def get_status(self) -> PlatformStatus:
        if not self.is_authenticated() and not self.can_refresh():
            return not_authenticated_status()

        try:
            creds = await self._holder.ensure_fresh(self._refresh_grant)
            profile = await self._get_user_profile(creds.access_token)
        except Exception as e:
            return status_failure(e)

        return PlatformStatus(
            connected=True,
            account_name=f"@{profile.get('username', '')}",
            account_id=str(profile.get("user_id") or profile.get("id") or creds.account_id),
            last_sync=utcnow(),
        )

    # -------------------------------------------------------------------------
    # Content Publishing Methods
    # -------------------------------------------------------------------------

    def validate_media(
        self,
        media_type: str,
        aspect_ratio: str,
        file_size_bytes: Optional[int] = None,
    ) -> MediaValidationResult:
        return validate_media_against(self.limits, media_type, aspect_ratio, file_size_bytes)

    def build_container(
        self,
        media_url: str,
        media_type: str,
        options: PublishOptions,
    ) -> Dict[str, Any]:
        """Body for the media container; videos are published as Reels."""
        container: Dict[str, Any] = {
            "caption": build_caption(options.caption, options.hashtags, self.limits.max_caption_length),
        }
        if media_type == "video":
            container["media_type"] = "REELS"
            container["video_url"] = media_url
        else:
            container["image_url"] = media_url
        return container

    async def _wait_for_container(
        self,
        client: httpx.AsyncClient,
        container_id: str,
        headers: Dict[str, str],
    ) -> None:
        """
        Poll a media container until Instagram reports it ``FINISHED``.

        Raises:
            PlatformAPIError: if processing fails, the container expires or it
                is still not ready after ``CONTAINER_POLL_ATTEMPTS`` checks
        """
        status_code = None
        for attempt in range(self.CONTAINER_POLL_ATTEMPTS):
            if attempt:
                await asyncio.sleep(self.CONTAINER_POLL_INTERVAL)
            response = await client.get(
                f"{self.API_BASE}/{container_id}",
                headers=headers,
                params={"fields": "status_code"},
            )
            data = raise_for_platform_error(response, self.platform, "Media container status")
            status_code = data.get("status_code")
            if status_code == "FINISHED":
                return
            if status_code in ("ERROR", "EXPIRED"):
                raise PlatformAPIError(
                    f"Instagram could not process the media ({status_code})",
                    platform=self.platform,
                    raw_error=data,
                )
            logger.debug(f"Instagram container {container_id} is {status_code}")

        raise PlatformAPIError(
            f"Instagram media was not ready after {self.CONTAINER_POLL_ATTEMPTS} checks ({status_code})",
            platform=self.platform,
        )

    async def publish(
        self,
        media_url: str,
        media_type: str,
        options: PublishOptions,
    ) -> PublishResult:
        """Create a media container, then publish it."""
        if not self.is_authenticated() and not self.can_refresh():
            return not_authenticated_result(self.platform)

        try:
            validation = self.validate_media(media_type, options.aspect_ratio, options.file_size_bytes)
            if not validation.valid:
                return validation_failure(self.platform, validation)

            creds = await self._holder.ensure_fresh(self._refresh_grant)
            headers = bearer_headers(creds.access_token)

            async with http_session(self._http, self._timeout) as client:
                response = await client.post(
                    f"{self.API_BASE}/{creds.account_id}/media",
                    headers=headers,
                    json=self.build_container(media_url, media_type, options),
                )
                container = raise_for_platform_error(response, self.platform, "Media container")

                container_id = container.get("id")
                if not container_id:
                    return PublishResult.failed(self.platform, "Instagram did not return a container id")

                if media_type == "video":
                    await self._wait_for_container(client, container_id, headers)

                response = await client.post(
                    f"{self.API_BASE}/{creds.account_id}/media_publish",
                    headers=headers,
                    json={"creation_id": container_id},
                )
                data = raise_for_platform_error(response, self.platform, "Media publish")

            post_id = str(data.get("id", ""))
            if not post_id:
                return PublishResult.failed(self.platform, "Instagram response did not include a media id")

            logger.info(f"Published Instagram media {post_id} for @{creds.account_name}")
            return PublishResult.ok(
                self.platform,
                post_id=post_id,
                url=f"https://www.instagram.com/p/{post_id}/",
            )
        except Exception as e:
            logger.warning(f"Instagram publish failed: {e}")
            return publish_failure(self.platform, e)
