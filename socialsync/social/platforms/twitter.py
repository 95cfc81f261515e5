"""
Twitter/X API v2 integration.

Implements OAuth 2.0 PKCE flow and Twitter API v2 for posting.
"""

import base64
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
    TokenRefreshCallback,
    VerifierStore,
    begin_oauth_session,
    bearer_headers,
    build_caption,
    error_message_from,
    forget_oauth_session,
    generate_pkce_pair,
    http_session,
    not_authenticated_result,
    not_authenticated_status,
    publish_failure,
    raise_for_platform_error,
    resolve_redirect_uri,
    response_json,
    status_failure,
    store_key,
    validate_media_against,
    validation_failure,
    verify_state,
)

logger = logging.getLogger(__name__)


class TwitterPlatform:
    """
    Twitter/X API v2 integration.

    Uses OAuth 2.0 with PKCE for user authentication and Twitter API v2
    for posting tweets. The code verifier is kept in the injected
    VerifierStore so it survives the browser redirect.
    """

    platform = SocialPlatform.TWITTER
    limits = PLATFORM_LIMITS[SocialPlatform.TWITTER]

    # Twitter OAuth 2.0 endpoints
    AUTHORIZATION_URL = "https://twitter.com/i/oauth2/authorize"
    TOKEN_URL = "https://api.twitter.com/2/oauth2/token"

    # Twitter API v2 endpoints
    API_BASE = "https://api.twitter.com/2"

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

    # -------------------------------------------------------------------------
    # Credential state
    # -------------------------------------------------------------------------

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

    def _basic_auth_headers(self) -> Dict[str, str]:
        credentials = f"{self._client_id}:{self._client_secret}"
        auth_header = base64.b64encode(credentials.encode()).decode()
        return {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {auth_header}",
        }

    async def get_auth_url(self, redirect_uri: str) -> str:
        """Get Twitter OAuth 2.0 authorization URL with PKCE."""
        verifier, challenge = generate_pkce_pair()
        self._store.set(store_key(self.platform, "code_verifier"), verifier)
        state = begin_oauth_session(self._store, self.platform, redirect_uri)

        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(self.limits.oauth_scopes),
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }

        return f"{self.AUTHORIZATION_URL}?{urlencode(params)}"

    async def _token_request(self, data: Dict[str, str], action: str) -> Dict[str, Any]:
        try:
            async with http_session(self._http, self._timeout) as client:
                response = await client.post(
                    self.TOKEN_URL,
                    data=data,
                    headers=self._basic_auth_headers(),
                )
        except httpx.HTTPError as e:
            raise AuthenticationError(f"{action} failed: {e}", platform=self.platform) from e

        token_data = response_json(response)
        if response.status_code != 200 or "access_token" not in token_data:
            raise AuthenticationError(
                f"{action} failed: {error_message_from(token_data, 'Twitter authentication failed')}",
                platform=self.platform,
                status_code=response.status_code,
                raw_error=token_data,
            )
        return token_data

    async def authenticate(
        self,
        auth_code: str,
        redirect_uri: Optional[str] = None,
        state: Optional[str] = None,
    ) -> PlatformCredentials:
        """Exchange the authorization code (with PKCE verifier) for tokens."""
        verify_state(self._store, self.platform, state)

        verifier = self._store.get(store_key(self.platform, "code_verifier"))
        if not verifier:
            raise AuthenticationError(
                "Missing PKCE code verifier; restart the authorization flow",
                platform=self.platform,
            )
        redirect = resolve_redirect_uri(
            self._store, self.platform, redirect_uri, self._default_redirect_uri
        )

        token_data = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": auth_code,
                "redirect_uri": redirect,
                "client_id": self._client_id,
                "code_verifier": verifier,
            },
            "Token exchange",
        )

        try:
            profile = await self._get_user_profile(token_data["access_token"])
        except Exception as e:
            raise AuthenticationError(
                f"Profile lookup after token exchange failed: {e}",
                platform=self.platform,
            ) from e

        credentials = PlatformCredentials(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            expires_at=PlatformCredentials.expiry_from(token_data.get("expires_in")),
            account_id=str(profile.get("id", "")),
            account_name=profile.get("username", ""),
        )
        self._holder.set(credentials)
        forget_oauth_session(self._store, self.platform)

        logger.info(f"Twitter account connected: @{credentials.account_name}")
        return credentials

    async def _refresh_grant(self, current: PlatformCredentials) -> PlatformCredentials:
        token_data = await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": current.refresh_token or "",
                "client_id": self._client_id,
            },
            "Token refresh",
        )
        # Twitter rotates refresh tokens on every use
        return current.model_copy(
            update={
                "access_token": token_data["access_token"],
                "refresh_token": token_data.get("refresh_token", current.refresh_token),
                "expires_at": PlatformCredentials.expiry_from(token_data.get("expires_in")),
            }
        )

    async def refresh_access_token(self) -> PlatformCredentials:
        """Refresh the held access token."""
        return await self._holder.refresh(self._refresh_grant)

    # -------------------------------------------------------------------------
    # User/Account Methods
    # -------------------------------------------------------------------------

    async def _get_user_profile(self, access_token: str) -> Dict[str, Any]:
        async with http_session(self._http, self._timeout) as client:
            response = await client.get(
                f"{self.API_BASE}/users/me",
                headers=bearer_headers(access_token),
            )
        data = raise_for_platform_error(response, self.platform, "Profile lookup")
        return data.get("data", {})

    async def get_status(self) -> PlatformStatus:
        """Probe the profile endpoint with the current token."""
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
            account_id=profile.get("id"),
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

    def build_caption(self, options: PublishOptions) -> str:
        """Tweet text capped at 280 characters; hashtags dropped if they overflow."""
        return build_caption(options.caption, options.hashtags, self.limits.max_caption_length)

    async def publish(
        self,
        media_url: str,
        media_type: str,
        options: PublishOptions,
    ) -> PublishResult:
        """
        Publish a tweet.

        Media is not uploaded; the tweet carries the effective caption only.
        """
        if not self.is_authenticated() and not self.can_refresh():
            return not_authenticated_result(self.platform)

        try:
            validation = self.validate_media(media_type, options.aspect_ratio, options.file_size_bytes)
            if not validation.valid:
                return validation_failure(self.platform, validation)

            creds = await self._holder.ensure_fresh(self._refresh_grant)
            payload = {"text": self.build_caption(options)}

            async with http_session(self._http, self._timeout) as client:
                response = await client.post(
                    f"{self.API_BASE}/tweets",
                    headers=bearer_headers(creds.access_token, **{"Content-Type": "application/json"}),
                    json=payload,
                )
            data = raise_for_platform_error(response, self.platform, "Tweet")

            tweet_id = str(data.get("data", {}).get("id", ""))
            if not tweet_id:
                return PublishResult.failed(self.platform, "Twitter response did not include a tweet id")

            logger.info(f"Published tweet {tweet_id} for @{creds.account_name}")
            return PublishResult.ok(
                self.platform,
                post_id=tweet_id,
                url=f"https://twitter.com/i/web/status/{tweet_id}",
            )
        except Exception as e:
            logger.warning(f"Twitter publish failed: {e}")
            return publish_failure(self.platform, e)

