"""
LinkedIn API integration.

Implements OAuth 2.0 and the LinkedIn UGC Posts API for posting.
"""

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


class LinkedInPlatform:
    """
    LinkedIn API integration.

    Uses OAuth 2.0 (state only, no PKCE) for authentication and the UGC
    Posts API for publishing on behalf of the connected member.
    """

    platform = SocialPlatform.LINKEDIN
    limits = PLATFORM_LIMITS[SocialPlatform.LINKEDIN]

    # LinkedIn OAuth 2.0 endpoints
    AUTHORIZATION_URL = "https://www.linkedin.com/oauth/v2/authorization"
    TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"

    # LinkedIn API endpoints
    API_BASE = "https://api.linkedin.com/v2"
    USERINFO_URL = "https://api.linkedin.com/v2/userinfo"

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
        """Get LinkedIn OAuth 2.0 authorization URL."""
        state = begin_oauth_session(self._store, self.platform, redirect_uri)

        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(self.limits.oauth_scopes),
            "state": state,
        }

        return f"{self.AUTHORIZATION_URL}?{urlencode(params)}"

    async def _token_request(self, data: Dict[str, str], action: str) -> Dict[str, Any]:
        try:
            async with http_session(self._http, self._timeout) as client:
                response = await client.post(
                    self.TOKEN_URL,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as e:
            raise AuthenticationError(f"{action} failed: {e}", platform=self.platform) from e

        token_data = response_json(response)
        if response.status_code != 200 or "access_token" not in token_data:
            raise AuthenticationError(
                f"{action} failed: {error_message_from(token_data, 'LinkedIn authentication failed')}",
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
        """Exchange authorization code for access tokens and look up the member."""
        verify_state(self._store, self.platform, state)
        redirect = resolve_redirect_uri(
            self._store, self.platform, redirect_uri, self._default_redirect_uri
        )

        token_data = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": auth_code,
                "redirect_uri": redirect,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
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
            # Refresh tokens are only issued to approved LinkedIn partners
            refresh_token=token_data.get("refresh_token"),
            expires_at=PlatformCredentials.expiry_from(token_data.get("expires_in")),
            account_id=str(profile.get("sub", "")),
            account_name=profile.get("name", ""),
        )
        self._holder.set(credentials)
        forget_oauth_session(self._store, self.platform)

        logger.info(f"LinkedIn account connected: {credentials.account_name}")
        return credentials

    async def _refresh_grant(self, current: PlatformCredentials) -> PlatformCredentials:
        token_data = await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": current.refresh_token or "",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
            "Token refresh",
        )
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
        """Get the authenticated member from the OpenID userinfo endpoint."""
        async with http_session(self._http, self._timeout) as client:
            response = await client.get(self.USERINFO_URL, headers=bearer_headers(access_token))
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
            account_name=profile.get("name"),
            account_id=profile.get("sub"),
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

    def build_share(
        self,
        account_id: str,
        media_url: str,
        media_type: str,
        options: PublishOptions,
    ) -> Dict[str, Any]:
        """Build the UGC post body for the connected member."""
        caption = build_caption(options.caption, options.hashtags, self.limits.max_caption_length)
        return {
            "author": f"urn:li:person:{account_id}",
            "lifecycleState": "PUBLISHED",
            "specificContent": {
                "com.linkedin.ugc.ShareContent": {
                    "shareCommentary": {
                        "text": caption,
                    },
                    "shareMediaCategory": "IMAGE" if media_type == "image" else "VIDEO",
                    "media": [
                        {
                            "status": "READY",
                            "originalUrl": media_url,
                        }
                    ],
                },
            },
            "visibility": {
                "com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC",
            },
        }

    async def publish(
        self,
        media_url: str,
        media_type: str,
        options: PublishOptions,
    ) -> PublishResult:
        """Publish a post to LinkedIn."""
        if not self.is_authenticated() and not self.can_refresh():
            return not_authenticated_result(self.platform)

        try:
            validation = self.validate_media(media_type, options.aspect_ratio, options.file_size_bytes)
            if not validation.valid:
                return validation_failure(self.platform, validation)

            creds = await self._holder.ensure_fresh(self._refresh_grant)
            share_content = self.build_share(creds.account_id, media_url, media_type, options)

            headers = bearer_headers(
                creds.access_token,
                **{
                    "Content-Type": "application/json",
                    "X-Restli-Protocol-Version": "2.0.0",
                },
            )

            async with http_session(self._http, self._timeout) as client:
                response = await client.post(
                    f"{self.API_BASE}/ugcPosts",
                    headers=headers,
                    json=share_content,
                )
            data = raise_for_platform_error(response, self.platform, "LinkedIn post")

            post_id = str(data.get("id") or response.headers.get("x-restli-id", ""))
            if not post_id:
                return PublishResult.failed(self.platform, "LinkedIn response did not include a post id")

            logger.info(f"Published LinkedIn post {post_id}")
            return PublishResult.ok(
                self.platform,
                post_id=post_id,
                url=f"https://www.linkedin.com/feed/update/{post_id}",
            )
        except Exception as e:
            logger.warning(f"LinkedIn publish failed: {e}")
            return publish_failure(self.platform, e)
