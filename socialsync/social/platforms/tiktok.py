"""
TikTok Content Posting API integration.

Implements TikTok's OAuth 2.0 (v2) flow and direct posting of videos and
photos pulled from a public URL.
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

DEFAULT_PRIVACY_LEVEL = "SELF_ONLY"

USER_INFO_FIELDS = "open_id,union_id,avatar_url,display_name"


def check_tiktok_body(
    response: httpx.Response,
    platform: SocialPlatform,
    action: str,
) -> Dict[str, Any]:
    """
    Like raise_for_platform_error, but also honours TikTok's body error code.

    TikTok answers 200 with ``{"error": {"code": "..."}}`` for many failures;
    anything other than ``"ok"`` is treated as an API error.
    """
    data = raise_for_platform_error(response, platform, action)

    error = data.get("error")
    if isinstance(error, dict) and error.get("code", "ok") != "ok":
        code = error.get("code")
        message = error.get("message") or code
        if code in ("access_token_invalid", "scope_not_authorized"):
            raise AuthenticationError(
                f"{action} failed: {message}",
                platform=platform,
                status_code=response.status_code,
                raw_error=data,
            )
        raise PlatformAPIError(
            f"{action} failed: {message}",
            platform=platform,
            status_code=response.status_code,
            raw_error=data,
        )
    return data


class TikTokPlatform:
    """
    TikTok integration.

    TikTok calls the client id a "client key". Refresh tokens rotate on
    every refresh. Videos go through the video init endpoint; images are
    posted as single-photo content.
    """

    platform = SocialPlatform.TIKTOK
    limits = PLATFORM_LIMITS[SocialPlatform.TIKTOK]

    AUTHORIZATION_URL = "https://www.tiktok.com/v2/auth/authorize/"
    TOKEN_URL = "https://open.tiktokapis.com/v2/oauth/token/"

    API_BASE = "https://open.tiktokapis.com/v2"

    def __init__(
        self,
        client_key: str,
        client_secret: str,
        credentials: Optional[PlatformCredentials] = None,
        verifier_store: Optional[VerifierStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        default_redirect_uri: Optional[str] = None,
        on_token_refresh: Optional[TokenRefreshCallback] = None,
        default_privacy_level: str = DEFAULT_PRIVACY_LEVEL,
    ) -> None:
        self._client_key = client_key
        self._client_secret = client_secret
        self._store = verifier_store if verifier_store is not None else InMemoryVerifierStore()
        self._http = http_client
        self._timeout = timeout
        self._default_redirect_uri = default_redirect_uri
        self._default_privacy_level = default_privacy_level
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
            "client_key": self._client_key,
            "response_type": "code",
            "scope": ",".join(self.limits.oauth_scopes),
            "redirect_uri": redirect_uri,
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
        # Token errors come back as 200 with an "error" string and no token
        if response.status_code != 200 or "access_token" not in token_data:
            raise AuthenticationError(
                f"{action} failed: {error_message_from(token_data, 'TikTok authentication failed')}",
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
        """Exchange the authorization code and look up the creator."""
        verify_state(self._store, self.platform, state)
        redirect = resolve_redirect_uri(
            self._store, self.platform, redirect_uri, self._default_redirect_uri
        )

        token_data = await self._token_request(
            {
                "client_key": self._client_key,
                "client_secret": self._client_secret,
                "code": auth_code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect,
            },
            "Token exchange",
        )

        try:
            user = await self._get_user_info(token_data["access_token"])
        except Exception as e:
            raise AuthenticationError(
                f"Profile lookup after token exchange failed: {e}",
                platform=self.platform,
            ) from e

        credentials = PlatformCredentials(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            expires_at=PlatformCredentials.expiry_from(token_data.get("expires_in")),
            account_id=str(user.get("open_id") or token_data.get("open_id", "")),
            account_name=user.get("display_name", ""),
        )
        self._holder.set(credentials)
        forget_oauth_session(self._store, self.platform)

        logger.info(f"TikTok account connected: {credentials.account_name}")
        return credentials

    async def _refresh_grant(self, current: PlatformCredentials) -> PlatformCredentials:
        token_data = await self._token_request(
            {
                "client_key": self._client_key,
                "client_secret": self._client_secret,
                "grant_type": "refresh_token",
                "refresh_token": current.refresh_token or "",
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
        return await self._holder.refresh(self._refresh_grant)

    # -------------------------------------------------------------------------
    # User/Account Methods
    # -------------------------------------------------------------------------

    async def _get_user_info(self, access_token: str) -> Dict[str, Any]:
        async with http_session(self._http, self._timeout) as client:
            response = await client.get(
                f"{self.API_BASE}/user/info/",
                params={"fields": USER_INFO_FIELDS},
                headers=bearer_headers(access_token),
            )
        data = check_tiktok_body(response, self.platform, "Profile lookup")
        return data.get("data", {}).get("user", {})

    async def get_status(self) -> PlatformStatus:
        if not self.is_authenticated() and not self.can_refresh():
            return not_authenticated_status()

        try:
            creds = await self._holder.ensure_fresh(self._refresh_grant)
            user = await self._get_user_info(creds.access_token)
        except Exception as e:
            return status_failure(e)

        return PlatformStatus(
            connected=True,
            account_name=user.get("display_name"),
            account_id=user.get("open_id") or creds.account_id,
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

    def build_post_request(
        self,
        media_url: str,
        media_type: str,
        options: PublishOptions,
    ) -> Dict[str, Any]:
        caption = build_caption(options.caption, options.hashtags, self.limits.max_caption_length)
        privacy_level = options.privacy_level or self._default_privacy_level

        if media_type == "video":
            return {
                "post_info": {
                    "title": caption,
                    "privacy_level": privacy_level,
                },
                "source_info": {
                    "source": "PULL_FROM_URL",
                    "video_url": media_url,
                },
            }

        return {
            "post_info": {
                "title": caption,
                "privacy_level": privacy_level,
            },
            "source_info": {
                "source": "PULL_FROM_URL",
                "photo_images": [media_url],
                "photo_cover_index": 0,
            },
            "post_mode": "DIRECT_POST",
            "media_type": "PHOTO",
        }

    async def publish(
        self,
        media_url: str,
        media_type: str,
        options: PublishOptions,
    ) -> PublishResult:
        """Start a direct post; TikTok pulls the media from ``media_url``."""
        if not self.is_authenticated() and not self.can_refresh():
            return not_authenticated_result(self.platform)

        try:
            validation = self.validate_media(media_type, options.aspect_ratio, options.file_size_bytes)
            if not validation.valid:
                return validation_failure(self.platform, validation)

            creds = await self._holder.ensure_fresh(self._refresh_grant)
            endpoint = "video/init/" if media_type == "video" else "content/init/"

            async with http_session(self._http, self._timeout) as client:
                response = await client.post(
                    f"{self.API_BASE}/post/publish/{endpoint}",
                    headers=bearer_headers(
                        creds.access_token,
                        **{"Content-Type": "application/json; charset=UTF-8"},
                    ),
                    json=self.build_post_request(media_url, media_type, options),
                )
            data = check_tiktok_body(response, self.platform, "TikTok post")

            publish_id = str(data.get("data", {}).get("publish_id", ""))
            if not publish_id:
                return PublishResult.failed(self.platform, "TikTok response did not include a publish id")

            logger.info(
                f"Started TikTok {media_type} post {publish_id}",
                extra={"privacy_level": options.privacy_level or self._default_privacy_level},
            )
            # publish_id is not a video id; the post has no link until TikTok finishes processing
            return PublishResult.ok(self.platform, post_id=publish_id)
        except Exception as e:
            logger.warning(f"TikTok publish failed: {e}")
            return publish_failure(self.platform, e)
