"""
Tests for the shared connector helpers in socialsync.social.platforms.base.

Covers caption building, media validation, PKCE, the verifier store,
OAuth state checks, credential guarding and HTTP error mapping.
"""

import asyncio
import base64
import hashlib
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from socialsync.social.platforms.base import (
    TOKEN_REFRESH_SKEW,
    AuthenticationError,
    CredentialHolder,
    InMemoryVerifierStore,
    PlatformAPIError,
    begin_oauth_session,
    build_caption,
    error_message_from,
    format_hashtags,
    generate_pkce_pair,
    parse_aspect_ratio,
    publish_failure,
    raise_for_platform_error,
    resolve_redirect_uri,
    store_key,
    validate_media_against,
    verify_state,
)
from socialsync.types.social import (
    MB,
    PLATFORM_LIMITS,
    ErrorKind,
    SocialPlatform,
    utcnow,
)


class TestCaptionBuilding:
    """Tests for hashtag formatting and caption assembly."""

    def test_hashtags_get_leading_hash(self):
        assert format_hashtags(["news", "#blkout", " ", ""]) == "#news #blkout"

    def test_caption_and_hashtags(self):
        assert build_caption("Hello", ["a", "b"]) == "Hello\n\n#a #b"

    def test_hashtags_only(self):
        assert build_caption(None, ["a"]) == "#a"

    def test_caption_only(self):
        assert build_caption("Hello", []) == "Hello"

    def test_empty(self):
        assert build_caption(None, None) == ""

    def test_hashtags_dropped_whole_when_over_limit(self):
        caption = "x" * 270
        result = build_caption(caption, ["longhashtag"], max_length=280)

        assert result == caption
        assert "#" not in result

    def test_hashtags_kept_when_they_fit(self):
        result = build_caption("x" * 260, ["tag"], max_length=280)

        assert result.endswith("\n\n#tag")
        assert len(result) <= 280

    def test_long_caption_is_cut_at_limit(self):
        result = build_caption("y" * 400, ["tag"], max_length=280)

        assert len(result) == 280
        assert "#tag" not in result


class TestMediaValidation:
    """Tests for validate_media_against."""

    instagram = PLATFORM_LIMITS[SocialPlatform.INSTAGRAM]
    tiktok = PLATFORM_LIMITS[SocialPlatform.TIKTOK]
    linkedin = PLATFORM_LIMITS[SocialPlatform.LINKEDIN]
    twitter = PLATFORM_LIMITS[SocialPlatform.TWITTER]

    def test_parse_aspect_ratio(self):
        assert parse_aspect_ratio("16:9") == pytest.approx(16 / 9)
        assert parse_aspect_ratio("1.91:1") == pytest.approx(1.91)
        assert parse_aspect_ratio("square") is None
        assert parse_aspect_ratio("1:0") is None

    def test_square_image_valid_on_instagram(self):
        assert validate_media_against(self.instagram, "image", "1:1").valid is True

    def test_portrait_image_ratio_rejected_on_instagram(self):
        result = validate_media_against(self.instagram, "image", "9:16")

        assert result.valid is False
        assert "Aspect ratio 9:16" in result.errors[0]

    def test_portrait_video_accepted_on_instagram(self):
        assert validate_media_against(self.instagram, "video", "9:16").valid is True

    def test_boundary_ratios_accepted(self):
        assert validate_media_against(self.instagram, "image", "4:5").valid is True
        assert validate_media_against(self.instagram, "image", "1.91:1").valid is True

    def test_size_ceiling_is_inclusive(self):
        assert validate_media_against(self.instagram, "image", "1:1", 8 * MB).valid is True

        result = validate_media_against(self.instagram, "image", "1:1", 8 * MB + 1)
        assert result.valid is False
        assert "8MB" in result.errors[0]

    def test_unsupported_media_type(self):
        result = validate_media_against(self.twitter, "gif", "1:1")

        assert result.valid is False
        assert "not supported by Twitter/X" in result.errors[0]

    def test_ratio_not_enforced_on_linkedin(self):
        assert validate_media_against(self.linkedin, "image", "21:9").valid is True
        assert validate_media_against(self.twitter, "video", "garbage").valid is True

    def test_invalid_ratio_descriptor_where_enforced(self):
        result = validate_media_against(self.tiktok, "video", "garbage")
        assert result.valid is False

    def test_size_and_ratio_errors_are_both_reported(self):
        result = validate_media_against(self.tiktok, "image", "3:1", 21 * MB)
        assert len(result.errors) == 2

    def test_tiktok_video_limit_in_gb(self):
        result = validate_media_against(self.tiktok, "video", "9:16", 5 * 1024 * MB)
        assert "4GB" in result.errors[0]


class TestPKCEAndState:
    """Tests for PKCE generation, the verifier store and state checks."""

    def test_pkce_challenge_matches_verifier(self):
        verifier, challenge = generate_pkce_pair()

        digest = hashlib.sha256(verifier.encode()).digest()
        expected = base64.urlsafe_b64encode(digest).decode().rstrip("=")

        assert challenge == expected
        assert "=" not in challenge
        assert 43 <= len(verifier) <= 128

    def test_pkce_pairs_are_unique(self):
        assert generate_pkce_pair()[0] != generate_pkce_pair()[0]

    def test_store_set_get_delete(self):
        store = InMemoryVerifierStore()
        store.set("k", "v")
        assert store.get("k") == "v"

        store.delete("k")
        assert store.get("k") is None
        store.delete("k")

    def test_store_entries_expire(self):
        store = InMemoryVerifierStore(ttl_seconds=10)
        with patch("socialsync.social.platforms.base.time.monotonic", return_value=100.0):
            store.set("k", "v")
        with patch("socialsync.social.platforms.base.time.monotonic", return_value=109.0):
            assert store.get("k") == "v"
        with patch("socialsync.social.platforms.base.time.monotonic", return_value=110.0):
            assert store.get("k") is None
        assert len(store) == 0

    def test_state_round_trip(self):
        store = InMemoryVerifierStore()
        state = begin_oauth_session(store, SocialPlatform.LINKEDIN, "https://app/cb")

        verify_state(store, SocialPlatform.LINKEDIN, state)
        assert store.get(store_key(SocialPlatform.LINKEDIN, "redirect_uri")) == "https://app/cb"

    def test_state_mismatch_raises(self):
        store = InMemoryVerifierStore()
        begin_oauth_session(store, SocialPlatform.LINKEDIN, "https://app/cb")

        with pytest.raises(AuthenticationError, match="Invalid or expired OAuth state"):
            verify_state(store, SocialPlatform.LINKEDIN, "forged")

    def test_missing_state_rejected_once_issued(self):
        store = InMemoryVerifierStore()
        begin_oauth_session(store, SocialPlatform.LINKEDIN, "https://app/cb")

        with pytest.raises(AuthenticationError, match="Invalid or expired OAuth state"):
            verify_state(store, SocialPlatform.LINKEDIN, None)
        with pytest.raises(AuthenticationError):
            verify_state(store, SocialPlatform.LINKEDIN, "")

    def test_missing_state_accepted_when_none_issued(self):
        verify_state(InMemoryVerifierStore(), SocialPlatform.LINKEDIN, None)

    def test_redirect_uri_resolution_order(self):
        store = InMemoryVerifierStore()
        platform = SocialPlatform.TWITTER

        assert resolve_redirect_uri(store, platform, None, "https://default") == "https://default"

        store.set(store_key(platform, "redirect_uri"), "https://stored")
        assert resolve_redirect_uri(store, platform, None, "https://default") == "https://stored"
        assert resolve_redirect_uri(store, platform, "https://explicit", None) == "https://explicit"

    def test_redirect_uri_missing_raises(self):
        with pytest.raises(AuthenticationError):
            resolve_redirect_uri(InMemoryVerifierStore(), SocialPlatform.TWITTER, None, None)


class TestCredentialHolder:
    """Tests for guarded credential state and single-flight refresh."""

    @staticmethod
    def _grant(new_token: str = "access-2", delay: float = 0):
        calls = []

        async def grant(current):
            calls.append(current)
            if delay:
                await asyncio.sleep(delay)
            return current.model_copy(
                update={"access_token": new_token, "expires_at": utcnow() + timedelta(hours=2)}
            )

        return grant, calls

    @pytest.mark.asyncio
    async def test_fresh_token_is_not_refreshed(self, make_credentials):
        holder = CredentialHolder(SocialPlatform.TWITTER, make_credentials(expires_in=3600))
        grant, calls = self._grant()

        creds = await holder.ensure_fresh(grant)

        assert creds.access_token == "access-1"
        assert calls == []

    @pytest.mark.asyncio
    async def test_token_inside_skew_is_refreshed(self, make_credentials):
        holder = CredentialHolder(
            SocialPlatform.TWITTER,
            make_credentials(expires_in=TOKEN_REFRESH_SKEW - 10),
        )
        grant, calls = self._grant()

        creds = await holder.ensure_fresh(grant)

        assert creds.access_token == "access-2"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_raises(self, make_credentials):
        holder = CredentialHolder(
            SocialPlatform.TWITTER,
            make_credentials(expires_in=-10, refresh_token=None),
        )
        grant, calls = self._grant()

        with pytest.raises(AuthenticationError, match="Not authenticated"):
            await holder.ensure_fresh(grant)
        assert calls == []

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self, make_credentials):
        holder = CredentialHolder(SocialPlatform.TWITTER, make_credentials(refresh_token=None))
        grant, calls = self._grant()

        with pytest.raises(AuthenticationError, match="No refresh token available"):
            await holder.refresh(grant)
        assert calls == []

    @pytest.mark.asyncio
    async def test_concurrent_callers_refresh_once(self, make_credentials):
        holder = CredentialHolder(SocialPlatform.TWITTER, make_credentials(expires_in=-10))
        grant, calls = self._grant(delay=0.01)

        results = await asyncio.gather(*(holder.ensure_fresh(grant) for _ in range(5)))

        assert len(calls) == 1
        assert {c.access_token for c in results} == {"access-2"}

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_prior_credentials(self, make_credentials):
        original = make_credentials(expires_in=-10)
        holder = CredentialHolder(SocialPlatform.TWITTER, original)

        async def failing(current):
            raise AuthenticationError("Token refresh failed: invalid_grant")

        with pytest.raises(AuthenticationError):
            await holder.ensure_fresh(failing)
        assert holder.credentials == original

    @pytest.mark.asyncio
    async def test_failed_early_refresh_falls_back_to_valid_token(self, make_credentials):
        holder = CredentialHolder(SocialPlatform.TWITTER, make_credentials(expires_in=60))

        async def failing(current):
            raise AuthenticationError("Token refresh failed: temporarily unavailable")

        creds = await holder.ensure_fresh(failing)
        assert creds.access_token == "access-1"

    @pytest.mark.asyncio
    async def test_refresh_callback_receives_new_credentials(self, make_credentials):
        callback = AsyncMock()
        holder = CredentialHolder(SocialPlatform.TIKTOK, make_credentials(), on_refresh=callback)
        grant, _ = self._grant()

        refreshed = await holder.refresh(grant)

        callback.assert_awaited_once_with(SocialPlatform.TIKTOK, refreshed)

    @pytest.mark.asyncio
    async def test_refresh_callback_failure_is_not_fatal(self, make_credentials):
        callback = AsyncMock(side_effect=RuntimeError("db down"))
        holder = CredentialHolder(SocialPlatform.TIKTOK, make_credentials(), on_refresh=callback)
        grant, _ = self._grant()

        refreshed = await holder.refresh(grant)

        assert holder.credentials == refreshed


class TestHTTPErrorMapping:
    """Tests for response decoding and error conversion."""

    def test_error_message_from_variants(self):
        assert error_message_from({"error": {"message": "nested"}}, "d") == "nested"
        assert error_message_from({"error": "invalid_grant", "error_description": "bad code"}, "d") == "bad code"
        assert error_message_from({"detail": "Unauthorized"}, "d") == "Unauthorized"
        assert error_message_from({"error": "invalid_grant"}, "d") == "invalid_grant"
        assert error_message_from({}, "d") == "d"

    def test_success_returns_body(self):
        response = httpx.Response(200, json={"id": "1"})
        assert raise_for_platform_error(response, SocialPlatform.TWITTER, "Tweet") == {"id": "1"}

    def test_empty_success_body(self):
        response = httpx.Response(201)
        assert raise_for_platform_error(response, SocialPlatform.LINKEDIN, "Post") == {}

    def test_401_raises_authentication_error(self):
        response = httpx.Response(401, json={"detail": "Unauthorized"})

        with pytest.raises(AuthenticationError) as exc_info:
            raise_for_platform_error(response, SocialPlatform.TWITTER, "Tweet")
        assert exc_info.value.status_code == 401

    def test_429_carries_retry_after(self):
        response = httpx.Response(429, json={"title": "Too Many Requests"}, headers={"retry-after": "120"})

        with pytest.raises(PlatformAPIError) as exc_info:
            raise_for_platform_error(response, SocialPlatform.TWITTER, "Tweet")

        assert exc_info.value.retry_after == 120
        assert "Rate limit exceeded" in exc_info.value.message

    def test_500_raises_api_error_with_platform_message(self):
        response = httpx.Response(500, json={"error": {"message": "Service unavailable"}})

        with pytest.raises(PlatformAPIError, match="Service unavailable"):
            raise_for_platform_error(response, SocialPlatform.INSTAGRAM, "Media container")

    def test_publish_failure_kinds(self):
        platform = SocialPlatform.LINKEDIN

        assert publish_failure(platform, AuthenticationError("x")).error_kind == ErrorKind.AUTH
        assert publish_failure(platform, PlatformAPIError("x")).error_kind == ErrorKind.NETWORK
        assert publish_failure(platform, httpx.ConnectError("refused")).error_kind == ErrorKind.NETWORK
        assert publish_failure(platform, ValueError("odd")).error_kind == ErrorKind.UNKNOWN
