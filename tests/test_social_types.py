"""
Tests for social publishing types: credentials, options, results and limits.
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from socialsync.types.social import (
    GB,
    MB,
    PLATFORM_LIMITS,
    ErrorKind,
    PlatformCredentials,
    PublishOptions,
    PublishResult,
    SocialPlatform,
    get_platform_limits,
    utcnow,
)


class TestPlatformCredentials:
    """Tests for credential validity rules."""

    def test_no_expiry_is_valid(self):
        creds = PlatformCredentials(access_token="tok")
        assert creds.is_valid() is True

    def test_empty_access_token_is_invalid(self):
        creds = PlatformCredentials(access_token="")
        assert creds.is_valid() is False

    def test_future_expiry_is_valid(self):
        creds = PlatformCredentials(access_token="tok", expires_at=utcnow() + timedelta(minutes=5))
        assert creds.is_valid() is True

    def test_past_expiry_is_invalid(self):
        creds = PlatformCredentials(access_token="tok", expires_at=utcnow() - timedelta(seconds=1))
        assert creds.is_valid() is False

    def test_validity_uses_supplied_clock(self):
        expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
        creds = PlatformCredentials(access_token="tok", expires_at=expires)

        assert creds.is_valid(now=expires - timedelta(seconds=1)) is True
        assert creds.is_valid(now=expires) is False

    def test_naive_expiry_is_treated_as_utc(self):
        creds = PlatformCredentials(access_token="tok", expires_at=datetime(2030, 1, 1))
        assert creds.expires_at.tzinfo == timezone.utc

    def test_expires_within(self):
        creds = PlatformCredentials(access_token="tok", expires_at=utcnow() + timedelta(seconds=120))

        assert creds.expires_within(300) is True
        assert creds.expires_within(60) is False

    def test_expires_within_without_expiry(self):
        assert PlatformCredentials(access_token="tok").expires_within(300) is False

    def test_expiry_from_seconds(self):
        before = utcnow()
        expires_at = PlatformCredentials.expiry_from(7200)

        assert expires_at >= before + timedelta(seconds=7200)
        assert PlatformCredentials.expiry_from(None) is None


class TestPublishModels:
    """Tests for publish options and results."""

    def test_options_defaults(self):
        options = PublishOptions()

        assert options.caption is None
        assert options.hashtags == []
        assert options.aspect_ratio == "1:1"
        assert options.file_size_bytes is None

    def test_negative_file_size_rejected(self):
        with pytest.raises(ValidationError):
            PublishOptions(file_size_bytes=-1)

    def test_ok_result(self):
        result = PublishResult.ok(SocialPlatform.TWITTER, post_id="1", url="https://twitter.com/i/web/status/1")

        assert result.success is True
        assert result.error is None
        assert result.error_kind is None

    def test_failed_result_defaults_to_unknown(self):
        result = PublishResult.failed(SocialPlatform.TIKTOK, "boom")

        assert result.success is False
        assert result.post_id is None
        assert result.error_kind == ErrorKind.UNKNOWN

    def test_result_serializes_enums_as_strings(self):
        result = PublishResult.failed(SocialPlatform.LINKEDIN, "nope", ErrorKind.AUTH)
        data = result.model_dump(mode="json")

        assert data["platform"] == "linkedin"
        assert data["error_kind"] == "auth"


class TestPlatformLimits:
    """Tests for the hard-coded limits table."""

    @pytest.mark.parametrize(
        "platform,caption,image,video",
        [
            (SocialPlatform.INSTAGRAM, 2200, 8 * MB, 100 * MB),
            (SocialPlatform.TIKTOK, 2200, 20 * MB, 4 * GB),
            (SocialPlatform.LINKEDIN, 3000, 8 * MB, 200 * MB),
            (SocialPlatform.TWITTER, 280, 5 * MB, 512 * MB),
        ],
    )
    def test_limits_table(self, platform, caption, image, video):
        limits = get_platform_limits(platform)

        assert limits.max_caption_length == caption
        assert limits.max_bytes_for("image") == image
        assert limits.max_bytes_for("video") == video

    def test_every_platform_has_limits(self):
        assert set(PLATFORM_LIMITS) == set(SocialPlatform)

    def test_aspect_ratio_only_enforced_for_instagram_and_tiktok(self):
        assert PLATFORM_LIMITS[SocialPlatform.INSTAGRAM].aspect_ratio_ranges
        assert PLATFORM_LIMITS[SocialPlatform.TIKTOK].aspect_ratio_ranges
        assert not PLATFORM_LIMITS[SocialPlatform.LINKEDIN].aspect_ratio_ranges
        assert not PLATFORM_LIMITS[SocialPlatform.TWITTER].aspect_ratio_ranges

    def test_twitter_scopes_include_offline_access(self):
        assert "offline.access" in PLATFORM_LIMITS[SocialPlatform.TWITTER].oauth_scopes
