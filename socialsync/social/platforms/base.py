"""
Shared contract and helpers for social media platform connectors.

Defines the capability interface every connector satisfies, the error
hierarchy, and composable helpers (credential guarding, PKCE, caption
building, media validation, HTTP sessions). Connectors use these helpers
directly; there is no connector base class.
"""

import asyncio
import base64
import hashlib
import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

import httpx

from socialsync.types.social import (
    ErrorKind,
    MediaValidationResult,
    PlatformCredentials,
    PlatformLimits,
    PlatformStatus,
    PublishOptions,
    PublishResult,
    SocialPlatform,
)

logger = logging.getLogger(__name__)

# Refresh tokens this many seconds before they actually expire
TOKEN_REFRESH_SKEW = 300

DEFAULT_TIMEOUT = 30.0

TokenRefreshCallback = Callable[[SocialPlatform, PlatformCredentials], Awaitable[None]]


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class PlatformError(Exception):
    """Base exception for platform errors."""

    error_kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        platform: Optional[SocialPlatform] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[int] = None,
        raw_error: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize platform error.

        Args:
            message: Human-readable error message
            platform: The platform that raised the error
            status_code: HTTP status code returned by the platform, if any
            retry_after: Seconds the platform asked us to wait (429 responses)
            raw_error: Raw error response from the platform
        """
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.status_code = status_code
        self.retry_after = retry_after
        self.raw_error = raw_error


class AuthenticationError(PlatformError):
    """Authorization, code exchange or token refresh was rejected."""

    error_kind = ErrorKind.AUTH


class PlatformAPIError(PlatformError):
    """Non-success HTTP response from a platform API."""

    error_kind = ErrorKind.NETWORK


# -----------------------------------------------------------------------------
# Capability contract
# -----------------------------------------------------------------------------


@runtime_checkable
class SocialMediaPlatform(Protocol):
    """
    Operations every platform connector implements.

    ``authenticate`` and ``refresh_access_token`` raise AuthenticationError;
    ``publish`` and ``get_status`` never raise and encode failures in their
    return values.
    """

    platform: SocialPlatform
    limits: PlatformLimits

    @property
    def credentials(self) -> Optional[PlatformCredentials]: ...

    async def get_auth_url(self, redirect_uri: str) -> str: ...

    async def authenticate(
        self,
        auth_code: str,
        redirect_uri: Optional[str] = None,
        state: Optional[str] = None,
    ) -> PlatformCredentials: ...

    async def refresh_access_token(self) -> PlatformCredentials: ...

    def is_authenticated(self) -> bool: ...

    def can_refresh(self) -> bool: ...

    def load_credentials(self, credentials: PlatformCredentials) -> None: ...

    def clear_credentials(self) -> None: ...

    async def get_status(self) -> PlatformStatus: ...

    def validate_media(
        self,
        media_type: str,
        aspect_ratio: str,
        file_size_bytes: Optional[int] = None,
    ) -> MediaValidationResult: ...

    async def publish(
        self,
        media_url: str,
        media_type: str,
        options: PublishOptions,
    ) -> PublishResult: ...


# -----------------------------------------------------------------------------
# Short-lived OAuth storage
# -----------------------------------------------------------------------------


class VerifierStore(Protocol):
    """Short-lived key/value storage that survives the OAuth redirect."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryVerifierStore:
    """
    Process-local VerifierStore with per-entry expiry.

    Suitable for a single-process deployment; multi-process deployments
    should inject a shared store (e.g. Redis or the user session).
    """

    def __init__(self, ttl_seconds: int = 600) -> None:
        self._ttl = ttl_seconds
        self._entries: Dict[str, Tuple[str, float]] = {}

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires = entry
        if time.monotonic() >= expires:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: str) -> None:
        self._entries[key] = (value, time.monotonic() + self._ttl)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


def store_key(platform: SocialPlatform, name: str) -> str:
    """Key under which OAuth round-trip data for ``platform`` is stored."""
    return f"{platform.value}_{name}"


def forget_oauth_session(store: VerifierStore, platform: SocialPlatform) -> None:
    """Drop any pending verifier, state and redirect URI for ``platform``."""
    for name in ("code_verifier", "oauth_state", "redirect_uri"):
        store.delete(store_key(platform, name))


def generate_state() -> str:
    """Random anti-forgery state value."""
    return secrets.token_urlsafe(24)


def generate_pkce_pair() -> Tuple[str, str]:
    """
    Generate PKCE code verifier and challenge.

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    verifier = secrets.token_urlsafe(64)

    # SHA256 hash, base64url encoded without padding
    digest = hashlib.sha256(verifier.encode()).digest()
    challenge = base64.urlsafe_b64encode(digest).decode().rstrip("=")

    return verifier, challenge


def begin_oauth_session(
    store: VerifierStore,
    platform: SocialPlatform,
    redirect_uri: str,
) -> str:
    """Store redirect URI and a fresh state for ``platform``; return the state."""
    state = generate_state()
    store.set(store_key(platform, "oauth_state"), state)
    store.set(store_key(platform, "redirect_uri"), redirect_uri)
    return state


def resolve_redirect_uri(
    store: VerifierStore,
    platform: SocialPlatform,
    redirect_uri: Optional[str],
    default_redirect_uri: Optional[str],
) -> str:
    """Pick the redirect URI for a code exchange, raising if none is known."""
    resolved = (
        redirect_uri
        or store.get(store_key(platform, "redirect_uri"))
        or default_redirect_uri
    )
    if not resolved:
        raise AuthenticationError(
            "No redirect URI available for token exchange",
            platform=platform,
        )
    return resolved


def verify_state(
    store: VerifierStore,
    platform: SocialPlatform,
    state: Optional[str],
) -> None:
    """
    Reject a callback whose state does not match the one we issued.

    Once a state has been issued, a callback without one is rejected too.
    A missing state is accepted only when nothing is stored.
    """
    expected = store.get(store_key(platform, "oauth_state"))
    if expected is None:
        return
    if not state or not secrets.compare_digest(expected, state):
        logger.warning("OAuth state mismatch", extra={"platform": platform.value})
        raise AuthenticationError("Invalid or expired OAuth state", platform=platform)


# -----------------------------------------------------------------------------
# Credential guarding
# -----------------------------------------------------------------------------


class CredentialHolder:
    """
    Owns one connector's credentials.

    All refreshes go through an asyncio.Lock, so only one refresh is ever in
    flight per connector; callers waiting on the lock see the refreshed token
    and skip their own refresh.
    """

    def __init__(
        self,
        platform: SocialPlatform,
        credentials: Optional[PlatformCredentials] = None,
        on_refresh: Optional[TokenRefreshCallback] = None,
    ) -> None:
        self.platform = platform
        self._credentials = credentials
        self._on_refresh = on_refresh
        self._lock = asyncio.Lock()

    @property
    def credentials(self) -> Optional[PlatformCredentials]:
        return self._credentials

    def set(self, credentials: PlatformCredentials) -> None:
        self._credentials = credentials

    def clear(self) -> None:
        self._credentials = None

    def is_authenticated(self) -> bool:
        return self._credentials is not None and self._credentials.is_valid()

    def can_refresh(self) -> bool:
        return self._credentials is not None and bool(self._credentials.refresh_token)

    def _refresh_due(self) -> bool:
        creds = self._credentials
        if creds is None or not creds.refresh_token:
            return False
        return not creds.is_valid() or creds.expires_within(TOKEN_REFRESH_SKEW)

    async def refresh(
        self,
        grant: Callable[[PlatformCredentials], Awaitable[PlatformCredentials]],
    ) -> PlatformCredentials:
        """Run ``grant`` against the held credentials and store the result."""
        async with self._lock:
            return await self._refresh_locked(grant)

    async def ensure_fresh(
        self,
        grant: Callable[[PlatformCredentials], Awaitable[PlatformCredentials]],
    ) -> PlatformCredentials:
        """
        Return usable credentials, refreshing first if the token is due.

        Raises:
            AuthenticationError: no credentials, expired without a refresh
                token, or the refresh itself failed
        """
        async with self._lock:
            if self._refresh_due():
                try:
                    return await self._refresh_locked(grant)
                except AuthenticationError as e:
                    # A token inside the skew window is still usable
                    if self._credentials is None or not self._credentials.is_valid():
                        raise
                    logger.warning(
                        f"Early refresh failed for {self.platform.value}, using current token: {e.message}"
                    )

            creds = self._credentials
            if creds is None or not creds.is_valid():
                raise AuthenticationError("Not authenticated", platform=self.platform)
            return creds

    async def _refresh_locked(
        self,
        grant: Callable[[PlatformCredentials], Awaitable[PlatformCredentials]],
    ) -> PlatformCredentials:
        current = self._credentials
        if current is None or not current.refresh_token:
            raise AuthenticationError("No refresh token available", platform=self.platform)

        # Prior credentials stay in place if the grant raises
        refreshed = await grant(current)
        self._credentials = refreshed

        logger.info(
            "Access token refreshed",
            extra={"platform": self.platform.value, "expires_at": str(refreshed.expires_at)},
        )

        if self._on_refresh:
            try:
                await self._on_refresh(self.platform, refreshed)
            except Exception as e:
                logger.warning(f"Token refresh callback failed for {self.platform.value}: {e}")

        return refreshed


# -----------------------------------------------------------------------------
# HTTP helpers
# -----------------------------------------------------------------------------


@asynccontextmanager
async def http_session(
    client: Optional[httpx.AsyncClient],
    timeout: float = DEFAULT_TIMEOUT,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


def bearer_headers(access_token: str, **extra: str) -> Dict[str, str]:
    headers = {"Authorization": f"Bearer {access_token}"}
    headers.update(extra)
    return headers


def response_json(response: httpx.Response) -> Dict[str, Any]:
    """Decode a JSON object body, tolerating empty or non-JSON bodies."""
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def error_message_from(data: Dict[str, Any], default: str) -> str:
    """Pick the most descriptive error message a platform returned."""
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if message:
            return str(message)
    for key in ("error_description", "detail", "message", "title"):
        value = data.get(key)
        if value:
            return str(value)
    if isinstance(error, str) and error:
        return error
    return default


def raise_for_platform_error(
    response: httpx.Response,
    platform: SocialPlatform,
    action: str,
) -> Dict[str, Any]:
    """
    Return the decoded body of a successful response.

    Raises:
        AuthenticationError: on 401
        PlatformAPIError: on any other non-2xx status
    """
    data = response_json(response)
    if response.is_success:
        return data

    message = error_message_from(data, f"HTTP {response.status_code}")

    if response.status_code == 401:
        raise AuthenticationError(
            f"{action} failed: invalid or expired access token",
            platform=platform,
            status_code=401,
            raw_error=data,
        )

    retry_after = None
    if response.status_code == 429:
        try:
            retry_after = int(response.headers.get("retry-after", 60))
        except ValueError:
            retry_after = 60
        message = f"Rate limit exceeded: {message}"

    raise PlatformAPIError(
        f"{action} failed: {message}",
        platform=platform,
        status_code=response.status_code,
        retry_after=retry_after,
        raw_error=data,
    )


def publish_failure(platform: SocialPlatform, exc: Exception) -> PublishResult:
    """Convert any exception raised while publishing into a failed result."""
    if isinstance(exc, PlatformError):
        return PublishResult.failed(platform, exc.message, exc.error_kind)
    if isinstance(exc, httpx.HTTPError):
        return PublishResult.failed(platform, f"Network error: {exc}", ErrorKind.NETWORK)
    return PublishResult.failed(platform, str(exc) or "Unknown error", ErrorKind.UNKNOWN)


def not_authenticated_result(platform: SocialPlatform) -> PublishResult:
    return PublishResult.failed(platform, "Not authenticated", ErrorKind.AUTH)


def validation_failure(
    platform: SocialPlatform,
    validation: MediaValidationResult,
) -> PublishResult:
    return PublishResult.failed(
        platform,
        f"Media validation failed: {', '.join(validation.errors)}",
        ErrorKind.VALIDATION,
    )


def status_failure(exc: Exception) -> PlatformStatus:
    """Convert any exception raised while probing status into a status."""
    if isinstance(exc, PlatformError):
        return PlatformStatus(connected=False, error=exc.message, error_kind=exc.error_kind)
    if isinstance(exc, httpx.HTTPError):
        return PlatformStatus(
            connected=False,
            error=f"Network error: {exc}",
            error_kind=ErrorKind.NETWORK,
        )
    return PlatformStatus(connected=False, error=str(exc) or "Unknown error", error_kind=ErrorKind.UNKNOWN)


def not_authenticated_status() -> PlatformStatus:
    return PlatformStatus(connected=False, error="Not authenticated", error_kind=ErrorKind.AUTH)


# -----------------------------------------------------------------------------
# Content helpers
# -----------------------------------------------------------------------------


def format_hashtags(hashtags: List[str]) -> str:
    """Join hashtags with spaces, adding a leading '#' where missing."""
    tags = [tag.strip() for tag in hashtags if tag and tag.strip()]
    return " ".join(tag if tag.startswith("#") else f"#{tag}" for tag in tags)


def build_caption(
    caption: Optional[str],
    hashtags: Optional[List[str]],
    max_length: Optional[int] = None,
) -> str:
    """
    Build the effective caption: caption, a blank line, then hashtags.

    When ``max_length`` is given, the hashtag block is dropped entirely if it
    would push the text over the limit. A caption that is too long on its own
    is cut at the limit.
    """
    result = caption or ""
    tag_text = format_hashtags(hashtags or [])

    if tag_text:
        combined = f"{result}\n\n{tag_text}" if result else tag_text
        if max_length is None or len(combined) <= max_length:
            result = combined

    if max_length is not None and len(result) > max_length:
        result = result[:max_length]

    return result


def parse_aspect_ratio(aspect_ratio: str) -> Optional[float]:
    """Parse a ``W:H`` descriptor into a width/height ratio."""
    try:
        width, height = aspect_ratio.split(":")
        ratio = float(width) / float(height)
    except (AttributeError, ValueError, ZeroDivisionError):
        return None
    return ratio if ratio > 0 else None


def validate_media_against(
    limits: PlatformLimits,
    media_type: str,
    aspect_ratio: str,
    file_size_bytes: Optional[int] = None,
) -> MediaValidationResult:
    """
    Check declared media against a platform's limits.

    Pure function: never performs a network call.
    """
    errors: List[str] = []

    if media_type not in limits.supported_media_types:
        errors.append(
            f"Media type '{media_type}' not supported by {limits.name}. "
            f"Supported types: {', '.join(limits.supported_media_types)}"
        )
        return MediaValidationResult(valid=False, errors=errors)

    max_bytes = limits.max_bytes_for(media_type)
    if file_size_bytes is not None and file_size_bytes > max_bytes:
        errors.append(
            f"{media_type.capitalize()} file size must be at most "
            f"{_format_bytes(max_bytes)} for {limits.name}"
        )

    ratio_range = limits.aspect_ratio_ranges.get(media_type)
    if ratio_range is not None:
        ratio = parse_aspect_ratio(aspect_ratio)
        low, high = ratio_range
        if ratio is None:
            errors.append(f"Invalid aspect ratio '{aspect_ratio}'; expected W:H")
        # Small tolerance so descriptors like 1.91:1 sit inside their own bound
        elif ratio < low - 0.01 or ratio > high + 0.01:
            errors.append(
                f"Aspect ratio {aspect_ratio} is outside the range {limits.name} "
                f"accepts for {media_type} ({low:.2f} to {high:.2f})"
            )

    return MediaValidationResult(valid=not errors, errors=errors)


def _format_bytes(size: int) -> str:
    if size >= 1024 ** 3 and size % (1024 ** 3) == 0:
        return f"{size // 1024 ** 3}GB"
    return f"{size // (1024 * 1024)}MB"
