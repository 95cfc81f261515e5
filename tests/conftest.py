"""
Pytest configuration and shared fixtures for socialsync tests.

This module provides common fixtures used across all test files:
- Environment isolation for platform credentials
- A fake platform API served through httpx.MockTransport
- Credential factories
"""

import json
import os
import sys
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import parse_qs

import httpx
import pytest

# Environment setup before any imports
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("SENTRY_DSN", None)

PLATFORM_ENV_VARS = (
    "INSTAGRAM_CLIENT_ID",
    "INSTAGRAM_CLIENT_SECRET",
    "TIKTOK_CLIENT_KEY",
    "TIKTOK_CLIENT_SECRET",
    "LINKEDIN_CLIENT_ID",
    "LINKEDIN_CLIENT_SECRET",
    "TWITTER_CLIENT_ID",
    "TWITTER_CLIENT_SECRET",
    "OAUTH_REDIRECT_BASE_URL",
)
for _name in PLATFORM_ENV_VARS:
    os.environ.pop(_name, None)

# Ensure project root is in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from socialsync.types.social import PlatformCredentials, utcnow  # noqa: E402


def _bare_url(request: httpx.Request) -> str:
    return str(request.url).split("?", 1)[0]


Responder = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakePlatformAPI:
    """
    Route table behind an httpx.MockTransport.

    Routes match on method and URL without the query string. A route given
    several responses serves them in order and then repeats the last one.
    Every request is recorded; unmatched requests get a 404.
    """

    def __init__(self) -> None:
        self._routes: Dict[Tuple[str, str], List[Responder]] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        json_body: Any = None,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        response = httpx.Response(status_code, json=json_body, headers=headers)
        self._routes.setdefault((method.upper(), url), []).append(response)

    def add_handler(self, method: str, url: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self._routes.setdefault((method.upper(), url), []).append(handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, _bare_url(request))
        queue = self._routes.get(key)
        if not queue:
            return httpx.Response(404, json={"error": {"message": f"no route for {key}"}})

        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(responder, httpx.Response):
            return responder
        return responder(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method.upper() and _bare_url(r) == url
        ]


def form_body(request: httpx.Request) -> Dict[str, str]:
    """Decode an x-www-form-urlencoded request body."""
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def json_body(request: httpx.Request) -> Dict[str, Any]:
    return json.loads(request.content.decode())


@pytest.fixture
def fake_api():
    """Fake platform API; pass ``fake_api.client()`` to connectors."""
    return FakePlatformAPI()


@pytest.fixture
def make_credentials():
    """Build credentials expiring ``expires_in`` seconds from now."""

    def _make(
        expires_in: Optional[int] = 3600,
        refresh_token: Optional[str] = "refresh-1",
        access_token: str = "access-1",
        account_id: str = "acct-1",
        account_name: str = "blkout",
    ) -> PlatformCredentials:
        return PlatformCredentials(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=None if expires_in is None else utcnow() + timedelta(seconds=expires_in),
            account_id=account_id,
            account_name=account_name,
        )

    return _make


@pytest.fixture
def clean_env(monkeypatch):
    """Remove platform credentials from the environment for one test."""
    for name in PLATFORM_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
