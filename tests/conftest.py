"""
Shared fixtures: a controllable clock and a fake provider behind
``httpx.MockTransport``.
"""

from __future__ import annotations

import itertools
import json
from typing import Any, Dict, List
from urllib.parse import parse_qsl

import httpx
import pytest

from broker.service import build_broker
from config.settings import Settings
from connectors.providers import PROVIDER_CONFIGS, Provider

START = 1_700_000_000.0
BLOCKED_CHAT = 403


class FakeClock:
    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


_PROFILES = {
    Provider.TWITTER: {"data": {"id": "tw-42", "username": "alice", "name": "Alice"}},
    Provider.REDDIT: {"id": "rd-42", "name": "alice_r"},
    Provider.DISCORD: {"id": "dc-42", "username": "alice", "global_name": "Alice D"},
}


def _route(url: str) -> tuple:
    parsed = httpx.URL(url)
    return (parsed.host, parsed.path)


class FakeProvider:
    """
    Emulates token, profile, revocation and API endpoints for every
    provider, plus the Telegram Bot API.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.token_forms: List[Dict[str, str]] = []
        self.counter = itertools.count(1)
        self.exchange_error: str | None = None
        self.refresh_error: str | None = None
        self.refresh_status = 400
        self.profile_status = 200
        self.expires_in: int | None = 3600
        self.rotate_refresh = True
        self.rejected_tokens: set[str] = set()
        self.revoked: List[str] = []
        self.api_calls: List[str] = []

        self._routes: Dict[tuple, tuple] = {}
        for provider, cfg in PROVIDER_CONFIGS.items():
            self._routes[_route(cfg.token_url)] = ("token", provider)
            self._routes[_route(cfg.profile_url)] = ("profile", provider)
            self._routes[_route(cfg.revoke_url)] = ("revoke", provider)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "api.telegram.org":
            return self._telegram(request)
        kind, provider = self._routes.get((request.url.host, request.url.path), ("api", None))
        if kind == "token":
            return self._token(request)
        if kind == "profile":
            if self.profile_status != 200:
                return httpx.Response(self.profile_status, json={"error": "boom"})
            return httpx.Response(200, json=_PROFILES[provider])
        if kind == "revoke":
            self.revoked.append(dict(parse_qsl(request.content.decode()))["token"])
            return httpx.Response(200, json={})
        return self._api(request)

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode()))
        self.token_forms.append(form)
        if form["grant_type"] == "authorization_code" and self.exchange_error:
            return httpx.Response(400, json={"error": self.exchange_error, "error_description": "bad code"})
        if form["grant_type"] == "refresh_token" and self.refresh_error:
            return httpx.Response(self.refresh_status, json={"error": self.refresh_error})
        n = next(self.counter)
        body: Dict[str, Any] = {
            "access_token": f"access-{n}",
            "token_type": "bearer",
            "scope": "tweet.read users.read",
        }
        if self.expires_in is not None:
            body["expires_in"] = self.expires_in
        if form["grant_type"] == "authorization_code" or self.rotate_refresh:
            body["refresh_token"] = f"refresh-{n}"
        return httpx.Response(200, json=body)

    def _api(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        self.api_calls.append(token)
        if token in self.rejected_tokens:
            return httpx.Response(401, json={"title": "Unauthorized"})
        return httpx.Response(200, json={"ok": True, "path": request.url.path, "token": token})

    def _telegram(self, request: httpx.Request) -> httpx.Response:
        if "/botbad-token/" in request.url.path:
            return httpx.Response(401, json={"ok": False, "error_code": 401, "description": "Unauthorized"})
        method = request.url.path.rsplit("/", 1)[-1]
        if method == "getMe":
            return httpx.Response(200, json={"ok": True, "result": {"id": 7, "username": "relay_bot"}})
        payload = json.loads(request.content or b"{}")
        if payload.get("chat_id") == BLOCKED_CHAT:
            return httpx.Response(
                403, json={"ok": False, "error_code": 403, "description": "Forbidden: bot was blocked by the user"}
            )
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 99, **payload}})


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = dict(
        twitter_client_id="tw-client",
        twitter_client_secret="tw-secret",
        reddit_client_id="rd-client",
        reddit_client_secret="rd-secret",
        discord_client_id="dc-client",
        discord_client_secret="dc-secret",
        oauth_redirect_base="https://app.example.com",
        reddit_user_agent="test-agent/0.1",
        frontend_url="https://front.example.com/linked",
        jwt_secret="test-jwt-secret",
        database_url=None,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def broker(settings, fake_provider, clock):
    return build_broker(settings, transport=fake_provider.transport, clock=clock)


@pytest.fixture
def settings_factory():
    return make_settings
