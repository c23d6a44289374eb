from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from tunnel_watch.cycle import TunnelWatch
from tunnel_watch.kv import MemoryKeyValueStore
from tunnel_watch.policy import PolicyStore
from tunnel_watch.settings import Settings


# 2024-01-01T00:00:00Z
START_TS = 1_704_067_200.0


class FakeClock:
    def __init__(self, now: float = START_TS) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


class FakeApis:
    """Stands in for the Cloudflare, GitHub and Telegram HTTP APIs."""

    def __init__(self) -> None:
        # account id -> list of tunnel dicts, or an exception to raise
        self.listings: dict[str, Any] = {}
        self.github_status = 204
        self.telegram_ok = True
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == "api.cloudflare.com":
            account_id = request.url.path.split("/")[4]
            listing = self.listings.get(account_id)
            if isinstance(listing, Exception):
                raise listing
            if listing is None:
                return httpx.Response(
                    403, json={"success": False, "errors": [{"message": "Authentication error"}], "result": None}
                )
            return httpx.Response(200, json={"success": True, "errors": [], "result": listing})
        if host == "api.github.com":
            if self.github_status == 204:
                return httpx.Response(204)
            return httpx.Response(self.github_status, text='{"message":"Not Found"}')
        if host == "api.telegram.org":
            if self.telegram_ok:
                return httpx.Response(200, json={"ok": True, "result": {"message_id": len(self.requests)}})
            return httpx.Response(400, json={"ok": False, "description": "Bad Request: chat not found"})
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls(self, host: str, suffix: str = "") -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == host and r.url.path.endswith(suffix)]

    def telegram_payloads(self, method: str) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.calls("api.telegram.org", f"/{method}")]


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "inventory_text": "acct:ID1,TOK1,tunA;GitHub:own,repo,PAT",
        "telegram_bot_token": "bot-token",
        "telegram_chat_id": "4242",
        "webhook_secret": "",
        "admin_token": "",
        "max_concurrent": 5,
        "fetch_timeout_seconds": 2.0,
        "daily_cap": 3,
        "mute_hours": 24.0,
        "quota_timezone": "UTC",
        "muted_units_remediate": False,
        "alert_on_fetch_error": True,
        "state_path": "/nonexistent/state.json",
        "interval_seconds": 0,
        "workflow_file": "main.yml",
        "default_branch": "main",
        "cloudflare_api_base": "https://api.cloudflare.com/client/v4",
        "github_api_base": "https://api.github.com",
        "telegram_api_base": "https://api.telegram.org",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def policy(kv: MemoryKeyValueStore, clock: FakeClock) -> PolicyStore:
    return PolicyStore(kv, daily_cap=3, mute_ttl_seconds=3600, tz="UTC", clock=clock)


@pytest.fixture
def fake_apis() -> FakeApis:
    return FakeApis()


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return make_settings


@pytest.fixture
def make_watch(
    fake_apis: FakeApis, kv: MemoryKeyValueStore, clock: FakeClock
) -> Callable[..., TunnelWatch]:
    def _make(**overrides: Any) -> TunnelWatch:
        watch = TunnelWatch.from_settings(make_settings(**overrides), fake_apis.client(), kv=kv)
        watch.policy.clock = clock
        return watch

    return _make
