"""Shared fixtures and recorded API responses for provider tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qsl, urlparse

import httpx
import pytest

from marksync.config import Settings
from marksync.services.storage import InMemoryStorage
from marksync.sync.auth_manager import AuthManager
from marksync.sync.config_loader import SyncConfig, load_sync_config

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FakeApi:
    """Scripted GET/POST responses for an injected ``httpx.AsyncClient`` mock.

    ``add()`` queues a response for a URL.  Responses whose ``match`` values
    all appear in the request params are served in order; the last matching
    one is reused for every further request.
    """

    def __init__(self) -> None:
        self._routes: dict[str, list[tuple[dict[str, str], int, Any]]] = {}
        self.calls: list[tuple[str, dict[str, str], dict[str, Any]]] = []
        self.client = MagicMock()
        self.client.get = AsyncMock(side_effect=self._get)
        self.client.post = AsyncMock(
            return_value=self.response(
                "POST",
                "https://auth.example.com/token",
                {"access_token": "oauth-token", "refresh_token": "oauth-refresh", "expires_in": 3600},
            )
        )

    @staticmethod
    def response(method: str, url: str, payload: Any, status: int = 200) -> httpx.Response:
        return httpx.Response(status, json=payload, request=httpx.Request(method, url))

    def add(self, url: str, payload: Any, status: int = 200, match: dict[str, str] | None = None) -> None:
        self._routes.setdefault(url, []).append((match or {}, status, payload))

    def calls_to(self, url: str) -> list[dict[str, Any]]:
        return [params for called, _headers, params in self.calls if called == url]

    async def _get(self, url: str, headers: dict[str, str] | None = None, params: dict | None = None):
        params = dict(params or {})
        self.calls.append((url, dict(headers or {}), params))
        candidates = [
            entry
            for entry in self._routes.get(url, [])
            if all(value in str(params.get(key, "")) for key, value in entry[0].items())
        ]
        if not candidates:
            raise AssertionError(f"Unexpected GET {url} {params}")
        entry = candidates[0]
        if len(candidates) > 1:
            self._routes[url].remove(entry)
        return self.response("GET", url, entry[2], entry[1])


def approve_launch(url: str) -> str:
    params = dict(parse_qsl(urlparse(url).query))
    return f"{params['redirect_uri']}?code=auth-code&state={params['state']}"


def load_fixture(name: str) -> Any:
    return json.loads((FIXTURES_DIR / name).read_text())


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    return load_sync_config()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        github_client_id="gh-client",
        github_client_secret="gh-secret",
        github_personal_token="",
        jira_client_id="jira-client",
        oauth_open_browser=False,
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def launcher() -> MagicMock:
    launcher = MagicMock()
    launcher.launch = AsyncMock(side_effect=approve_launch)
    return launcher


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def auth_manager(storage, sync_config, launcher, fake_api) -> AuthManager:
    return AuthManager(storage, sync_config.auth, launcher, http_client=fake_api.client)


@pytest.fixture
def make_provider(storage, auth_manager, sync_config, settings, fake_api):
    """Build a provider wired to the fake API."""

    def _make(provider_class):
        return provider_class(
            storage,
            auth_manager,
            sync_config.provider(provider_class.PROVIDER_ID),
            settings,
            http_client=fake_api.client,
        )

    return _make


@pytest.fixture
def fixture_json():
    return load_fixture
