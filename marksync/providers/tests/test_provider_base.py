"""Tests for behaviour every provider inherits from the base class."""

from __future__ import annotations

import httpx
import pytest

from marksync.errors import AuthenticationError, NetworkError
from marksync.models.items import BookmarkItem
from marksync.providers import PROVIDER_CLASSES, GitHubProvider, JiraProvider, get_provider_class
from marksync.providers.base import AuthResult, Provider
from marksync.sync.config_loader import ProviderEndpoints


class EchoProvider(Provider):
    PROVIDER_ID = "echo"
    DISPLAY_NAME = "Echo"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.auth_error: Exception | None = None

    async def _authenticate(self) -> AuthResult:
        if self.auth_error is not None:
            raise self.auth_error
        return AuthResult(success=True, token="t")

    async def _fetch(self, token: str) -> list[BookmarkItem]:
        data = await self._get_json("https://echo.example.com/items", {"Authorization": token})
        return [BookmarkItem(provider_id=self.PROVIDER_ID, **raw) for raw in data]


@pytest.fixture
def echo(storage, auth_manager, settings, fake_api) -> EchoProvider:
    return EchoProvider(
        storage, auth_manager, ProviderEndpoints("", ""), settings, http_client=fake_api.client
    )


class TestProviderLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_creates_record_once(self, echo, storage) -> None:
        await echo.initialize()
        await echo.set_config({"enabled": True})
        await echo.initialize()

        record = await storage.get_provider("echo")
        assert record.config.enabled

    @pytest.mark.asyncio
    async def test_initialize_registers_oauth_only_when_provided(
        self, echo, make_provider, auth_manager
    ) -> None:
        await echo.initialize()
        await make_provider(GitHubProvider).initialize()

        assert auth_manager.get_oauth_config("echo") is None
        github = auth_manager.get_oauth_config("github")
        assert github.client_id == "gh-client"
        assert github.redirect_uri == "http://localhost:8000/auth/callback/github"

    @pytest.mark.asyncio
    async def test_set_config_keeps_auth_and_snapshot(self, echo, auth_manager, storage) -> None:
        await echo.initialize()
        await auth_manager.store_static_credentials("echo", "t")

        config = await echo.set_config({"folder_id": "42"})

        assert config.folder_id == "42"
        assert (await storage.get_auth("echo")).tokens.access_token == "t"

    def test_registry_lookup(self) -> None:
        assert PROVIDER_CLASSES == {"github": GitHubProvider, "jira": JiraProvider}
        assert get_provider_class("jira") is JiraProvider
        with pytest.raises(KeyError):
            get_provider_class("gitlab")


class TestAuthenticateNeverRaises:
    @pytest.mark.asyncio
    async def test_cancelled(self, echo) -> None:
        echo.auth_error = AuthenticationError("closed", cancelled=True)
        result = await echo.authenticate()
        assert result == AuthResult(success=False, error="closed", cancelled=True)

    @pytest.mark.asyncio
    async def test_network_failure(self, echo) -> None:
        echo.auth_error = NetworkError("down")
        result = await echo.authenticate()
        assert not result.success
        assert not result.cancelled

    @pytest.mark.asyncio
    async def test_unexpected_failure(self, echo) -> None:
        echo.auth_error = KeyError("login")
        result = await echo.authenticate()
        assert not result.success
        assert "login" in result.error


class TestGetJson:
    @pytest.mark.asyncio
    async def test_maps_items(self, echo, auth_manager, fake_api) -> None:
        await auth_manager.store_static_credentials("echo", "t")
        fake_api.add(
            "https://echo.example.com/items",
            [{"id": "1", "title": "One", "url": "https://echo.example.com/1"}],
        )
        items = await echo.fetch_items()
        assert [item.key for item in items] == [("echo", "1")]

    @pytest.mark.asyncio
    async def test_forbidden_is_authentication_error(self, echo, auth_manager, fake_api) -> None:
        await auth_manager.store_static_credentials("echo", "t")
        fake_api.add("https://echo.example.com/items", {}, status=403)
        with pytest.raises(AuthenticationError):
            await echo.fetch_items()

    @pytest.mark.asyncio
    async def test_transport_error_is_network_error(self, echo, auth_manager, fake_api) -> None:
        await auth_manager.store_static_credentials("echo", "t")
        fake_api.client.get.side_effect = httpx.ConnectTimeout("timed out")
        with pytest.raises(NetworkError, match="unreachable"):
            await echo.fetch_items()
