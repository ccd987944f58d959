"""HTTP surface tests: health, providers, sync control, messages, folders, callback."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from marksync.config import Settings
from marksync.context import AppContext, build_context
from marksync.errors import AuthenticationError
from marksync.main import create_app
from marksync.models.auth import AuthUser
from marksync.models.items import BookmarkItem
from marksync.providers.base import AuthResult, Provider
from marksync.services.timers import ManualTimerService


class DemoProvider(Provider):
    PROVIDER_ID = "demo"
    DISPLAY_NAME = "Demo"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.items: list[BookmarkItem] = []
        self.cancel = False

    async def _authenticate(self) -> AuthResult:
        if self.cancel:
            raise AuthenticationError(
                "Authorization window closed", provider_id=self.PROVIDER_ID, cancelled=True
            )
        user = AuthUser(id="7", username="demo-user")
        await self._auth.store_static_credentials(self.PROVIDER_ID, "demo-token", user=user)
        return AuthResult(success=True, token="demo-token", user=user)

    async def _fetch(self, token: str) -> list[BookmarkItem]:
        return list(self.items)


def _item(item_id: str, title: str) -> BookmarkItem:
    return BookmarkItem(
        id=item_id,
        provider_id="demo",
        title=title,
        url=f"https://demo.example.com/{item_id}",
        last_modified="2026-01-01T00:00:00Z",
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, oauth_open_browser=False, database_url="")


@pytest.fixture
def context(settings: Settings) -> AppContext:
    return build_context(
        settings, timers=ManualTimerService(), provider_classes={"demo": DemoProvider}
    )


@pytest.fixture
def client(context: AppContext):
    with TestClient(create_app(context)) as client:
        yield client


@pytest.fixture
def demo(context: AppContext) -> DemoProvider:
    return context.registry.get_provider("demo")


def _enable_with_folder(client: TestClient) -> str:
    folder = client.post("/api/v1/folders", json={"title": "Demo items"}).json()
    response = client.patch(
        "/api/v1/providers/demo/config", json={"enabled": True, "folder_id": folder["id"]}
    )
    assert response.status_code == 200
    return folder["id"]


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["storage"] == "connected"
        assert data["sync_in_progress"] is False


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class TestProviders:
    def test_list(self, client: TestClient) -> None:
        data = client.get("/api/v1/providers").json()
        assert [p["provider_id"] for p in data] == ["demo"]
        assert data[0]["enabled"] is False
        assert data[0]["authenticated"] is False

    def test_unknown_provider(self, client: TestClient) -> None:
        assert client.get("/api/v1/providers/nope").status_code == 404
        assert client.patch("/api/v1/providers/nope/config", json={"enabled": True}).status_code == 404
        assert client.post("/api/v1/providers/nope/connect").status_code == 404

    def test_config_update_is_partial(self, client: TestClient) -> None:
        client.patch("/api/v1/providers/demo/config", json={"folder_id": "123", "custom_field": "x"})
        data = client.patch("/api/v1/providers/demo/config", json={"enabled": True}).json()
        assert data == {
            "enabled": True,
            "folder_id": "123",
            "title_format": None,
            "folder_title_format": None,
            "custom_field": "x",
        }

    def test_config_accepts_camel_case_keys(self, client: TestClient) -> None:
        data = client.patch(
            "/api/v1/providers/demo/config",
            json={"folderId": "123", "folderTitleFormat": {"enabled": True, "includeTotal": False}},
        ).json()
        assert data["folder_id"] == "123"
        assert "folderId" not in data
        assert data["folder_title_format"] == {"enabled": True, "include_total": False}

    def test_empty_config_update(self, client: TestClient) -> None:
        assert client.patch("/api/v1/providers/demo/config", json={}).status_code == 400

    def test_connect_and_disconnect(self, client: TestClient) -> None:
        connected = client.post("/api/v1/providers/demo/connect").json()
        assert connected["success"] is True
        assert connected["result"]["user"]["username"] == "demo-user"

        status = client.get("/api/v1/providers/demo").json()
        assert status["authenticated"] is True
        assert status["username"] == "demo-user"

        assert client.post("/api/v1/providers/demo/disconnect").json()["success"] is True
        assert client.get("/api/v1/providers/demo").json()["authenticated"] is False

    def test_cancelled_connect_is_not_an_error(self, client: TestClient, demo) -> None:
        demo.cancel = True
        data = client.post("/api/v1/providers/demo/connect").json()
        assert data["success"] is False
        assert data["cancelled"] is True
        assert data["error"] is None


# ---------------------------------------------------------------------------
# Sync control
# ---------------------------------------------------------------------------


class TestSync:
    def test_sync_provider_end_to_end(self, client: TestClient, demo) -> None:
        folder_id = _enable_with_folder(client)
        client.post("/api/v1/providers/demo/connect")
        demo.items = [_item("1", "First"), _item("2", "Second")]

        data = client.post("/api/v1/sync/demo").json()

        assert data["success"] is True
        assert data["result"]["added"] == 2
        children = client.get(f"/api/v1/folders/{folder_id}/children").json()
        assert sorted(child["title"] for child in children) == ["First", "Second"]
        assert client.get("/api/v1/providers/demo").json()["item_count"] == 2

    def test_sync_without_folder(self, client: TestClient) -> None:
        client.post("/api/v1/providers/demo/connect")
        data = client.post("/api/v1/sync/demo").json()
        assert data["success"] is False
        assert data["error"]

    def test_sync_unknown_provider(self, client: TestClient) -> None:
        data = client.post("/api/v1/sync/nope").json()
        assert data["success"] is False
        assert "nope" in data["error"]

    def test_sync_all(self, client: TestClient, demo) -> None:
        _enable_with_folder(client)
        client.post("/api/v1/providers/demo/connect")
        demo.items = [_item("1", "First")]

        data = client.post("/api/v1/sync").json()

        assert data["success"] is True
        assert data["result"]["total"] == 1
        assert data["result"]["successful"] == 1

    def test_status(self, client: TestClient) -> None:
        data = client.get("/api/v1/sync/status").json()
        assert data["success"] is True
        assert data["status"]["periodic"]["name"] == "periodic-sync"
        assert data["status"]["providers"][0]["provider_id"] == "demo"

    def test_update_interval(self, client: TestClient) -> None:
        data = client.put("/api/v1/sync/interval", json={"interval": 300_000}).json()
        assert data["success"] is True
        assert data["result"]["periodic"]["period_minutes"] == 5

        rejected = client.put("/api/v1/sync/interval", json={"interval": -5}).json()
        assert rejected["success"] is False


class TestMessages:
    def test_sync_provider_message(self, client: TestClient, demo) -> None:
        _enable_with_folder(client)
        client.post("/api/v1/providers/demo/connect")
        demo.items = [_item("1", "First")]

        data = client.post(
            "/api/v1/messages", json={"type": "SYNC_PROVIDER", "providerId": "demo"}
        ).json()

        assert data["success"] is True
        assert data["result"]["added"] == 1

    def test_status_message(self, client: TestClient) -> None:
        data = client.post("/api/v1/messages", json={"type": "GET_SYNC_STATUS"}).json()
        assert data["success"] is True
        assert "retries" in data["status"]

    def test_unknown_message_type(self, client: TestClient) -> None:
        assert client.post("/api/v1/messages", json={"type": "REBOOT"}).status_code == 422

    def test_missing_field(self, client: TestClient) -> None:
        response = client.post("/api/v1/messages", json={"type": "UPDATE_SYNC_INTERVAL"})
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Folders and OAuth callback
# ---------------------------------------------------------------------------


class TestFolders:
    def test_create_and_list_empty(self, client: TestClient) -> None:
        response = client.post("/api/v1/folders", json={"title": "Work"})
        assert response.status_code == 201
        folder = response.json()
        assert folder["url"] is None
        assert client.get(f"/api/v1/folders/{folder['id']}/children").json() == []

    def test_unknown_folder(self, client: TestClient) -> None:
        assert client.get("/api/v1/folders/999/children").status_code == 404
        assert client.post("/api/v1/folders", json={"title": "x", "parent_id": "999"}).status_code == 404

    def test_blank_title(self, client: TestClient) -> None:
        assert client.post("/api/v1/folders", json={"title": ""}).status_code == 422


class TestOAuthCallback:
    def test_no_pending_flow(self, client: TestClient) -> None:
        response = client.get("/auth/callback/demo", params={"code": "x", "state": "unknown"})
        assert response.status_code == 400

    def test_launcher_without_callback(self, settings: Settings) -> None:
        context = build_context(
            settings,
            timers=ManualTimerService(),
            launcher=MagicMock(),
            provider_classes={"demo": DemoProvider},
        )
        with TestClient(create_app(context)) as client:
            assert client.get("/auth/callback/demo", params={"code": "x"}).status_code == 404
