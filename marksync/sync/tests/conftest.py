"""Shared fixtures for the sync core tests.

Everything runs against in-memory storage, an in-memory bookmark store and a
virtual-clock timer service.  ``FakeProvider`` stands in for a real source:
tests set ``items`` / ``fetch_error`` / ``gate`` to script what a fetch does.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from unittest.mock import MagicMock

import pytest

from marksync.config import Settings
from marksync.models.items import BookmarkItem
from marksync.providers.base import AuthResult, Provider
from marksync.services.bookmarks import InMemoryBookmarkStore
from marksync.services.storage import InMemoryStorage
from marksync.services.timers import ManualTimerService
from marksync.sync.auth_manager import AuthManager
from marksync.sync.config_loader import ProviderEndpoints, SyncConfig, load_sync_config
from marksync.sync.engine import SyncEngine
from marksync.sync.registry import ProviderRegistry
from marksync.sync.scheduler import BackgroundScheduler


class FakeProvider(Provider):
    DISPLAY_NAME = "Fake"

    def __init__(self, provider_id: str, storage, auth_manager, settings) -> None:
        self.PROVIDER_ID = provider_id
        super().__init__(storage, auth_manager, ProviderEndpoints("", ""), settings)
        self.items: list[BookmarkItem] = []
        self.fetch_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.token: str | None = "fake-token"
        self.fetch_calls = 0

    async def _authenticate(self) -> AuthResult:
        return AuthResult(success=True, token=self.token)

    async def is_authenticated(self) -> bool:
        return self.token is not None

    async def get_token(self) -> str | None:
        return self.token

    async def _fetch(self, token: str) -> list[BookmarkItem]:
        self.fetch_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.items)


@dataclass
class SyncStack:
    storage: InMemoryStorage
    bookmarks: InMemoryBookmarkStore
    timers: ManualTimerService
    registry: ProviderRegistry
    engine: SyncEngine
    scheduler: BackgroundScheduler
    providers: dict[str, FakeProvider] = field(default_factory=dict)

    async def enable(self, provider_id: str) -> str:
        """Create a target folder and enable the provider. Returns the folder id."""
        folder = await self.bookmarks.create_folder(f"{provider_id} items")
        await self.providers[provider_id].set_config({"enabled": True, "folder_id": folder.id})
        return folder.id

    async def folder_titles(self, folder_id: str) -> list[str]:
        return sorted(node.title for node in await self.bookmarks.children(folder_id))


def item(provider_id: str, item_id: str, last_modified: str = "v1", title: str | None = None) -> BookmarkItem:
    return BookmarkItem(
        id=item_id,
        provider_id=provider_id,
        title=title or f"Item {item_id}",
        url=f"https://example.com/{provider_id}/{item_id}",
        last_modified=last_modified,
    )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real sync config for tests."""
    return load_sync_config()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        github_client_id="gh-client",
        github_client_secret="gh-secret",
        jira_client_id="jira-client",
        oauth_open_browser=False,
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_item():
    return item


@pytest.fixture
def make_stack(sync_config: SyncConfig, settings: Settings):
    """Factory for a stack of fake providers wired to a real engine and scheduler.

    Pass a storage or bookmark store to inject failures.
    """

    def _make(
        storage: InMemoryStorage | None = None,
        bookmarks: InMemoryBookmarkStore | None = None,
        provider_ids: tuple[str, ...] = ("alpha", "beta"),
    ) -> SyncStack:
        storage = storage or InMemoryStorage()
        bookmarks = bookmarks or InMemoryBookmarkStore()
        timers = ManualTimerService()
        auth_manager = AuthManager(storage, sync_config.auth, launcher=MagicMock())
        providers = {
            pid: FakeProvider(pid, storage, auth_manager, settings) for pid in provider_ids
        }
        registry = ProviderRegistry(storage, providers.values())
        engine = SyncEngine(registry, storage, bookmarks)
        scheduler = BackgroundScheduler(engine, registry, storage, timers, sync_config.scheduler)
        return SyncStack(storage, bookmarks, timers, registry, engine, scheduler, providers)

    return _make


@pytest.fixture
def stack(make_stack) -> SyncStack:
    """Two fake providers, ``alpha`` and ``beta``."""
    return make_stack()
