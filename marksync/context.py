"""Explicit wiring of every marksync component.

One AppContext per process (or per test).  Components receive their
collaborators from here; none of them looks up a global instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from marksync.config import Settings, get_settings
from marksync.providers import PROVIDER_CLASSES, Provider
from marksync.services.bookmarks import BookmarkStore, InMemoryBookmarkStore
from marksync.services.postgres import PostgresStorage
from marksync.services.storage import InMemoryStorage, Storage
from marksync.services.timers import AsyncioTimerService, TimerService
from marksync.sync.auth_manager import AuthManager, AuthorizationLauncher
from marksync.sync.config_loader import ProviderEndpoints, SyncConfig, load_sync_config
from marksync.sync.control import ControlSurface
from marksync.sync.engine import SyncEngine
from marksync.sync.launcher import WebAuthLauncher
from marksync.sync.registry import ProviderRegistry
from marksync.sync.scheduler import BackgroundScheduler

logger = logging.getLogger("marksync.context")


@dataclass
class AppContext:
    settings: Settings
    sync_config: SyncConfig
    storage: Storage
    http_client: httpx.AsyncClient
    launcher: AuthorizationLauncher
    auth_manager: AuthManager
    registry: ProviderRegistry
    bookmarks: BookmarkStore
    engine: SyncEngine
    timers: TimerService
    scheduler: BackgroundScheduler
    control: ControlSurface

    async def start(self, startup_sweep: bool = True) -> None:
        """Bring up storage, providers and the scheduler, in that order."""
        if isinstance(self.storage, PostgresStorage):
            await self.storage.connect()
        await self.registry.initialize()
        await self.scheduler.initialize(startup_sweep=startup_sweep)

    async def close(self) -> None:
        await self.scheduler.dispose()
        await self.registry.dispose()
        await self.http_client.aclose()
        await self.storage.close()


def build_context(
    settings: Settings | None = None,
    *,
    sync_config: SyncConfig | None = None,
    storage: Storage | None = None,
    bookmarks: BookmarkStore | None = None,
    timers: TimerService | None = None,
    launcher: AuthorizationLauncher | None = None,
    http_client: httpx.AsyncClient | None = None,
    provider_classes: dict[str, type[Provider]] | None = None,
) -> AppContext:
    """Construct an AppContext, defaulting every collaborator from settings."""
    settings = settings or get_settings()
    sync_config = sync_config or load_sync_config()

    if storage is None:
        if settings.database_url:
            storage = PostgresStorage(settings.database_url)
        else:
            logger.info("No database_url set, using in-memory storage")
            storage = InMemoryStorage()
    http_client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    launcher = launcher or WebAuthLauncher(
        timeout_seconds=settings.oauth_timeout_seconds,
        open_browser=settings.oauth_open_browser,
    )
    auth_manager = AuthManager(storage, sync_config.auth, launcher, http_client=http_client)

    providers = [
        cls(
            storage,
            auth_manager,
            sync_config.providers.get(provider_id) or ProviderEndpoints("", ""),
            settings,
            http_client=http_client,
        )
        for provider_id, cls in (provider_classes or PROVIDER_CLASSES).items()
    ]
    registry = ProviderRegistry(storage, providers)
    bookmarks = bookmarks or InMemoryBookmarkStore()
    engine = SyncEngine(registry, storage, bookmarks)
    timers = timers or AsyncioTimerService()
    scheduler = BackgroundScheduler(engine, registry, storage, timers, sync_config.scheduler)

    return AppContext(
        settings=settings,
        sync_config=sync_config,
        storage=storage,
        http_client=http_client,
        launcher=launcher,
        auth_manager=auth_manager,
        registry=registry,
        bookmarks=bookmarks,
        engine=engine,
        timers=timers,
        scheduler=scheduler,
        control=ControlSurface(scheduler, registry),
    )
