"""Sync engine: fetch one provider's items and reconcile them into its folder.

A sync is all-or-nothing per provider.  Bookmark changes are applied in the
order create, update, remove and journaled as they go; if a later step or the
snapshot write fails, the journal is unwound so the folder and the stored
snapshot look exactly as they did before the call.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from marksync.errors import AuthenticationError, ConfigurationError
from marksync.models.base import utc_now
from marksync.models.items import BookmarkItem, SnapshotEntry
from marksync.models.storage import ProviderConfig, ProviderRecord
from marksync.providers.base import Provider
from marksync.services.bookmarks import BookmarkStore
from marksync.services.storage import Storage
from marksync.sync.dedup import validate_items
from marksync.sync.reconcile import SyncDiff, compute_diff
from marksync.sync.registry import ProviderRegistry

logger = logging.getLogger("marksync.sync.engine")

UndoStep = Callable[[], Awaitable[object]]

# trailing " (12 total)" style statistics on a folder title
_FOLDER_STATS = re.compile(r"\s*\([^()]*\)\s*$")


@dataclass
class SyncResult:
    """Counts for one completed provider sync.

    Attributes:
        provider_id: Provider that was synced.
        added:       Bookmarks created.
        updated:     Bookmarks updated in place.
        removed:     Bookmarks deleted.
        total:       Items in the new snapshot.
        duration_ms: Wall time of the sync.
        synced_at:   Timestamp stored as ``last_sync``.
    """

    provider_id: str
    added: int = 0
    updated: int = 0
    removed: int = 0
    total: int = 0
    duration_ms: int = 0
    synced_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "provider_id": self.provider_id,
            "added": self.added,
            "updated": self.updated,
            "removed": self.removed,
            "total": self.total,
            "duration_ms": self.duration_ms,
            "synced_at": self.synced_at.isoformat(),
        }


@dataclass
class _Journal:
    undo: list[UndoStep] = field(default_factory=list)
    removed: list[SnapshotEntry] = field(default_factory=list)


class SyncEngine:
    """Runs ``sync_provider`` for providers held by a registry.

    The engine never retries and never translates errors; every failure is
    raised unchanged to the caller after ``last_error`` is recorded.
    Syncs of the same provider are serialized, so a retry or manual sync that
    lands during a sweep waits and then reconciles against the committed
    snapshot.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        storage: Storage,
        bookmarks: BookmarkStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry
        self._storage = storage
        self._bookmarks = bookmarks
        self._clock = clock
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def sync_provider(self, provider_id: str) -> SyncResult:
        """Fetch and reconcile one provider.

        Raises:
            ConfigurationError:    Unknown or disabled provider, or no usable folder.
            AuthenticationError:   No valid token, or the source rejected it.
            NetworkError:          Remote failure during fetch.
            ProviderContractError: Fetched items violate the id contract.
        """
        provider = self._registry.require_provider(provider_id)
        lock = self._locks[provider_id]
        if lock.locked():
            logger.info("Sync for %s already running, waiting", provider_id)
        async with lock:
            started = time.monotonic()
            logger.info("Syncing provider %s", provider_id)
            try:
                result = await self._sync(provider)
            except Exception as exc:
                logger.warning("Sync failed for %s: %s", provider_id, exc)
                await self._record_failure(provider_id, exc)
                raise
        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Synced %s: +%d ~%d -%d (%d total) in %dms",
            provider_id,
            result.added,
            result.updated,
            result.removed,
            result.total,
            result.duration_ms,
        )
        return result

    async def _sync(self, provider: Provider) -> SyncResult:
        provider_id = provider.provider_id
        config = await provider.get_config()
        folder_id = await self._require_folder(provider_id, config)

        if not await provider.get_token():
            raise AuthenticationError("Not authenticated", provider_id=provider_id)

        items = validate_items(provider_id, await provider.fetch_items())
        record = await self._storage.get_provider(provider_id) or ProviderRecord()
        diff = compute_diff(record.items, items)
        logger.debug(
            "Diff for %s: %d added, %d updated, %d removed, %d unchanged",
            provider_id,
            len(diff.added),
            len(diff.updated),
            len(diff.removed),
            len(diff.unchanged),
        )

        journal = _Journal()
        synced_at = self._clock()
        try:
            snapshot = await self._apply(folder_id, items, diff, journal)

            def _commit(current: ProviderRecord) -> ProviderRecord:
                return current.model_copy(
                    update={"items": snapshot, "last_sync": synced_at, "last_error": None}
                )

            await self._storage.update_provider(provider_id, _commit)
        except Exception:
            await self._rollback(provider_id, folder_id, record.items, journal)
            raise

        await self._refresh_folder_title(provider, folder_id, items)

        return SyncResult(
            provider_id=provider_id,
            added=len(diff.added),
            updated=len(diff.updated),
            removed=len(diff.removed),
            total=len(snapshot),
            synced_at=synced_at,
        )

    async def _refresh_folder_title(
        self, provider: Provider, folder_id: str, items: list[BookmarkItem]
    ) -> None:
        """Apply the provider's folder title. Failures are logged, never raised."""
        try:
            folder = await self._bookmarks.get(folder_id)
            if folder is None:
                return
            base_name = _FOLDER_STATS.sub("", folder.title).strip() or folder.title
            title = await provider.format_folder_title(base_name, items)
            if title is not None and title != folder.title:
                await self._bookmarks.update(folder_id, title=title)
                logger.debug("Renamed folder %s to %r", folder_id, title)
        except Exception:
            logger.exception("Could not update folder title for %s", provider.provider_id)

    async def _require_folder(self, provider_id: str, config: ProviderConfig) -> str:
        if not config.enabled:
            raise ConfigurationError(f"Provider '{provider_id}' is disabled")
        if not config.folder_id:
            raise ConfigurationError(f"Provider '{provider_id}' has no target folder")
        folder = await self._bookmarks.get(config.folder_id)
        if folder is None or not folder.is_folder:
            raise ConfigurationError(
                f"Target folder '{config.folder_id}' for provider '{provider_id}' does not exist"
            )
        return config.folder_id

    async def _apply(
        self,
        folder_id: str,
        items: list[BookmarkItem],
        diff: SyncDiff,
        journal: _Journal,
    ) -> list[SnapshotEntry]:
        """Apply the diff and return the new snapshot in fetch order."""
        entries = {entry.item.key: entry for entry in diff.unchanged}

        for item in diff.added:
            node = await self._bookmarks.create(folder_id, item.title, item.url)
            journal.undo.append(lambda node_id=node.id: self._bookmarks.remove(node_id))
            entries[item.key] = SnapshotEntry(item=item, bookmark_id=node.id)

        for previous, item in diff.updated:
            if await self._bookmarks.get(previous.bookmark_id) is None:
                # deleted by hand since the last sync
                node = await self._bookmarks.create(folder_id, item.title, item.url)
                journal.undo.append(lambda node_id=node.id: self._bookmarks.remove(node_id))
                entries[item.key] = SnapshotEntry(item=item, bookmark_id=node.id)
                continue
            await self._bookmarks.update(previous.bookmark_id, item.title, item.url)
            journal.undo.append(
                lambda prev=previous: self._bookmarks.update(
                    prev.bookmark_id, prev.item.title, prev.item.url
                )
            )
            entries[item.key] = SnapshotEntry(item=item, bookmark_id=previous.bookmark_id)

        for entry in diff.removed:
            if await self._bookmarks.get(entry.bookmark_id) is None:
                continue
            await self._bookmarks.remove(entry.bookmark_id)
            journal.removed.append(entry)

        return [entries[item.key] for item in items]

    async def _rollback(
        self,
        provider_id: str,
        folder_id: str,
        previous: list[SnapshotEntry],
        journal: _Journal,
    ) -> None:
        """Undo applied bookmark changes. Undo failures are logged, never raised."""
        logger.warning("Rolling back partial sync for %s", provider_id)
        for step in reversed(journal.undo):
            try:
                await step()
            except Exception:
                logger.exception("Rollback step failed for %s", provider_id)

        if not journal.removed:
            return
        restored: dict[str, str] = {}
        for entry in journal.removed:
            try:
                node = await self._bookmarks.create(folder_id, entry.item.title, entry.item.url)
                restored[entry.bookmark_id] = node.id
            except Exception:
                logger.exception("Could not restore bookmark for %s", entry.item.key)

        snapshot = [
            entry.model_copy(update={"bookmark_id": restored.get(entry.bookmark_id, entry.bookmark_id)})
            for entry in previous
        ]

        def _restore(current: ProviderRecord) -> ProviderRecord:
            return current.model_copy(update={"items": snapshot})

        try:
            await self._storage.update_provider(provider_id, _restore)
        except Exception:
            logger.exception("Could not restore snapshot for %s", provider_id)

    async def _record_failure(self, provider_id: str, exc: BaseException) -> None:
        message = str(exc) or type(exc).__name__

        def _apply(current: ProviderRecord) -> ProviderRecord:
            return current.model_copy(update={"last_error": message})

        try:
            await self._storage.update_provider(provider_id, _apply)
        except Exception:
            logger.exception("Could not record sync failure for %s", provider_id)
