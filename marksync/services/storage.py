"""Key-value persistence collaborator.

Layout:
    settings:         UserSettings
    providers:<id>:   ProviderRecord (config, auth, last_sync, last_error, items)

Every method reads or writes exactly one key, so distinct providers never
contend.  Implementations must make a single-key read-modify-write atomic;
``update_provider`` is the only primitive that mutates a provider record.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable

from marksync.models.auth import AuthState
from marksync.models.storage import ProviderRecord, UserSettings

logger = logging.getLogger("marksync.storage")

SETTINGS_KEY = "settings"
PROVIDER_KEY_PREFIX = "providers:"

RecordMutator = Callable[[ProviderRecord], ProviderRecord]


def provider_key(provider_id: str) -> str:
    return f"{PROVIDER_KEY_PREFIX}{provider_id}"


class Storage(ABC):
    """Abstract persistence used by providers, the auth manager and the engine."""

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_settings(self) -> UserSettings:
        """Return stored settings, or defaults when none were saved."""

    @abstractmethod
    async def save_settings(self, changes: dict[str, Any]) -> UserSettings:
        """Merge ``changes`` into the stored settings and return the result."""

    @abstractmethod
    async def get_provider(self, provider_id: str) -> ProviderRecord | None:
        """Return a copy of the provider record, or None if never created."""

    @abstractmethod
    async def get_providers(self) -> dict[str, ProviderRecord]:
        """Return copies of every provider record keyed by provider id."""

    @abstractmethod
    async def update_provider(
        self, provider_id: str, mutate: RecordMutator
    ) -> ProviderRecord:
        """Atomically read, mutate and write one provider record.

        ``mutate`` receives a copy of the current record (a fresh default
        record when none exists) and returns the record to store.
        """

    async def close(self) -> None:
        """Release connections. No-op by default."""

    # ------------------------------------------------------------------
    # Derived operations
    # ------------------------------------------------------------------

    async def save_provider(self, provider_id: str, record: ProviderRecord) -> ProviderRecord:
        """Replace the whole provider record."""
        return await self.update_provider(provider_id, lambda _current: record)

    async def get_auth(self, provider_id: str) -> AuthState | None:
        record = await self.get_provider(provider_id)
        return record.auth if record else None

    async def save_auth(self, provider_id: str, state: AuthState) -> None:
        """Store auth state, keeping config, snapshot and timestamps."""

        def _apply(record: ProviderRecord) -> ProviderRecord:
            return record.model_copy(update={"auth": state})

        await self.update_provider(provider_id, _apply)

    async def delete_auth(self, provider_id: str) -> None:
        def _apply(record: ProviderRecord) -> ProviderRecord:
            return record.model_copy(update={"auth": None})

        await self.update_provider(provider_id, _apply)


class InMemoryStorage(Storage):
    """Process-local storage.

    Records are deep-copied on the way in and out so no caller ever holds a
    reference into the store.
    """

    def __init__(self) -> None:
        self._settings = UserSettings()
        self._providers: dict[str, ProviderRecord] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_settings(self) -> UserSettings:
        return self._settings.model_copy(deep=True)

    async def save_settings(self, changes: dict[str, Any]) -> UserSettings:
        async with self._locks[SETTINGS_KEY]:
            merged = UserSettings.model_validate({**self._settings.model_dump(), **changes})
            self._settings = merged
            logger.debug("Saved settings: %s", changes)
            return merged.model_copy(deep=True)

    async def get_provider(self, provider_id: str) -> ProviderRecord | None:
        record = self._providers.get(provider_id)
        return record.model_copy(deep=True) if record else None

    async def get_providers(self) -> dict[str, ProviderRecord]:
        return {pid: rec.model_copy(deep=True) for pid, rec in self._providers.items()}

    async def update_provider(
        self, provider_id: str, mutate: RecordMutator
    ) -> ProviderRecord:
        async with self._locks[provider_key(provider_id)]:
            current = self._providers.get(provider_id)
            base = current.model_copy(deep=True) if current else ProviderRecord()
            updated = mutate(base)
            self._providers[provider_id] = updated.model_copy(deep=True)
            return updated.model_copy(deep=True)
