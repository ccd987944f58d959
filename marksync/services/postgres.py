"""PostgreSQL-backed key-value storage.

One JSONB row per key in ``kv_store``.  ``update_provider`` runs inside a
transaction with ``SELECT ... FOR UPDATE`` so a read-modify-write of one key
is atomic while other keys stay uncontended.

Uses ``asyncpg`` directly with a small connection pool.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import asyncpg

from marksync.models.storage import ProviderRecord, UserSettings
from marksync.services.storage import (
    PROVIDER_KEY_PREFIX,
    SETTINGS_KEY,
    RecordMutator,
    Storage,
    provider_key,
)

logger = logging.getLogger("marksync.storage.postgres")

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value      JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


def build_upsert_query(table: str, key_column: str, value_column: str) -> str:
    """Build an idempotent ``INSERT ... ON CONFLICT DO UPDATE`` for one key.

    Args:
        table:        Target table name.
        key_column:   Primary key column.
        value_column: Column overwritten on conflict.

    Returns:
        Parameterized SQL string taking ($1 key, $2 value).
    """
    return (
        f"INSERT INTO {table} ({key_column}, {value_column}) "
        f"VALUES ($1, $2::jsonb) "
        f"ON CONFLICT ({key_column}) DO UPDATE SET "
        f"{value_column} = EXCLUDED.{value_column}, updated_at = NOW()"
    )


_UPSERT = build_upsert_query("kv_store", "key", "value")


class PostgresStorage(Storage):
    """Storage over an asyncpg pool.  Call ``connect()`` once at startup."""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 5) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool: asyncpg.Pool | None = None
        # FOR UPDATE cannot lock a row that does not exist yet
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def connect(self) -> None:
        self._pool = await asyncpg.create_pool(
            self._dsn,
            min_size=self._min_size,
            max_size=self._max_size,
            command_timeout=30,
        )
        async with self._pool.acquire() as conn:
            await conn.execute(_CREATE_TABLE)
        logger.info("Storage pool initialized (min=%d, max=%d)", self._min_size, self._max_size)

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Storage pool closed")

    def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Storage pool not initialized, call connect() first")
        return self._pool

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[asyncpg.Connection, None]:
        async with self._get_pool().acquire() as conn:
            async with conn.transaction():
                yield conn

    @staticmethod
    def _decode(value: Any) -> dict:
        # asyncpg returns jsonb as text unless a codec is registered
        return json.loads(value) if isinstance(value, str) else dict(value)

    # ------------------------------------------------------------------
    # Storage interface
    # ------------------------------------------------------------------

    async def get_settings(self) -> UserSettings:
        async with self._get_pool().acquire() as conn:
            value = await conn.fetchval("SELECT value FROM kv_store WHERE key = $1", SETTINGS_KEY)
        return UserSettings.model_validate(self._decode(value)) if value else UserSettings()

    async def save_settings(self, changes: dict[str, Any]) -> UserSettings:
        async with self._transaction() as conn:
            value = await conn.fetchval(
                "SELECT value FROM kv_store WHERE key = $1 FOR UPDATE", SETTINGS_KEY
            )
            current = self._decode(value) if value else UserSettings().model_dump(mode="json")
            merged = UserSettings.model_validate({**current, **changes})
            await conn.execute(_UPSERT, SETTINGS_KEY, merged.model_dump_json())
        return merged

    async def get_provider(self, provider_id: str) -> ProviderRecord | None:
        async with self._get_pool().acquire() as conn:
            value = await conn.fetchval(
                "SELECT value FROM kv_store WHERE key = $1", provider_key(provider_id)
            )
        return ProviderRecord.model_validate(self._decode(value)) if value else None

    async def get_providers(self) -> dict[str, ProviderRecord]:
        async with self._get_pool().acquire() as conn:
            rows = await conn.fetch(
                "SELECT key, value FROM kv_store WHERE key LIKE $1 ORDER BY key",
                f"{PROVIDER_KEY_PREFIX}%",
            )
        return {
            row["key"][len(PROVIDER_KEY_PREFIX):]: ProviderRecord.model_validate(
                self._decode(row["value"])
            )
            for row in rows
        }

    async def update_provider(
        self, provider_id: str, mutate: RecordMutator
    ) -> ProviderRecord:
        key = provider_key(provider_id)
        async with self._locks[key], self._transaction() as conn:
            value = await conn.fetchval(
                "SELECT value FROM kv_store WHERE key = $1 FOR UPDATE", key
            )
            current = ProviderRecord.model_validate(self._decode(value)) if value else ProviderRecord()
            updated = mutate(current)
            await conn.execute(_UPSERT, key, updated.model_dump_json())
        return updated
