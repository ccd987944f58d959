"""Per-provider retry bookkeeping owned by the scheduler.

Process-local; a restart starts every provider at zero.  Each provider has
its own lock, so concurrent sweeps and retry timers never lose an increment.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass


@dataclass
class RetryState:
    provider_id: str
    retry_count: int = 0


class RetryStateRepository:
    def __init__(self) -> None:
        self._states: dict[str, RetryState] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def increment_if_below(self, provider_id: str, limit: int) -> int | None:
        """Increment and return the new count, or None if already at ``limit``."""
        async with self._locks[provider_id]:
            state = self._states.setdefault(provider_id, RetryState(provider_id))
            if state.retry_count >= limit:
                return None
            state.retry_count += 1
            return state.retry_count

    async def reset(self, provider_id: str) -> None:
        async with self._locks[provider_id]:
            self._states.pop(provider_id, None)

    def snapshot(self) -> dict[str, int]:
        return {pid: state.retry_count for pid, state in self._states.items()}

    def clear(self) -> None:
        self._states.clear()
