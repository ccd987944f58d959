"""Background scheduler: periodic sweeps, bounded retries and sync status.

Per-provider state machine::

    Idle -> Syncing -> Success -> Idle                (retry count reset)
                    -> Failure -> Retrying -> Syncing (count < max_retries)
                               -> Idle                (exhausted, count reset)

Timers:
    periodic-sync:        repeating, period from settings.sync_interval
    retry-sync-<id>:      one-shot, retry_delay_minutes after a failure

Failures that need user action (ConfigurationError, ProviderContractError, a
cancelled authorization) are never retried.  After ``max_retries`` failed
retries the error is surfaced as RetryExhaustedError and the provider waits
for the next periodic sweep.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Coroutine

from marksync.errors import ConfigurationError, RetryExhaustedError, SyncError
from marksync.services.storage import Storage
from marksync.services.timers import TimerInfo, TimerService
from marksync.sync.config_loader import SchedulerConfig
from marksync.sync.engine import SyncEngine, SyncResult
from marksync.sync.registry import ProviderRegistry
from marksync.sync.retry_state import RetryStateRepository

logger = logging.getLogger("marksync.sync.scheduler")

PERIODIC_SYNC = "periodic-sync"
RETRY_SYNC_PREFIX = "retry-sync-"


def retry_timer_name(provider_id: str) -> str:
    return f"{RETRY_SYNC_PREFIX}{provider_id}"


def interval_to_minutes(interval_ms: int, minimum: int = 1) -> int:
    """Whole minutes for a millisecond interval, never below ``minimum``."""
    return max(minimum, interval_ms // 60_000)


@dataclass
class SweepResult:
    """Outcome of one ``sync_all()``.

    Attributes:
        total:      Eligible providers in the sweep.
        successful: Providers that synced.
        failed:     Providers whose sync raised.
        skipped:    True when another sweep was already running.
        errors:     Failure message per provider id.
    """

    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: bool = False
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": dict(self.errors),
        }


@dataclass
class SchedulerStatus:
    periodic: TimerInfo | None
    retries: list[TimerInfo]
    sync_in_progress: bool
    retry_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "periodic": self.periodic.to_dict() if self.periodic else None,
            "retries": [timer.to_dict() for timer in self.retries],
            "sync_in_progress": self.sync_in_progress,
            "retry_counts": dict(self.retry_counts),
        }


class BackgroundScheduler:
    """Drives the sync engine from timers and control requests.

    Usage::

        scheduler = BackgroundScheduler(engine, registry, storage, timers, config.scheduler)
        await scheduler.initialize()      # schedules periodic-sync, starts a sweep
        sweep = await scheduler.sync_all()
        await scheduler.dispose()
    """

    def __init__(
        self,
        engine: SyncEngine,
        registry: ProviderRegistry,
        storage: Storage,
        timers: TimerService,
        config: SchedulerConfig,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._storage = storage
        self._timers = timers
        self._config = config
        self._retries = RetryStateRepository()
        self._periodic_lock = asyncio.Lock()
        self._sync_in_progress = False
        self._handler_registered = False
        self._initialized = False
        self._disposed = False
        self._background: set[asyncio.Task] = set()

    @property
    def sync_in_progress(self) -> bool:
        return self._sync_in_progress

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, startup_sweep: bool = True) -> None:
        """Register the timer handler, schedule periodic-sync, kick off a sweep."""
        if self._initialized:
            return
        if not self._handler_registered:
            self._timers.on_fire(self._on_timer)
            self._handler_registered = True
        self._initialized = True
        self._disposed = False
        await self.schedule_periodic_sync()
        if startup_sweep:
            self._spawn(self.sync_all(), "startup-sweep")
        logger.info("Background scheduler initialized")

    async def dispose(self) -> None:
        """Cancel every timer and background task and forget retry state.

        Timer-driven syncs still running are awaited first; a failure that
        lands after this point is not retried.
        """
        self._initialized = False
        self._disposed = True
        await self._timers.close()
        self._retries.clear()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("Background scheduler disposed")

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _on_timer(self, name: str) -> None:
        if not self._initialized:
            return
        if name == PERIODIC_SYNC:
            await self.sync_all()
        elif name.startswith(RETRY_SYNC_PREFIX):
            provider_id = name[len(RETRY_SYNC_PREFIX):]
            logger.info("Retrying sync for %s", provider_id)
            try:
                await self.sync_provider(provider_id)
            except SyncError as exc:
                # outcome already recorded by sync_provider
                logger.debug("Retry for %s ended with %s", provider_id, type(exc).__name__)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync_all(self) -> SweepResult:
        """Sync every eligible provider concurrently.

        A call made while a sweep is running returns immediately with
        ``skipped=True``.
        """
        if self._sync_in_progress:
            logger.warning("Sync already in progress, skipping sweep")
            return SweepResult(skipped=True)
        self._sync_in_progress = True
        try:
            records = await self._storage.get_providers()
            eligible = [
                provider_id
                for provider_id, record in records.items()
                if record.config.is_sync_eligible
                and self._registry.get_provider(provider_id) is not None
            ]
            logger.info("Starting sync sweep for %d providers", len(eligible))

            outcomes = await asyncio.gather(
                *(self.sync_provider(provider_id) for provider_id in eligible),
                return_exceptions=True,
            )
            sweep = SweepResult(total=len(eligible))
            for provider_id, outcome in zip(eligible, outcomes):
                if isinstance(outcome, SyncResult):
                    sweep.successful += 1
                else:
                    sweep.failed += 1
                    sweep.errors[provider_id] = str(outcome) or type(outcome).__name__
            logger.info(
                "Sync sweep complete: %d/%d successful, %d failed",
                sweep.successful,
                sweep.total,
                sweep.failed,
            )
            return sweep
        finally:
            self._sync_in_progress = False

    async def sync_provider(self, provider_id: str) -> SyncResult:
        """Sync one provider, scheduling a retry on a retryable failure.

        Raises:
            SyncError: The engine's error unchanged, or RetryExhaustedError
                once the retry budget for this failure episode is spent.
        """
        try:
            result = await self._engine.sync_provider(provider_id)
        except Exception as exc:
            if self._disposed:
                logger.info("Sync for %s failed after shutdown, not retrying: %s", provider_id, exc)
                raise
            error = await self._handle_failure(provider_id, exc)
            if error is exc:
                raise
            raise error from exc
        if not self._disposed:
            await self._retries.reset(provider_id)
            await self._timers.cancel(retry_timer_name(provider_id))
        return result

    async def _handle_failure(self, provider_id: str, exc: Exception) -> Exception:
        """Advance the retry state machine and return the error to raise."""
        if not getattr(exc, "retryable", True):
            await self._retries.reset(provider_id)
            await self._timers.cancel(retry_timer_name(provider_id))
            logger.warning("Sync for %s failed and will not be retried: %s", provider_id, exc)
            return exc

        max_retries = self._config.max_retries
        attempt = await self._retries.increment_if_below(provider_id, max_retries)
        if attempt is None:
            await self._retries.reset(provider_id)
            logger.error(
                "Sync for %s failed after %d retries, waiting for the next periodic sync: %s",
                provider_id,
                max_retries,
                exc,
            )
            return RetryExhaustedError(provider_id, max_retries, exc)

        delay = self._config.retry_delay_minutes
        await self._timers.schedule_once(retry_timer_name(provider_id), delay)
        logger.warning(
            "Sync for %s failed, retry %d/%d in %s minutes: %s",
            provider_id,
            attempt,
            max_retries,
            delay,
            exc,
        )
        return exc

    # ------------------------------------------------------------------
    # Periodic timer
    # ------------------------------------------------------------------

    async def schedule_periodic_sync(self, interval_ms: int | None = None) -> TimerInfo:
        """Replace periodic-sync with one derived from ``interval_ms``.

        Uses the stored sync interval when ``interval_ms`` is None.
        """
        async with self._periodic_lock:
            if interval_ms is None:
                interval_ms = (await self._storage.get_settings()).sync_interval
            minutes = interval_to_minutes(interval_ms, self._config.min_period_minutes)
            await self._timers.cancel(PERIODIC_SYNC)
            info = await self._timers.schedule_repeating(PERIODIC_SYNC, minutes)
            logger.info("Periodic sync every %d minute(s)", minutes)
            return info

    async def update_sync_interval(self, interval_ms: int) -> TimerInfo:
        """Persist a new sync interval and reschedule periodic-sync.

        Raises:
            ConfigurationError: If ``interval_ms`` is not positive.
        """
        if interval_ms <= 0:
            raise ConfigurationError(f"Sync interval must be positive, got {interval_ms}")
        await self._storage.save_settings({"sync_interval": interval_ms})
        return await self.schedule_periodic_sync(interval_ms)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_status(self) -> SchedulerStatus:
        timers = await self._timers.list()
        return SchedulerStatus(
            periodic=next((t for t in timers if t.name == PERIODIC_SYNC), None),
            retries=[t for t in timers if t.name.startswith(RETRY_SYNC_PREFIX)],
            sync_in_progress=self._sync_in_progress,
            retry_counts=self._retries.snapshot(),
        )
