"""Sync Request Debouncer Module."""

import asyncio

from trackbridge import log
from trackbridge.config.settings import BusyPolicy
from trackbridge.core.sync import TrackingSyncService
from trackbridge.exceptions import DebouncerDisposedError
from trackbridge.models.sync import SyncResult

__all__ = ["TrackingSyncDebouncer"]


class TrackingSyncDebouncer:
    """Coalesces bursts of sync requests into a single trailing-edge run.

    Every request restarts the timer, so a run starts `delay` seconds after the
    last request of a burst. All callers waiting on that run receive its result,
    or its exception. Requests made while a run is in flight are handled by the
    busy policy: `drop` returns None straight away, `queue` waits for exactly one
    follow-up run armed once the current run finishes.
    """

    def __init__(
        self,
        sync_service: TrackingSyncService,
        delay: float = 5.0,
        busy_policy: BusyPolicy = BusyPolicy.DROP,
    ) -> None:
        """Initialize the debouncer.

        Args:
            sync_service (TrackingSyncService): Service whose batch sync is run
            delay (float): Seconds to wait after the last request
            busy_policy (BusyPolicy): Handling of requests made during a run
        """
        self.sync_service = sync_service
        self.delay = delay
        self.busy_policy = busy_policy

        self._timer: asyncio.TimerHandle | None = None
        self._waiters: list[asyncio.Future[SyncResult | None]] = []
        self._queued: list[asyncio.Future[SyncResult | None]] = []
        self._is_syncing = False
        self._disposed = False
        self._tasks: set[asyncio.Task] = set()  # Prevents early GC

    @property
    def is_syncing(self) -> bool:
        """Whether a sync run is currently in flight."""
        return self._is_syncing

    @property
    def has_pending(self) -> bool:
        """Whether a timer is armed and has not fired yet."""
        return self._timer is not None

    async def request_sync(self) -> SyncResult | None:
        """Request a sync run.

        Returns:
            SyncResult | None: Result of the run this request was coalesced
                into, or None if the request was dropped or cancelled

        Raises:
            DebouncerDisposedError: If the debouncer has been disposed
            Exception: Whatever the sync run raised
        """
        if self._disposed:
            raise DebouncerDisposedError("Sync debouncer has been disposed")

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[SyncResult | None] = loop.create_future()

        if self._is_syncing:
            if self.busy_policy is BusyPolicy.DROP:
                log.debug("Sync already in progress, dropping request")
                return None
            log.debug("Sync already in progress, queueing a follow-up run")
            self._queued.append(waiter)
            return await waiter

        self._waiters.append(waiter)
        self._arm(loop)
        return await waiter

    def _arm(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.delay, self._fire)
        log.debug(f"Sync scheduled in {self.delay:g}s")

    def _fire(self) -> None:
        self._timer = None
        waiters, self._waiters = self._waiters, []
        task = asyncio.create_task(self._run(waiters))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, waiters: list[asyncio.Future[SyncResult | None]]) -> None:
        self._is_syncing = True
        try:
            result = await self.sync_service.sync_all_tracked_items()
        except Exception as e:
            log.error("Sync run failed", exc_info=True)
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(e)
        else:
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(result)
        finally:
            self._is_syncing = False
            if self._queued:
                self._waiters.extend(self._queued)
                self._queued.clear()
                self._arm(asyncio.get_running_loop())

    def cancel(self) -> None:
        """Cancel the pending run, if any. A run already in flight is unaffected.

        Callers waiting on the cancelled run, including queued follow-up
        requests, receive None.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            log.debug("Pending sync cancelled")

        waiters = self._waiters + self._queued
        self._waiters.clear()
        self._queued.clear()
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    def dispose(self) -> None:
        """Cancel the pending run and refuse any further requests."""
        self.cancel()
        self._disposed = True

    async def wait_idle(self) -> None:
        """Wait for any in-flight run to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
