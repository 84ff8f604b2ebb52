"""Scheduler Module."""

import asyncio
import contextlib
from datetime import UTC, datetime, timedelta

from tzlocal import get_localzone

from trackbridge import log
from trackbridge.core.bridge import BridgeClient

__all__ = ["SyncScheduler"]


class SyncScheduler:
    """Periodically requests a sync from the bridge client.

    Runs until the stop event is set. A `sync_interval` of 0 runs a single sync
    and then sets the stop event itself.
    """

    def __init__(
        self,
        bridge_client: BridgeClient,
        sync_interval: int,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            bridge_client (BridgeClient): Client whose debounced sync is requested
            sync_interval (int): Seconds between syncs, 0 for a single run
            stop_event (asyncio.Event | None): Event signalling shutdown
        """
        self.bridge_client = bridge_client
        self.sync_interval = sync_interval
        self.stop_event = stop_event or asyncio.Event()

        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def request_shutdown(self) -> None:
        """Request scheduler shutdown from external callers."""
        if not self.stop_event.is_set():
            self.stop_event.set()

    async def sync(self) -> None:
        """Run a single sync cycle, logging rather than raising errors."""
        try:
            result = await self.bridge_client.sync()
        except asyncio.CancelledError:
            raise
        except Exception:
            log.error("Sync error", exc_info=True)
            return
        if result is None:
            log.debug("Sync request was not run")
        elif result.errors:
            log.warning(f"Sync completed with {len(result.errors)} error(s)")

    async def start(self) -> None:
        """Start the scheduler loop, or run once when the interval is 0."""
        if self._running:
            return

        if self.sync_interval == 0:
            log.debug("No sync interval configured, triggering a single run")
            await self.sync()
            self.stop_event.set()
            return

        self._running = True
        log.debug(f"Starting periodic sync every {self.sync_interval}s")
        self._task = asyncio.create_task(self._periodic_loop())

    async def stop(self) -> None:
        """Stop the scheduler loop."""
        self._running = False
        self.stop_event.set()

        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._task = None

    async def wait_for_completion(self) -> None:
        """Wait until the scheduler is stopped."""
        try:
            await self.stop_event.wait()
        except asyncio.CancelledError:
            log.info("Scheduler wait interrupted")
            raise

    async def _periodic_loop(self) -> None:
        """Handle periodic synchronization."""
        while self._running and not self.stop_event.is_set():
            try:
                await self.sync()

                next_sync = datetime.now(UTC) + timedelta(seconds=self.sync_interval)
                log.info(
                    f"Next periodic sync scheduled for: "
                    f"{next_sync.astimezone(get_localzone())}"
                )

                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self.stop_event.wait(), self.sync_interval)
            except asyncio.CancelledError:
                log.debug("Periodic sync cancelled")
                break
            except Exception:
                log.error("Periodic sync error", exc_info=True)
                await asyncio.sleep(10)

    async def __aenter__(self) -> "SyncScheduler":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()
