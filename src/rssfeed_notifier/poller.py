"""Background polling loop for RSS Feed Notifier."""

import asyncio
import logging
import threading
import time

from rssfeed_notifier.checker import FeedChecker
from rssfeed_notifier.config import CLEANUP_INTERVAL, DEFAULT_POLL_INTERVAL
from rssfeed_notifier.database import Database

logger = logging.getLogger(__name__)


def _settle(future: asyncio.Future, result=None, error: BaseException | None = None) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


async def run_in_daemon_thread(func, name: str, on_exit=None):
    """Run ``func`` in a daemon thread and await its result.

    Unlike ``asyncio.to_thread`` the thread is not joined when the event
    loop or interpreter shuts down. ``on_exit`` runs in the thread once
    ``func`` has returned or raised.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def runner():
        result, error = None, None
        try:
            result = func()
        except BaseException as e:
            error = e
        finally:
            if on_exit is not None:
                on_exit()
        try:
            loop.call_soon_threadsafe(_settle, future, result, error)
        except RuntimeError:
            # loop already closed
            pass

    threading.Thread(target=runner, name=name, daemon=True).start()
    return await future


class FeedPoller:
    """Runs feed check cycles on a timer, never more than one at a time.

    A tick that fires while a cycle is still running is skipped, not queued.
    """

    def __init__(
        self,
        checker: FeedChecker,
        db: Database,
        interval: float = DEFAULT_POLL_INTERVAL,
        retention_days: int = 30,
        cleanup_interval: float = CLEANUP_INTERVAL,
    ):
        self.checker = checker
        self.db = db
        self.interval = interval
        self.retention_days = retention_days
        self.cleanup_interval = cleanup_interval
        self._in_flight = threading.Lock()
        self._stopping = threading.Event()
        self._ticks: set[asyncio.Task] = set()
        self._loops: list[asyncio.Task] = []

    @property
    def is_checking(self) -> bool:
        return self._in_flight.locked()

    async def run_cycle(self) -> int | None:
        """Run one check cycle. Returns posted count, or None if skipped.

        The guard is released by the worker thread when the cycle really
        ends, even if the awaiting task was cancelled first.
        """
        if not self._in_flight.acquire(blocking=False):
            logger.info("Previous feed check still running, skipping")
            return None
        return await run_in_daemon_thread(
            lambda: self.checker.check_all(should_stop=self._stopping.is_set),
            name="feed-check",
            on_exit=self._in_flight.release,
        )

    def run_cleanup(self) -> int:
        """Delete notification history past the retention window."""
        count = self.db.clean_old_history(self.retention_days)
        if count > 0:
            logger.info("Cleaned %d old history entries", count)
        return count

    async def start(self) -> None:
        """Start the check and retention loops in the background."""
        logger.info("Poller started (interval: %ds)", self.interval)
        self._stopping.clear()
        self._loops = [
            asyncio.create_task(self._check_loop()),
            asyncio.create_task(self._cleanup_loop()),
        ]

    async def stop(self, timeout: float = 30.0) -> bool:
        """Stop ticking and wait up to ``timeout`` for an in-flight cycle.

        The running cycle is asked to stop after its current subscription.
        Returns True if no cycle is left running. A cycle still running
        after the timeout is abandoned on its daemon thread.
        """
        self._stopping.set()
        for task in self._loops:
            task.cancel()
        for task in self._loops:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loops = []

        if not self.is_checking:
            return True

        logger.info("Waiting for feed check to complete...")
        deadline = time.monotonic() + timeout
        while self.is_checking and time.monotonic() < deadline:
            await asyncio.sleep(0.1)

        if self.is_checking:
            logger.warning("Feed check did not complete in time, forcing shutdown")
            return False
        logger.info("Feed check completed")
        return True

    async def _check_loop(self) -> None:
        while True:
            task = asyncio.create_task(self._tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self.interval)

    async def _tick(self) -> None:
        try:
            posted = await self.run_cycle()
            if posted:
                logger.info("Poll cycle complete: %d notifications sent", posted)
        except Exception as e:
            logger.error("Poll cycle failed: %s", e)

    async def _cleanup_loop(self) -> None:
        while True:
            try:
                await run_in_daemon_thread(self.run_cleanup, name="history-cleanup")
            except Exception as e:
                logger.error("History cleanup failed: %s", e)
            await asyncio.sleep(self.cleanup_interval)
