import asyncio
import logging
from typing import Callable

from budgetbuddy.offline.connectivity import ConnectivityProvider
from budgetbuddy.offline.errors import StorageIOError, StorageUnavailable
from budgetbuddy.offline.sync import SyncEngine

logger = logging.getLogger(__name__)


class AutoSyncTrigger:
    """Start drains on reconnect and shortly after startup.

    Both triggers are best effort: a skipped trigger only delays delivery
    until the next reconnect, startup or manual drain.
    """

    def __init__(
        self,
        engine: SyncEngine,
        connectivity: ConnectivityProvider,
        settle_delay: float = 2.0,
        startup_delay: float = 3.0,
    ) -> None:
        self._engine = engine
        self._connectivity = connectivity
        self._settle_delay = settle_delay
        self._startup_delay = startup_delay
        self._loop: asyncio.AbstractEventLoop | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._tasks: set[asyncio.Task] = set()

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self._connectivity.subscribe(self._on_connectivity_change)
        if self._connectivity.is_online():
            self._schedule(self._startup_delay, "startup")

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        tasks, self._tasks = self._tasks, set()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            logger.info("Network online - checking for pending transactions")
            self._schedule(self._settle_delay, "reconnect")

    def _schedule(self, delay: float, reason: str) -> None:
        if self._loop is None:
            return
        task = self._loop.create_task(self._drain_after(delay, reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _drain_after(self, delay: float, reason: str) -> None:
        await asyncio.sleep(delay)
        if not self._connectivity.is_online():
            logger.info("Skipping %s sync, connection dropped again", reason)
            return
        try:
            if not await self._engine.has_pending():
                return
        except (StorageIOError, StorageUnavailable) as exc:
            logger.warning("Skipping %s sync, offline queue unavailable: %s", reason, exc)
            return
        logger.info("Starting %s sync", reason)
        try:
            await self._engine.drain()
        except Exception:
            logger.exception("%s sync failed", reason.capitalize())
