import logging
from collections.abc import Mapping
from typing import Any, Callable

import httpx

from budgetbuddy.core.cache import AsyncTimedCache
from budgetbuddy.core.client_config import ClientSettings, load_client_settings
from budgetbuddy.models.transactions import TransactionInput
from budgetbuddy.offline.connectivity import ConnectivityProvider, ProbeConnectivity
from budgetbuddy.offline.errors import StorageUnavailable
from budgetbuddy.offline.facade import TransactionWriter, WriteResult
from budgetbuddy.offline.notices import Notifier
from budgetbuddy.offline.remote import RemoteTransactionService
from budgetbuddy.offline.store import OfflineQueue
from budgetbuddy.offline.sync import SyncEngine, SyncListener, SyncResult
from budgetbuddy.offline.trigger import AutoSyncTrigger

logger = logging.getLogger(__name__)

OVERVIEW_CACHE_KEY = "overview:stats"


class OfflineClient:
    """Wires the offline queue, sync engine, trigger and write path for one app.

    Pass a ``connectivity`` provider when the host application already knows
    the network state; otherwise the remote host is probed periodically.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        connectivity: ConnectivityProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or load_client_settings()
        self.notifier = Notifier()
        self.queue = OfflineQueue(self.settings.offline_db_path)
        self.remote = RemoteTransactionService(
            self.settings.api_url,
            self.settings.api_key,
            timeout=self.settings.remote_timeout,
            transport=transport,
        )
        self._probe: ProbeConnectivity | None = None
        if connectivity is None:
            self._probe = ProbeConnectivity(
                self.settings.api_url,
                interval=self.settings.probe_interval,
                timeout=self.settings.probe_timeout,
            )
            connectivity = self._probe
        self.connectivity = connectivity
        self.cache = AsyncTimedCache(redis_url=self.settings.redis_url, key_prefix=self.settings.redis_prefix)
        self.engine = SyncEngine(self.queue, self.remote, self.connectivity, self.notifier)
        self.writer = TransactionWriter(self.queue, self.remote, self.connectivity, self.cache, self.notifier)
        self.trigger = AutoSyncTrigger(
            self.engine,
            self.connectivity,
            settle_delay=self.settings.settle_delay,
            startup_delay=self.settings.startup_delay,
        )

    async def start(self) -> None:
        try:
            await self.queue.open()
        except StorageUnavailable as exc:
            logger.warning("Offline writes unsupported: %s", exc)
        await self.cache.connect()
        if self._probe is not None:
            await self._probe.check_now()
            self._probe.start()
        self.trigger.start()

    async def close(self) -> None:
        await self.trigger.stop()
        if self._probe is not None:
            await self._probe.stop()
        await self.remote.aclose()
        await self.queue.close()
        await self.cache.aclose()

    async def __aenter__(self) -> "OfflineClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def create_transaction(self, data: TransactionInput | Mapping[str, Any]) -> WriteResult:
        return await self.writer.create_transaction(data)

    async def drain(self) -> SyncResult:
        return await self.engine.drain()

    def subscribe_sync_status(self, callback: SyncListener) -> Callable[[], None]:
        return self.engine.subscribe(callback)

    async def count_pending(self) -> int:
        return await self.engine.count_pending()

    async def overview(self) -> dict[str, Any]:
        cached = await self.cache.get(OVERVIEW_CACHE_KEY)
        if cached is not None:
            return cached
        stats = await self.remote.fetch_stats()
        await self.cache.set(OVERVIEW_CACHE_KEY, stats, self.settings.read_cache_ttl)
        return stats
