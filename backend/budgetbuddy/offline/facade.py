import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from budgetbuddy.models.transactions import TransactionInput
from budgetbuddy.offline.connectivity import ConnectivityProvider
from budgetbuddy.offline.errors import StorageUnavailable
from budgetbuddy.offline.notices import Notifier
from budgetbuddy.offline.store import OfflineQueue
from budgetbuddy.offline.sync import TransactionSender

logger = logging.getLogger(__name__)

# Read views that show newly written transactions.
READ_CACHE_PREFIXES = ("overview", "transactions", "calendar")


class ReadCache(Protocol):
    async def invalidate_prefixes(self, *prefixes: str) -> None: ...


@dataclass(frozen=True)
class WriteResult:
    id: str
    offline: bool


def _describe(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


class TransactionWriter:
    def __init__(
        self,
        queue: OfflineQueue,
        remote: TransactionSender,
        connectivity: ConnectivityProvider,
        cache: ReadCache,
        notifier: Notifier | None = None,
    ) -> None:
        self._queue = queue
        self._remote = remote
        self._connectivity = connectivity
        self._cache = cache
        self._notifier = notifier or Notifier()

    async def create_transaction(self, data: TransactionInput | Mapping[str, Any]) -> WriteResult:
        payload = data if isinstance(data, TransactionInput) else TransactionInput.model_validate(dict(data))

        if self._connectivity.is_online():
            result = await self._create_remote(payload)
        else:
            result = await self._create_offline(payload)

        await self._cache.invalidate_prefixes(*READ_CACHE_PREFIXES)
        return result

    async def _create_offline(self, payload: TransactionInput) -> WriteResult:
        try:
            local_id = await self._queue.enqueue(payload)
        except StorageUnavailable as exc:
            self._notifier.error("Offline saving is not available", _describe(exc))
            raise
        except Exception as exc:
            logger.warning("Could not queue transaction offline: %s", exc)
            self._notifier.error("Failed to create transaction", _describe(exc))
            raise
        self._notifier.success("Transaction saved offline", "Will sync when you're back online")
        return WriteResult(id=local_id, offline=True)

    async def _create_remote(self, payload: TransactionInput) -> WriteResult:
        try:
            remote_id = await self._remote.create_transaction(payload)
        except Exception as exc:
            self._notifier.error("Failed to create transaction", _describe(exc))
            raise
        self._notifier.success("Transaction created successfully")
        return WriteResult(id=remote_id, offline=False)
