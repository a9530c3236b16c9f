"""
Sync engine: drains the offline queue against the remote transaction service.

One ``drain()`` runs at a time per engine. Items are sent one after another;
a failure on one item is recorded against that item and never stops the
rest of the batch. There is no backoff and no attempt ceiling: whatever is
still pending after a drain is sent again by the next one.

Status transitions delivered to subscribers::

    IDLE -> SYNCING -> IDLE                      (nothing pending)
    IDLE -> SYNCING -> SUCCESS | ERROR -> IDLE   (a batch was attempted)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from budgetbuddy.models.transactions import TransactionInput
from budgetbuddy.offline.connectivity import ConnectivityProvider
from budgetbuddy.offline.errors import RemoteWriteFailure, StorageIOError, StorageUnavailable
from budgetbuddy.offline.notices import Notifier, plural
from budgetbuddy.offline.store import OfflineQueue

logger = logging.getLogger(__name__)

SKIPPED_IN_PROGRESS = "in_progress"
SKIPPED_OFFLINE = "offline"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class SyncItemError:
    local_id: str
    error: str


@dataclass
class SyncResult:
    success_count: int = 0
    failure_count: int = 0
    total_count: int = 0
    errors: list[SyncItemError] = field(default_factory=list)
    # Set when the drain did nothing: "in_progress" (another drain owns the
    # queue) or "offline".
    skipped: str | None = None


class TransactionSender(Protocol):
    async def create_transaction(self, payload: TransactionInput) -> str: ...


SyncListener = Callable[[SyncStatus, SyncResult | None], None]


class SyncEngine:
    def __init__(
        self,
        queue: OfflineQueue,
        remote: TransactionSender,
        connectivity: ConnectivityProvider,
        notifier: Notifier | None = None,
    ) -> None:
        self._queue = queue
        self._remote = remote
        self._connectivity = connectivity
        self._notifier = notifier or Notifier()
        self._syncing = False
        self._status = SyncStatus.IDLE
        self._listeners: list[SyncListener] = []

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def subscribe(self, callback: SyncListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, status: SyncStatus, result: SyncResult | None = None) -> None:
        self._status = status
        for listener in list(self._listeners):
            try:
                listener(status, result)
            except Exception:
                logger.exception("Sync status listener failed")

    async def count_pending(self) -> int:
        return await self._queue.count_pending()

    async def has_pending(self) -> bool:
        return await self.count_pending() > 0

    async def drain(self) -> SyncResult:
        # The check and the flag flip happen with no await in between, so two
        # drains scheduled on the same loop cannot both get past this point.
        if self._syncing:
            logger.info("Sync already in progress")
            return SyncResult(skipped=SKIPPED_IN_PROGRESS)
        if not self._connectivity.is_online():
            self._notifier.error("Cannot sync while offline")
            return SyncResult(skipped=SKIPPED_OFFLINE)

        self._syncing = True
        try:
            self._emit(SyncStatus.SYNCING)
            return await self._drain_pending()
        except Exception as exc:
            logger.exception("Sync aborted unexpectedly")
            self._notifier.error("Sync failed", str(exc) or type(exc).__name__)
            self._emit(SyncStatus.ERROR)
            self._emit(SyncStatus.IDLE)
            raise
        finally:
            self._syncing = False

    async def _drain_pending(self) -> SyncResult:
        try:
            pending = await self._queue.list_pending()
        except (StorageIOError, StorageUnavailable) as exc:
            logger.error("Sync aborted, cannot read offline queue: %s", exc)
            self._notifier.error("Sync failed", str(exc))
            self._emit(SyncStatus.ERROR)
            self._emit(SyncStatus.IDLE)
            return SyncResult()

        if not pending:
            logger.info("No pending transactions to sync")
            self._emit(SyncStatus.IDLE)
            return SyncResult()

        logger.info("Syncing %d pending transactions", len(pending))
        self._notifier.info(f"Syncing {plural(len(pending), 'transaction')}...")

        result = SyncResult(total_count=len(pending))
        for item in pending:
            error = await self._sync_item(item.local_id, item.payload)
            if error is None:
                result.success_count += 1
            else:
                result.failure_count += 1
                result.errors.append(SyncItemError(item.local_id, error))

        try:
            await self._queue.prune_synced()
        except StorageIOError as exc:
            logger.warning("Could not prune synced transactions: %s", exc)

        self._announce(result)
        self._emit(SyncStatus.SUCCESS if result.failure_count == 0 else SyncStatus.ERROR, result)
        self._emit(SyncStatus.IDLE)
        return result

    async def _sync_item(self, local_id: str, payload: TransactionInput) -> str | None:
        """Send one queued item; return None on success or the failure message."""
        try:
            remote_id = await self._remote.create_transaction(payload)
        except RemoteWriteFailure as exc:
            logger.warning("Failed to sync transaction %s: %s", local_id, exc.message)
            await self._record_failure(local_id, exc.message or "Unknown error")
            return exc.message or "Unknown error"
        except Exception as exc:
            logger.exception("Unexpected error syncing transaction %s", local_id)
            message = str(exc) or type(exc).__name__
            await self._record_failure(local_id, message)
            return message

        try:
            await self._queue.mark_synced(local_id, remote_id)
        except StorageIOError as exc:
            # Remote accepted it but the row is still pending, so the next
            # drain sends it again.
            message = f"Synced as {remote_id} but local bookkeeping failed: {exc}"
            logger.error("Transaction %s: %s", local_id, message)
            await self._record_failure(local_id, message)
            return message
        return None

    async def _record_failure(self, local_id: str, message: str) -> None:
        try:
            await self._queue.record_attempt_failure(local_id, message)
        except StorageIOError as exc:
            logger.error("Could not record sync failure for %s: %s", local_id, exc)

    def _announce(self, result: SyncResult) -> None:
        if result.success_count > 0:
            self._notifier.success(
                f"Synced {plural(result.success_count, 'transaction')}!",
                f"{result.failure_count} failed to sync" if result.failure_count else None,
            )
        elif result.failure_count > 0:
            self._notifier.error(
                f"Failed to sync {plural(result.failure_count, 'transaction')}",
                "Will retry automatically when online",
            )
