import asyncio
import pathlib
import sys
import tempfile
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

BACKEND_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from budgetbuddy.models.transactions import TransactionInput
from budgetbuddy.offline.errors import QueueIntegrityError, StorageUnavailable
from budgetbuddy.offline.store import OfflineQueue


def make_payload(description: str = "Coffee", **overrides) -> TransactionInput:
    data = {
        "kind": "expense",
        "amount": "50",
        "description": description,
        "category": "Food",
        "category_icon": "☕",
        "occurred_at": "2026-10-03",
        "notes": "oat milk",
        "tag_ids": ["t1"],
    }
    data.update(overrides)
    return TransactionInput.model_validate(data)


class OfflineQueueTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = str(pathlib.Path(self._tmp.name) / "offline.sqlite3")
        self.queue = OfflineQueue(self.db_path)

    async def asyncTearDown(self) -> None:
        await self.queue.close()
        self._tmp.cleanup()

    async def test_open_is_idempotent_under_concurrent_callers(self):
        await asyncio.gather(self.queue.open(), self.queue.open(), self.queue.open())
        conn = self.queue._conn
        await self.queue.open()
        self.assertIsNotNone(conn)
        self.assertIs(self.queue._conn, conn)

    async def test_enqueue_creates_pending_record(self):
        local_id = await self.queue.enqueue(make_payload())

        self.assertTrue(local_id.startswith("offline_"))
        item = await self.queue.get(local_id)
        self.assertFalse(item.synced)
        self.assertTrue(item.pending)
        self.assertEqual(item.sync_attempts, 0)
        self.assertIsNone(item.remote_id)
        self.assertIsNone(item.last_error)
        self.assertEqual(item.payload, make_payload())
        self.assertEqual(item.enqueued_at.tzinfo, timezone.utc)

    async def test_generated_ids_are_unique(self):
        ids = [await self.queue.enqueue(make_payload(str(i))) for i in range(20)]
        self.assertEqual(len(set(ids)), 20)
        self.assertEqual(await self.queue.count_pending(), 20)

    async def test_id_collision_never_overwrites(self):
        fixed = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        queue = OfflineQueue(self.db_path, clock=lambda: fixed)
        try:
            with patch("budgetbuddy.offline.store.secrets.token_hex", return_value="abcdef"):
                local_id = await queue.enqueue(make_payload("first"))
                with self.assertRaises(QueueIntegrityError):
                    await queue.enqueue(make_payload("second"))
            item = await queue.get(local_id)
            self.assertEqual(item.payload.description, "first")
        finally:
            await queue.close()

    async def test_mark_synced_sets_remote_id_and_filters_pending(self):
        a = await self.queue.enqueue(make_payload("A"))
        b = await self.queue.enqueue(make_payload("B"))

        await self.queue.mark_synced(a, "remote-a")

        pending = await self.queue.list_pending()
        self.assertEqual([item.local_id for item in pending], [b])
        synced = await self.queue.get(a)
        self.assertTrue(synced.synced)
        self.assertEqual(synced.remote_id, "remote-a")
        self.assertEqual(len(await self.queue.list_all()), 2)

    async def test_mark_synced_and_record_failure_ignore_missing_ids(self):
        await self.queue.mark_synced("offline_missing", "remote")
        await self.queue.record_attempt_failure("offline_missing", "boom")
        self.assertEqual(await self.queue.list_all(), [])

    async def test_record_attempt_failure_counts_and_overwrites_error(self):
        local_id = await self.queue.enqueue(make_payload())

        await self.queue.record_attempt_failure(local_id, "HTTP 500")
        await self.queue.record_attempt_failure(local_id, "HTTP 502")

        item = await self.queue.get(local_id)
        self.assertEqual(item.sync_attempts, 2)
        self.assertEqual(item.last_error, "HTTP 502")
        self.assertIsNotNone(item.last_sync_attempt_at)
        self.assertFalse(item.synced)

    async def test_state_survives_reopen(self):
        local_id = await self.queue.enqueue(make_payload())
        await self.queue.record_attempt_failure(local_id, "timeout")
        await self.queue.close()

        reopened = OfflineQueue(self.db_path)
        try:
            item = await reopened.get(local_id)
            self.assertEqual(item.sync_attempts, 1)
            self.assertEqual(item.last_error, "timeout")
            self.assertEqual(await reopened.count_pending(), 1)
        finally:
            await reopened.close()

    async def test_prune_removes_only_synced(self):
        a = await self.queue.enqueue(make_payload("A"))
        b = await self.queue.enqueue(make_payload("B"))
        await self.queue.mark_synced(a, "remote-a")

        removed = await self.queue.prune_synced()

        self.assertEqual(removed, 1)
        self.assertEqual([item.local_id for item in await self.queue.list_all()], [b])

    async def test_remove_and_clear(self):
        a = await self.queue.enqueue(make_payload("A"))
        await self.queue.enqueue(make_payload("B"))

        await self.queue.remove(a)
        self.assertIsNone(await self.queue.get(a))
        self.assertEqual(await self.queue.count_pending(), 1)

        await self.queue.clear()
        self.assertEqual(await self.queue.count_pending(), 0)

    async def test_unusable_location_raises_storage_unavailable(self):
        blocker = pathlib.Path(self._tmp.name) / "not-a-dir"
        blocker.write_text("x")
        queue = OfflineQueue(str(blocker / "nested" / "offline.sqlite3"))

        with self.assertRaises(StorageUnavailable):
            await queue.open()
        with self.assertRaises(StorageUnavailable):
            await queue.enqueue(make_payload())


if __name__ == "__main__":
    unittest.main()
