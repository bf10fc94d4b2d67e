import unittest

from fakes import FakeS3Client, client_error

from s3_bulkops.delete import BATCH_ERROR_CODE, BulkDeleteEngine
from s3_bulkops.enumerator import EnumerationError, KeyEnumerator
from s3_bulkops.models import BulkStatus, ProgressSink
from s3_bulkops.services import BucketService


def build_engine(client, batch_size=1000):
    service = BucketService(client, "bucket-one")
    return BulkDeleteEngine(service, KeyEnumerator(service), batch_size=batch_size)


class RecordingSink(ProgressSink):
    def __init__(self):
        super().__init__(
            on_progress=lambda done, total: self.progress_events.append((done, total)),
            on_item_failure=lambda failure: self.failures.append(failure),
            on_finished=lambda status, summary: self.finished_events.append((status, summary)),
        )
        self.progress_events = []
        self.failures = []
        self.finished_events = []


class BulkDeleteEngineTests(unittest.IsolatedAsyncioTestCase):
    async def test_splits_into_sequential_batches_and_collects_key_errors(self):
        keys = [f"logs/{i:05d}.txt" for i in range(2500)]
        client = FakeS3Client({key: b"x" for key in keys})
        for key in keys[1000:1005]:
            client.delete_key_errors[key] = ("AccessDenied", "Access Denied")
        engine = build_engine(client)
        sink = RecordingSink()

        operation = await engine.delete_keys(keys, sink)

        self.assertEqual([1000, 1000, 500], [len(batch) for batch in client.delete_batches])
        self.assertEqual(2500, operation.items_total)
        self.assertEqual(2500, operation.items_done)
        self.assertEqual(5, len(operation.failures))
        self.assertEqual(keys[1000:1005], operation.failed_keys)
        self.assertEqual("AccessDenied", operation.failures[0].code)
        self.assertEqual(BulkStatus.PARTIALLY_FAILED, operation.status)
        self.assertEqual(
            [(0, 2500), (1000, 2500), (2000, 2500), (2500, 2500)],
            sink.progress_events,
        )
        self.assertEqual(5, len(sink.failures))
        self.assertEqual(
            [(BulkStatus.PARTIALLY_FAILED, "5 item(s) failed to delete. Review and retry.")],
            sink.finished_events,
        )
        self.assertEqual(set(keys[1000:1005]), set(client.objects))

    async def test_transport_failure_marks_whole_batch_failed(self):
        keys = [f"k{i}" for i in range(5)]
        client = FakeS3Client({key: b"x" for key in keys})
        client.batch_failures[1] = client_error("InternalError", "DeleteObjects", status=500, message="try later")
        engine = build_engine(client, batch_size=2)

        operation = await engine.delete_keys(keys)

        self.assertEqual(3, len(client.delete_batches))
        self.assertEqual(["k2", "k3"], operation.failed_keys)
        self.assertTrue(all(f.code == BATCH_ERROR_CODE for f in operation.failures))
        self.assertEqual("try later", operation.failures[0].message)
        self.assertEqual(5, operation.items_done)
        self.assertEqual({"k2", "k3"}, set(client.objects))

    async def test_connection_reset_marks_batch_failed_instead_of_raising(self):
        keys = ["k0", "k1", "k2"]
        client = FakeS3Client({key: b"x" for key in keys})
        client.batch_failures[0] = ConnectionResetError("peer reset")
        engine = build_engine(client, batch_size=2)
        sink = RecordingSink()

        operation = await engine.delete_keys(keys, sink)

        self.assertEqual(BulkStatus.PARTIALLY_FAILED, operation.status)
        self.assertEqual(["k0", "k1"], operation.failed_keys)
        self.assertEqual(
            [BATCH_ERROR_CODE, BATCH_ERROR_CODE],
            [failure.code for failure in operation.failures],
        )
        self.assertEqual("peer reset", operation.failures[0].message)
        self.assertEqual(3, operation.items_done)
        self.assertEqual({"k0", "k1"}, set(client.objects))
        self.assertEqual(BulkStatus.PARTIALLY_FAILED, sink.finished_events[0][0])

    async def test_retry_resubmits_only_failed_keys_as_new_operation(self):
        client = FakeS3Client({"a": b"1", "b": b"2", "c": b"3"})
        client.delete_key_errors["b"] = ("SlowDown", "Reduce your request rate")
        engine = build_engine(client)
        first = await engine.delete_keys(["a", "b", "c"])
        self.assertEqual(BulkStatus.PARTIALLY_FAILED, first.status)

        client.delete_key_errors.clear()
        second = await engine.retry(first)

        self.assertIsNot(first, second)
        self.assertEqual(["b"], client.delete_batches[-1])
        self.assertEqual(BulkStatus.COMPLETED, second.status)
        self.assertEqual(1, second.items_total)
        self.assertEqual(BulkStatus.PARTIALLY_FAILED, first.status)
        self.assertEqual({}, client.objects)

    async def test_retry_against_keys_deleted_elsewhere_succeeds(self):
        # S3 reports deleting a missing key as success; a retry racing another
        # deleter therefore completes. Backends that report NoSuchKey would not.
        client = FakeS3Client({"a": b"1"})
        client.batch_failures[0] = client_error("RequestTimeout", "DeleteObjects")
        engine = build_engine(client)
        first = await engine.delete_keys(["a"])
        client.objects.pop("a")

        second = await engine.retry(first)

        self.assertEqual(BulkStatus.COMPLETED, second.status)
        self.assertEqual([], second.failures)

    async def test_delete_prefix_removes_marker_and_nested_keys(self):
        client = FakeS3Client({"dir/": b"", "dir/a": b"1", "dir/sub/b": b"2", "other": b"3"})
        engine = build_engine(client)

        operation = await engine.delete_prefix("dir/")

        self.assertEqual(BulkStatus.COMPLETED, operation.status)
        self.assertEqual(3, operation.items_total)
        self.assertEqual({"other": b"3"}, client.objects)

    async def test_enumeration_failure_aborts_before_any_delete(self):
        client = FakeS3Client({"dir/a": b"1"})
        client.list_failures[0] = client_error("AccessDenied", "ListObjectsV2", status=403)
        engine = build_engine(client)

        with self.assertRaises(EnumerationError):
            await engine.delete_prefix("dir/")

        self.assertEqual([], client.delete_batches)

    async def test_empty_key_set_completes_without_requests(self):
        client = FakeS3Client()
        engine = build_engine(client)

        operation = await engine.delete_keys([])

        self.assertEqual(BulkStatus.COMPLETED, operation.status)
        self.assertEqual(0, operation.items_total)
        self.assertEqual([], client.delete_batches)

    def test_rejects_batch_size_above_backend_limit(self):
        with self.assertRaises(ValueError):
            build_engine(FakeS3Client(), batch_size=1001)


if __name__ == "__main__":
    unittest.main()
