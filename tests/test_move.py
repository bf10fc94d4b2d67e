import unittest

from fakes import FakeS3Client, client_error

from s3_bulkops.models import BulkStatus, ProgressSink
from s3_bulkops.move import BulkMoveEngine
from s3_bulkops.services import BucketService


class BulkMoveEngineTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.client = FakeS3Client(
            {
                "a/b.txt": b"b",
                "a/c.txt": b"c",
                "a/d.txt": b"d",
                "archive/c.txt": b"old-c",
            }
        )
        self.engine = BulkMoveEngine(BucketService(self.client, "bucket-one"), concurrency=2)

    def test_destination_key_uses_base_name(self):
        self.assertEqual("dest/b.txt", BulkMoveEngine.destination_key("a/deep/b.txt", "dest/"))
        self.assertEqual("b.txt", BulkMoveEngine.destination_key("a/b.txt", ""))

    async def test_moving_into_current_prefix_is_a_no_op(self):
        operation = await self.engine.move(["a/b.txt"], "a/")

        self.assertEqual(BulkStatus.COMPLETED, operation.status)
        self.assertEqual(1, operation.items_done)
        self.assertEqual([], self.client.copy_calls)
        self.assertEqual([], self.client.delete_calls)
        self.assertEqual(b"b", self.client.objects["a/b.txt"])

    async def test_moves_each_key_with_copy_then_delete(self):
        progress = []
        sink = ProgressSink(on_progress=lambda done, total: progress.append((done, total)))

        operation = await self.engine.move(["a/b.txt", "a/d.txt"], "dest/", sink)

        self.assertEqual(BulkStatus.COMPLETED, operation.status)
        self.assertEqual({"dest/b.txt": b"b", "dest/d.txt": b"d"}, {
            key: value for key, value in self.client.objects.items() if key.startswith("dest/")
        })
        self.assertNotIn("a/b.txt", self.client.objects)
        self.assertNotIn("a/d.txt", self.client.objects)
        self.assertEqual((2, 2), progress[-1])
        self.assertEqual("dest/", operation.destination_prefix)

    async def test_copy_failure_never_deletes_source(self):
        self.client.errors[("copy_object", "a/c.txt")] = client_error("AccessDenied", "CopyObject", status=403)
        failures = []
        sink = ProgressSink(on_item_failure=failures.append)

        operation = await self.engine.move(["a/b.txt", "a/c.txt"], "dest/", sink)

        self.assertEqual(BulkStatus.PARTIALLY_FAILED, operation.status)
        self.assertNotIn("a/c.txt", self.client.delete_calls)
        self.assertIn("a/c.txt", self.client.objects)
        self.assertEqual(1, len(operation.failures))
        failure = operation.failures[0]
        self.assertEqual("a/c.txt", failure.key)
        self.assertEqual("dest/c.txt", failure.destination_key)
        self.assertEqual("AccessDenied", failure.code)
        self.assertEqual("copy", failure.phase)
        self.assertEqual([failure], failures)
        self.assertEqual(2, operation.items_done)

    async def test_delete_failure_leaves_copy_in_place(self):
        self.client.errors[("delete_object", "a/b.txt")] = client_error("AccessDenied", "DeleteObject", status=403)

        operation = await self.engine.move(["a/b.txt"], "dest/")

        self.assertEqual(BulkStatus.PARTIALLY_FAILED, operation.status)
        self.assertIn("a/b.txt", self.client.objects)
        self.assertIn("dest/b.txt", self.client.objects)
        self.assertEqual("delete", operation.failures[0].phase)
        self.assertTrue(operation.failures[0].message.startswith("Copied but source not deleted"))

    async def test_retry_moves_only_failed_sources_to_same_prefix(self):
        self.client.errors[("copy_object", "a/c.txt")] = client_error("SlowDown", "CopyObject", status=503)
        first = await self.engine.move(["a/b.txt", "a/c.txt"], "dest/")
        self.client.errors.clear()
        self.client.copy_calls.clear()

        second = await self.engine.retry(first)

        self.assertEqual([("a/c.txt", "dest/c.txt")], self.client.copy_calls)
        self.assertEqual(BulkStatus.COMPLETED, second.status)
        self.assertEqual("dest/", second.destination_prefix)

    async def test_preflight_reports_existing_destinations(self):
        conflicts = await self.engine.preflight(["a/b.txt", "a/c.txt"], "archive/")

        self.assertEqual(["archive/c.txt"], [conflict.destination_key for conflict in conflicts])
        self.assertEqual("a/c.txt", conflicts[0].source_key)
        self.assertEqual(["archive/b.txt", "archive/c.txt"], sorted(self.client.head_calls))

    async def test_preflight_reports_sources_sharing_a_destination(self):
        self.client.objects["x/b.txt"] = b"other-b"

        conflicts = await self.engine.preflight(["a/b.txt", "a/d.txt", "x/b.txt"], "dest/")

        self.assertEqual(
            [("dest/b.txt", "a/b.txt", "duplicate"), ("dest/b.txt", "x/b.txt", "duplicate")],
            [(c.destination_key, c.source_key, c.reason) for c in conflicts],
        )
        self.assertEqual(["dest/b.txt", "dest/d.txt"], sorted(self.client.head_calls))

    async def test_preflight_reports_existing_and_duplicate_destination(self):
        self.client.objects["x/c.txt"] = b"other-c"

        conflicts = await self.engine.preflight(["a/c.txt", "x/c.txt"], "archive/")

        self.assertEqual(
            [("a/c.txt", "exists"), ("a/c.txt", "duplicate"), ("x/c.txt", "duplicate")],
            [(c.source_key, c.reason) for c in conflicts],
        )

    async def test_preflight_ignores_non_not_found_errors(self):
        self.client.errors[("head_object", "archive/c.txt")] = client_error("AccessDenied", "HeadObject", status=403)

        conflicts = await self.engine.preflight(["a/c.txt"], "archive/")

        self.assertEqual([], conflicts)

    async def test_preflight_skips_keys_that_stay_in_place(self):
        conflicts = await self.engine.preflight(["a/b.txt"], "a/")

        self.assertEqual([], conflicts)
        self.assertEqual([], self.client.head_calls)


if __name__ == "__main__":
    unittest.main()
