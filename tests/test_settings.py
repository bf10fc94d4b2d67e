import json
import tempfile
import unittest
from pathlib import Path

from s3_bulkops.settings import AppSettings, SettingsStorage


class SettingsStorageTests(unittest.TestCase):
    def test_load_returns_defaults_when_missing(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            storage = SettingsStorage(path)

            settings = storage.load()

            self.assertEqual(AppSettings(), settings)
            self.assertEqual(1000, settings.delete_batch_size)
            self.assertEqual(4, settings.download_concurrency)
            self.assertEqual(256 * 1024, settings.preview_text_max_bytes)

    def test_load_sanitizes_invalid_values(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            payload = {
                "list_page_size": "nope",
                "delete_batch_size": 5000,
                "worker_concurrency": 0,
                "download_concurrency": True,
                "archive_compression_level": 12,
                "upload_multipart_threshold": 0,
                "upload_chunk_size": "bad",
                "upload_max_concurrency": -5,
                "remember_last_bucket": "yes",
                "last_connection": None,
            }
            path.write_text(json.dumps(payload), encoding="utf-8")
            storage = SettingsStorage(path)

            settings = storage.load()

            self.assertEqual(AppSettings.list_page_size, settings.list_page_size)
            self.assertEqual(1000, settings.delete_batch_size)
            self.assertEqual(AppSettings.worker_concurrency, settings.worker_concurrency)
            self.assertEqual(AppSettings.download_concurrency, settings.download_concurrency)
            self.assertEqual(AppSettings.archive_compression_level, settings.archive_compression_level)
            self.assertEqual(AppSettings.upload_multipart_threshold, settings.upload_multipart_threshold)
            self.assertEqual(AppSettings.upload_chunk_size, settings.upload_chunk_size)
            self.assertEqual(AppSettings.upload_max_concurrency, settings.upload_max_concurrency)
            self.assertFalse(settings.remember_last_bucket)
            self.assertEqual("", settings.last_connection)

    def test_load_ignores_corrupt_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            path.write_text("{not json", encoding="utf-8")

            self.assertEqual(AppSettings(), SettingsStorage(path).load())

    def test_load_keeps_valid_values(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            payload = {
                "delete_batch_size": 250,
                "worker_concurrency": 8,
                "archive_compression_level": 0,
                "remember_last_bucket": True,
                "last_connection": "prod",
            }
            path.write_text(json.dumps(payload), encoding="utf-8")

            settings = SettingsStorage(path).load()

            self.assertEqual(250, settings.delete_batch_size)
            self.assertEqual(8, settings.worker_concurrency)
            self.assertEqual(0, settings.archive_compression_level)
            self.assertTrue(settings.remember_last_bucket)
            self.assertEqual("prod", settings.last_connection)

    def test_save_sanitizes_minimum_values(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            storage = SettingsStorage(path)
            settings = AppSettings(
                list_page_size=0,
                delete_batch_size=4000,
                worker_concurrency=-1,
                archive_compression_level=-3,
                upload_multipart_threshold=0,
                upload_chunk_size=-5,
                upload_max_concurrency=0,
                remember_last_bucket=True,
                last_connection="conn",
            )

            storage.save(settings)

            saved = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(1, saved["list_page_size"])
            self.assertEqual(1000, saved["delete_batch_size"])
            self.assertEqual(1, saved["worker_concurrency"])
            self.assertEqual(0, saved["archive_compression_level"])
            self.assertEqual(1, saved["upload_multipart_threshold"])
            self.assertEqual(1, saved["upload_chunk_size"])
            self.assertEqual(1, saved["upload_max_concurrency"])
            self.assertTrue(saved["remember_last_bucket"])
            self.assertEqual("conn", saved["last_connection"])


if __name__ == "__main__":
    unittest.main()
