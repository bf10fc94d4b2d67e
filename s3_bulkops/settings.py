from __future__ import annotations
"""Application settings persistence helpers."""

from dataclasses import asdict, dataclass
import json
import logging
from pathlib import Path

LOGGER = logging.getLogger(__name__)

MAX_DELETE_BATCH_SIZE = 1000


@dataclass
class AppSettings:
    """Simple container for persistent app settings."""

    list_page_size: int = 1000
    delete_batch_size: int = 1000
    worker_concurrency: int = 4
    download_concurrency: int = 4
    preview_text_max_bytes: int = 256 * 1024
    archive_compression_level: int = 6
    upload_multipart_threshold: int = 10 * 1024 * 1024
    upload_chunk_size: int = 8 * 1024 * 1024
    upload_max_concurrency: int = 4
    remember_last_bucket: bool = False
    last_connection: str = ""


_POSITIVE_INT_FIELDS = (
    "list_page_size",
    "delete_batch_size",
    "worker_concurrency",
    "download_concurrency",
    "preview_text_max_bytes",
    "upload_multipart_threshold",
    "upload_chunk_size",
    "upload_max_concurrency",
)


def _positive_int(value: object, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


class SettingsStorage:
    """JSON-backed persistence for :class:`AppSettings`."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".s3_bulkops_settings.json"
        self._path = Path(storage_path)

    def load(self) -> AppSettings:
        if not self._path.exists():
            return AppSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("Ignoring unreadable settings file %s", self._path)
            return AppSettings()
        if not isinstance(data, dict):
            return AppSettings()

        defaults = AppSettings()
        values = {
            name: _positive_int(data.get(name), getattr(defaults, name))
            for name in _POSITIVE_INT_FIELDS
        }
        values["delete_batch_size"] = min(values["delete_batch_size"], MAX_DELETE_BATCH_SIZE)

        level = data.get("archive_compression_level", defaults.archive_compression_level)
        if isinstance(level, int) and not isinstance(level, bool) and 0 <= level <= 9:
            values["archive_compression_level"] = level
        else:
            values["archive_compression_level"] = defaults.archive_compression_level

        remember = data.get("remember_last_bucket")
        values["remember_last_bucket"] = remember if isinstance(remember, bool) else False
        last_connection = data.get("last_connection")
        values["last_connection"] = last_connection if isinstance(last_connection, str) else ""
        return AppSettings(**values)

    def save(self, settings: AppSettings) -> None:
        payload = asdict(settings)
        for name in _POSITIVE_INT_FIELDS:
            payload[name] = max(int(payload[name]), 1)
        payload["delete_batch_size"] = min(payload["delete_batch_size"], MAX_DELETE_BATCH_SIZE)
        payload["archive_compression_level"] = min(max(int(settings.archive_compression_level), 0), 9)
        payload["remember_last_bucket"] = bool(settings.remember_last_bucket)
        payload["last_connection"] = settings.last_connection or ""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError:
            # Persist best-effort; ignore filesystem issues.
            LOGGER.warning("Could not write settings file %s", self._path)
            return
