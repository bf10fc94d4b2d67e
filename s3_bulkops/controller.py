from __future__ import annotations
"""Controller coordinating the selection, the bucket and the bulk engines."""

import logging
from pathlib import Path
from typing import Callable, Iterable, Optional

from .archive import ArchiveDownloadEngine, ZipArchiveSink
from .delete import BulkDeleteEngine
from .enumerator import KeyEnumerator
from .models import (
    ArchiveJob,
    BulkOperation,
    MoveConflict,
    ObjectDetails,
    ObjectPreview,
    PrefixListing,
    ProgressSink,
    UploadOperation,
)
from .move import BulkMoveEngine
from .pool import WorkerPool
from .profiles import ConnectionProfile, ProfileStorage
from .selection import SelectionModel
from .services import BucketService
from .settings import AppSettings
from .ui_utils import base_name, compose_s3_key, normalize_prefix, validate_directory_name

LOGGER = logging.getLogger(__name__)

IMAGE_PREVIEW_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "bmp", "svg"}
LARGE_UPLOAD_FILE_COUNT = 100


class NotConnectedError(RuntimeError):
    """Raised when an S3 operation is attempted before connecting."""


class S3BulkController:
    """Binds one bucket connection to the bulk engines.

    Holds no state about running operations: every bulk call returns its
    own handle to the caller.
    """

    def __init__(
        self,
        storage: ProfileStorage | None = None,
        settings: AppSettings | None = None,
        client_factory: Callable[..., object] | None = None,
    ):
        self._storage = storage or ProfileStorage()
        self._settings = settings or AppSettings()
        self._client_factory = client_factory
        self._profiles: list[ConnectionProfile] = self._storage.load()
        self._selected_profile: str | None = None
        self._service: BucketService | None = None
        self._enumerator: KeyEnumerator | None = None
        self._delete_engine: BulkDeleteEngine | None = None
        self._move_engine: BulkMoveEngine | None = None
        self._archive_engine: ArchiveDownloadEngine | None = None
        self.selection = SelectionModel()

    @property
    def is_connected(self) -> bool:
        return self._service is not None

    @property
    def selected_profile(self) -> str | None:
        return self._selected_profile

    @property
    def bucket(self) -> str | None:
        return self._service.bucket if self._service else None

    @property
    def settings(self) -> AppSettings:
        return self._settings

    def apply_settings(self, settings: AppSettings) -> None:
        self._settings = settings
        if self._service is not None:
            self._bind(self._service)

    def list_profiles(self) -> list[ConnectionProfile]:
        return list(self._profiles)

    def save_profile(self, profile: ConnectionProfile, *, original_name: str | None = None) -> None:
        if original_name and original_name != profile.name:
            self._profiles = [p for p in self._profiles if p.name != original_name]
        self._upsert_profile(profile)
        self._persist_profiles()

    def delete_profile(self, name: str) -> None:
        before = len(self._profiles)
        self._profiles = [p for p in self._profiles if p.name != name]
        if len(self._profiles) == before:
            raise ValueError(f"Profile '{name}' does not exist")
        if self._selected_profile == name:
            self._selected_profile = None
        self._persist_profiles()

    def get_profile(self, name: str) -> ConnectionProfile:
        for profile in self._profiles:
            if profile.name == name:
                return profile
        raise ValueError(f"Profile '{name}' does not exist")

    async def connect_with_profile(self, name: str) -> str:
        profile = self.get_profile(name)
        bucket = await self.connect(
            endpoint_url=profile.endpoint_url,
            access_key=profile.access_key,
            secret_key=profile.secret_key,
            region=profile.region,
            bucket=profile.bucket,
        )
        self._selected_profile = name
        return bucket

    async def connect(
        self,
        *,
        endpoint_url: str,
        access_key: str,
        secret_key: str,
        region: str,
        bucket: str,
    ) -> str:
        if not bucket:
            raise ValueError("A bucket name is required")
        service = BucketService.connect(
            endpoint_url=endpoint_url,
            access_key=access_key,
            secret_key=secret_key,
            region=region,
            bucket=bucket,
            client_factory=self._client_factory,
        )
        await service.check_access()
        self._bind(service)
        LOGGER.info("Connected to bucket '%s' (region %s)", bucket, region or "default")
        return bucket

    def sign_out(self) -> None:
        self._service = None
        self._enumerator = None
        self._delete_engine = None
        self._move_engine = None
        self._archive_engine = None
        self._selected_profile = None
        self.selection.clear()

    async def list_prefix(self, prefix: str = "", continuation_token: str | None = None) -> PrefixListing:
        service = self._require_connection()
        objects, prefixes, next_token = await service.list_summaries(
            prefix,
            delimiter="/",
            max_keys=self._settings.list_page_size,
            continuation_token=continuation_token,
        )
        return PrefixListing(
            prefix=prefix,
            objects=[obj for obj in objects if obj.key != prefix],
            prefixes=prefixes,
            next_token=next_token,
        )

    async def list_prefixes_only(self, prefix: str = "") -> list[str]:
        """Child prefixes of ``prefix``, used to pick a move destination."""

        service = self._require_connection()
        prefixes: list[str] = []
        token: str | None = None
        while True:
            page = await service.list_objects(
                prefix,
                delimiter="/",
                max_keys=self._settings.list_page_size,
                continuation_token=token,
            )
            prefixes.extend(page.prefixes)
            token = page.next_token
            if not token:
                return prefixes

    async def create_directory(self, prefix: str, name: str) -> str:
        service = self._require_connection()
        key = compose_s3_key(prefix, validate_directory_name(name)) + "/"
        await service.put_object(key, b"")
        LOGGER.info("Created directory marker '%s'", key)
        return key

    async def preview_object(self, key: str) -> ObjectPreview:
        """Fetch ``key`` for preview.

        Image extensions come back as raw bytes; anything else is decoded
        as UTF-8 text and cut at ``preview_text_max_bytes``.
        """

        service = self._require_connection()
        body = await service.get_object(key)
        extension = base_name(key).rpartition(".")[2].lower()
        if extension in IMAGE_PREVIEW_EXTENSIONS:
            return ObjectPreview(
                key=key,
                content_type="image/svg+xml" if extension == "svg" else body.content_type,
                kind="image",
                data=body.body,
            )
        limit = self._settings.preview_text_max_bytes
        truncated = len(body.body) > limit
        return ObjectPreview(
            key=key,
            text=body.body[:limit].decode("utf-8", errors="replace"),
            content_type=body.content_type,
            truncated=truncated,
        )

    async def object_details(self, key: str) -> ObjectDetails:
        service = self._require_connection()
        return await service.get_object_details(key)

    async def delete_selection(self, sink: Optional[ProgressSink] = None) -> BulkOperation:
        """Delete the selected objects, or every object under the selected prefixes."""

        self._require_connection()
        if self.selection.is_empty:
            raise ValueError("Nothing selected")
        if self.selection.is_mixed:
            raise ValueError("Mixed selection detected. Please delete objects and directories separately.")
        if self.selection.has_prefixes:
            operation = await self._delete_engine.delete_prefixes(self.selection.prefixes, sink)
        else:
            operation = await self._delete_engine.delete_keys(self.selection.keys, sink)
        self.selection.clear()
        return operation

    async def delete_prefix(self, prefix: str, sink: Optional[ProgressSink] = None) -> BulkOperation:
        self._require_connection()
        return await self._delete_engine.delete_prefix(prefix, sink)

    async def retry_delete(self, operation: BulkOperation, sink: Optional[ProgressSink] = None) -> BulkOperation:
        self._require_connection()
        return await self._delete_engine.retry(operation, sink)

    async def preflight_move(self, destination_prefix: str) -> list[MoveConflict]:
        self._require_connection()
        return await self._move_engine.preflight(self._movable_keys(), normalize_prefix(destination_prefix))

    async def move_selection(self, destination_prefix: str, sink: Optional[ProgressSink] = None) -> BulkOperation:
        self._require_connection()
        operation = await self._move_engine.move(
            self._movable_keys(),
            normalize_prefix(destination_prefix),
            sink,
        )
        self.selection.clear()
        return operation

    async def retry_move(self, operation: BulkOperation, sink: Optional[ProgressSink] = None) -> BulkOperation:
        self._require_connection()
        return await self._move_engine.retry(operation, sink)

    async def download_selection(self, sink: Optional[ProgressSink] = None) -> ArchiveJob:
        self._require_connection()
        job = await self._archive_engine.download(self.selection.keys, self.selection.prefixes, sink)
        if job.artifact is not None:
            self.selection.clear()
        return job

    async def retry_download(self, job: ArchiveJob, sink: Optional[ProgressSink] = None) -> ArchiveJob:
        self._require_connection()
        job = await self._archive_engine.retry(job, sink)
        if job.artifact is not None:
            self.selection.clear()
        return job

    async def upload_files(
        self,
        source_paths: Iterable[str],
        prefix: str = "",
        *,
        progress_callback: Optional[Callable[[UploadOperation], None]] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
    ) -> list[UploadOperation]:
        """Upload local files under ``prefix``; failures stay on each operation."""

        service = self._require_connection()
        operations = [
            UploadOperation(key=compose_s3_key(prefix, _file_name(path)), source_path=path)
            for path in source_paths
        ]
        return await self._upload_all(service, operations, progress_callback, cancel_requested)

    async def upload_directory(
        self,
        local_dir: str | Path,
        prefix: str = "",
        *,
        confirm_large_upload: Optional[Callable[[int], bool]] = None,
        progress_callback: Optional[Callable[[UploadOperation], None]] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
    ) -> list[UploadOperation]:
        """Upload every file below ``local_dir``, keeping the folder layout.

        Keys are ``prefix + <folder name>/<path inside the folder>``. With
        more than :data:`LARGE_UPLOAD_FILE_COUNT` files,
        ``confirm_large_upload(count)`` is asked first and a refusal uploads
        nothing.
        """

        service = self._require_connection()
        root = Path(local_dir).resolve()
        if not root.is_dir():
            raise ValueError(f"'{local_dir}' is not a directory")
        files = sorted(path for path in root.rglob("*") if path.is_file())
        if len(files) > LARGE_UPLOAD_FILE_COUNT and confirm_large_upload is not None:
            if not confirm_large_upload(len(files)):
                LOGGER.info("Upload of %d file(s) from '%s' declined", len(files), root)
                return []
        operations = [
            UploadOperation(
                key=compose_s3_key(prefix, f"{root.name}/{path.relative_to(root).as_posix()}"),
                source_path=str(path),
            )
            for path in files
        ]
        LOGGER.info("Uploading %d file(s) from '%s'", len(operations), root)
        return await self._upload_all(service, operations, progress_callback, cancel_requested)

    async def _upload_all(
        self,
        service: BucketService,
        operations: list[UploadOperation],
        progress_callback: Optional[Callable[[UploadOperation], None]],
        cancel_requested: Optional[Callable[[], bool]],
    ) -> list[UploadOperation]:
        async def _upload(operation: UploadOperation) -> UploadOperation:
            return await service.upload_file(
                operation,
                multipart_threshold=self._settings.upload_multipart_threshold,
                multipart_chunk_size=self._settings.upload_chunk_size,
                max_concurrency=self._settings.upload_max_concurrency,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )

        result = await WorkerPool(self._settings.worker_concurrency).run(operations, _upload)
        for operation, exc in result.failed:
            LOGGER.warning("Upload of '%s' ended as %s: %s", operation.key, operation.status.value, exc)
        return operations

    def _bind(self, service: BucketService) -> None:
        settings = self._settings
        self._service = service
        self._enumerator = KeyEnumerator(service, page_size=settings.list_page_size)
        self._delete_engine = BulkDeleteEngine(
            service,
            self._enumerator,
            batch_size=settings.delete_batch_size,
        )
        self._move_engine = BulkMoveEngine(service, concurrency=settings.worker_concurrency)
        self._archive_engine = ArchiveDownloadEngine(
            service,
            self._enumerator,
            concurrency=settings.download_concurrency,
            sink_factory=lambda: ZipArchiveSink(settings.archive_compression_level),
        )

    def _movable_keys(self) -> list[str]:
        if self.selection.has_prefixes:
            raise ValueError("Directories cannot be moved; select objects only.")
        if self.selection.is_empty:
            raise ValueError("Nothing selected")
        return self.selection.keys

    def _require_connection(self) -> BucketService:
        if self._service is None:
            raise NotConnectedError("Not connected to S3")
        return self._service

    def _upsert_profile(self, profile: ConnectionProfile) -> None:
        for idx, existing in enumerate(self._profiles):
            if existing.name == profile.name:
                self._profiles[idx] = profile
                break
        else:
            self._profiles.append(profile)

    def _persist_profiles(self) -> None:
        self._storage.save(self._profiles)


def _file_name(path: str) -> str:
    return path.replace("\\", "/").rsplit("/", 1)[-1]
