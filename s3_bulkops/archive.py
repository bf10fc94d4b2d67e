from __future__ import annotations
"""Multi-object download packed into a single zip artifact."""
import asyncio
import io
import logging
from typing import Callable, Iterable, Optional
import zipfile

from .enumerator import KeyEnumerator
from .models import (
    ArchiveJob,
    BulkFailure,
    BulkOperation,
    DownloadArtifact,
    ObjectBody,
    ProgressSink,
)
from .pool import DEFAULT_CONCURRENCY, WorkerPool
from .services import BucketService, describe_error
from .ui_utils import base_name, format_archive_name, format_size, summarize_operation

LOGGER = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"


class ArchiveFinalizeError(RuntimeError):
    """Raised when the archive cannot be produced; no partial archive is kept.

    ``job`` is the finished handle, which can be passed to
    :meth:`ArchiveDownloadEngine.retry`.
    """

    def __init__(self, message: str, job: ArchiveJob):
        super().__init__(message)
        self.job = job


class ZipArchiveSink:
    """Collects ``(name, bytes)`` entries and compresses them on finalize.

    Each insertion is a single dictionary assignment, so concurrent fetch
    tasks can add entries in any order. Adding a name twice keeps the last
    body.
    """

    def __init__(self, compression_level: int = 6):
        if not 0 <= compression_level <= 9:
            raise ValueError("compression_level must be between 0 and 9")
        self._compression_level = compression_level
        self._entries: dict[str, bytes] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    @property
    def names(self) -> list[str]:
        return list(self._entries)

    def add(self, name: str, data: bytes) -> None:
        self._entries[name] = data

    def finalize(self) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(
            buffer,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=self._compression_level,
        ) as archive:
            for name, data in self._entries.items():
                archive.writestr(name, data)
        return buffer.getvalue()


class ArchiveDownloadEngine:
    """Fetches a selection concurrently and hands back one downloadable file."""

    def __init__(
        self,
        service: BucketService,
        enumerator: KeyEnumerator,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        sink_factory: Callable[[], ZipArchiveSink] = ZipArchiveSink,
        archive_name: Callable[[], str] = format_archive_name,
    ):
        self._service = service
        self._enumerator = enumerator
        self._pool = WorkerPool(concurrency)
        self._sink_factory = sink_factory
        self._archive_name = archive_name

    async def download(
        self,
        keys: Iterable[str],
        prefixes: Iterable[str] = (),
        sink: Optional[ProgressSink] = None,
    ) -> ArchiveJob:
        """Resolve the selection and fetch it.

        A selection that resolves to exactly one key yields the raw object.
        If any fetch fails the job is returned without an artifact and can be
        passed to :meth:`retry`.
        """

        resolved = await self._enumerator.expand(keys, prefixes)
        if not resolved:
            raise ValueError("Nothing to download.")
        job = ArchiveJob(operation=BulkOperation(kind="download"), keys=resolved)
        if len(resolved) > 1:
            job.sink = self._sink_factory()
        LOGGER.info("Downloading %d key(s)", len(resolved))
        return await self._fetch(job, resolved, sink or ProgressSink())

    async def retry(self, job: ArchiveJob, sink: Optional[ProgressSink] = None) -> ArchiveJob:
        """Fetch the failed keys again into the same archive sink.

        After a failed finalize every key is marked failed and the archive
        is rebuilt from scratch.
        """

        if job.artifact is not None or not job.operation.failures:
            return job
        if job.sink is None and len(job.keys) > 1:
            job.sink = self._sink_factory()
        return await self._fetch(job, job.operation.failed_keys, sink or ProgressSink())

    async def _fetch(self, job: ArchiveJob, keys: list[str], sink: ProgressSink) -> ArchiveJob:
        operation = job.operation
        operation.start(len(job.keys))
        # Keys fetched by earlier passes already count as done.
        operation.advance(len(job.keys) - len(keys))
        sink.progress(operation)
        bodies: dict[str, ObjectBody] = {}

        async def _fetch_one(key: str) -> None:
            try:
                body = await self._service.get_object(key)
            except Exception as exc:
                code, message = describe_error(exc)
                failure = BulkFailure(key=key, code=code, message=message)
                operation.record_failure(failure)
                sink.item_failed(failure)
                raise
            if job.sink is not None:
                job.sink.add(key, body.body)
            else:
                bodies[key] = body

        def _settled(key: str) -> None:
            operation.advance()
            sink.progress(operation)

        await self._pool.run(keys, _fetch_one, on_settled=_settled)

        if operation.failures:
            operation.finish()
            summary = summarize_operation(operation)
            LOGGER.warning(summary)
            sink.finished(operation, summary)
            return job

        if job.sink is None:
            body = bodies[job.keys[0]]
            job.artifact = DownloadArtifact(
                filename=base_name(body.key) or "download",
                body=body.body,
                content_type=body.content_type,
            )
        else:
            job.artifact = await self._finalize(job, sink)
        operation.finish()
        summary = summarize_operation(operation)
        LOGGER.info(summary)
        sink.finished(operation, summary)
        return job

    async def _finalize(self, job: ArchiveJob, sink: ProgressSink) -> DownloadArtifact:
        try:
            # Compression runs off the loop thread so the caller stays responsive.
            blob = await asyncio.to_thread(job.sink.finalize)
        except Exception as exc:
            LOGGER.exception("Archive finalize failed for %d entries", len(job.sink))
            job.sink = None
            operation = job.operation
            code, message = describe_error(exc)
            for key in job.keys:
                operation.record_failure(BulkFailure(key=key, code=code, message=message, phase="finalize"))
            operation.finish()
            sink.finished(operation, summarize_operation(operation))
            raise ArchiveFinalizeError(f"Archive creation failed: {exc}", job) from exc
        filename = self._archive_name()
        LOGGER.info("Archive %s ready (%s)", filename, format_size(len(blob)))
        return DownloadArtifact(
            filename=filename,
            body=blob,
            content_type=ZIP_CONTENT_TYPE,
            is_archive=True,
        )
