from __future__ import annotations
"""Data models shared by the bulk operation engines."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional


@dataclass
class ListPage:
    """A single page returned by the backend listing call."""

    keys: list[str] = field(default_factory=list)
    prefixes: list[str] = field(default_factory=list)
    next_token: Optional[str] = None


@dataclass
class ObjectSummary:
    key: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None


@dataclass
class PrefixListing:
    """Represents one browse page under a prefix."""

    prefix: str = ""
    objects: list[ObjectSummary] = field(default_factory=list)
    prefixes: list[str] = field(default_factory=list)
    next_token: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.next_token is not None


@dataclass
class ObjectBody:
    key: str
    body: bytes
    content_type: str = "application/octet-stream"


@dataclass
class ObjectDetails:
    """Metadata about a single S3 object."""

    bucket: str
    key: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None
    storage_class: Optional[str] = None
    etag: Optional[str] = None
    content_type: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class ObjectPreview:
    """Text or image preview of one object; images carry the raw bytes."""

    key: str
    text: str = ""
    content_type: str = ""
    truncated: bool = False
    kind: str = "text"
    data: bytes = b""


class BulkStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PARTIALLY_FAILED = "partially_failed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class BulkFailure:
    """One item that could not be processed by a bulk operation."""

    key: str
    code: str
    message: str = ""
    destination_key: Optional[str] = None
    phase: Optional[str] = None


@dataclass
class BulkOperation:
    """Progress and failure record for one bulk delete, move or download.

    The handle is returned to the caller and owned by it; engines keep no
    reference once the call that created it has returned.
    """

    kind: str
    items_total: int = 0
    items_done: int = 0
    failures: list[BulkFailure] = field(default_factory=list)
    status: BulkStatus = BulkStatus.PENDING
    destination_prefix: Optional[str] = None

    @property
    def failed_keys(self) -> list[str]:
        return [failure.key for failure in self.failures]

    @property
    def succeeded_count(self) -> int:
        return max(self.items_done - len(self.failures), 0)

    @property
    def is_finished(self) -> bool:
        return self.status in (
            BulkStatus.COMPLETED,
            BulkStatus.PARTIALLY_FAILED,
            BulkStatus.CANCELLED,
        )

    def start(self, total: int) -> None:
        self.items_total = total
        self.items_done = 0
        self.failures = []
        if self.status is not BulkStatus.CANCELLED:
            self.status = BulkStatus.RUNNING

    def advance(self, count: int = 1) -> None:
        self.items_done = min(self.items_done + count, self.items_total)

    def record_failure(self, failure: BulkFailure) -> None:
        self.failures.append(failure)

    def finish(self) -> BulkStatus:
        # A dismissed operation stays dismissed even if its workers finish later.
        if self.status is not BulkStatus.CANCELLED:
            self.status = BulkStatus.PARTIALLY_FAILED if self.failures else BulkStatus.COMPLETED
        return self.status

    def dismiss(self) -> None:
        self.status = BulkStatus.CANCELLED


@dataclass
class MoveConflict:
    """A destination the move would overwrite.

    ``reason`` is ``exists`` when the key was already stored at preflight
    time and ``duplicate`` when several selected sources share it.
    """

    destination_key: str
    source_key: Optional[str] = None
    reason: str = "exists"


class UploadStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass
class UploadOperation:
    key: str
    source_path: str
    total_bytes: int = 0
    transferred_bytes: int = 0
    status: UploadStatus = UploadStatus.QUEUED
    error: Optional[str] = None


@dataclass
class DownloadArtifact:
    """The single file handed to the download trigger."""

    filename: str
    body: bytes
    content_type: str = "application/octet-stream"
    is_archive: bool = False

    def write_to(self, destination: str | Path) -> Path:
        path = Path(destination)
        if path.is_dir():
            path = path / self.filename
        path.write_bytes(self.body)
        return path


@dataclass
class ArchiveJob:
    """Handle for one multi-object download, kept alive across retries."""

    operation: BulkOperation
    keys: list[str] = field(default_factory=list)
    sink: Optional[object] = None
    artifact: Optional[DownloadArtifact] = None


ProgressFn = Callable[[int, int], None]
FailureFn = Callable[[BulkFailure], None]
FinishedFn = Callable[[BulkStatus, str], None]


@dataclass
class ProgressSink:
    """Push-only notifications from an engine to whoever displays progress.

    Engines mutate the operation first and notify afterwards, so a callback
    always observes the state it is being told about.
    """

    on_progress: Optional[ProgressFn] = None
    on_item_failure: Optional[FailureFn] = None
    on_finished: Optional[FinishedFn] = None

    def progress(self, operation: BulkOperation) -> None:
        if self.on_progress:
            self.on_progress(operation.items_done, operation.items_total)

    def item_failed(self, failure: BulkFailure) -> None:
        if self.on_item_failure:
            self.on_item_failure(failure)

    def finished(self, operation: BulkOperation, summary: str) -> None:
        if self.on_finished:
            self.on_finished(operation.status, summary)
