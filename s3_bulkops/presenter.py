from __future__ import annotations
"""View-agnostic presenter that runs controller coroutines in the background."""
import asyncio
from dataclasses import replace
import logging
import threading
from typing import Awaitable, Callable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .controller import S3BulkController
from .models import (
    ArchiveJob,
    BulkFailure,
    BulkOperation,
    BulkStatus,
    ProgressSink,
    UploadOperation,
)
from .profiles import ConnectionProfile
from .settings import AppSettings, SettingsStorage
from .ui_utils import PackageInfo, categorize_error, load_package_info


DispatchFn = Callable[[Callable[[], None]], None]
ErrorFn = Callable[[str], None]
DoneFn = Callable[[], None]

LOGGER = logging.getLogger(__name__)


class OperationInProgressError(RuntimeError):
    """Raised when a bulk operation is started while another one is running."""


def _format_error(exc: Exception) -> str:
    return str(exc)


class S3BulkPresenter:
    """Runs background operations and returns results via callbacks.

    Every callback, including progress notifications, goes through
    ``dispatch`` so a view can marshal it onto its own thread. Only one bulk
    operation may run at a time; starting another raises
    :class:`OperationInProgressError`.
    """

    def __init__(
        self,
        *,
        controller: S3BulkController | None = None,
        settings_storage: SettingsStorage | None = None,
        dispatch: DispatchFn | None = None,
        background: Callable[[Callable[[], None]], None] | None = None,
    ) -> None:
        self._settings_storage = settings_storage or SettingsStorage()
        self._settings = self._settings_storage.load()
        self._controller = controller or S3BulkController(settings=self._settings)
        self._dispatch = dispatch or (lambda func: func())
        self._background = background or (
            lambda target: threading.Thread(target=target, daemon=True).start()
        )
        self._package_info = load_package_info()
        self._bulk_lock = threading.Lock()
        self._bulk_running = False

    @property
    def settings(self) -> AppSettings:
        return replace(self._settings)

    @property
    def package_info(self) -> PackageInfo:
        return self._package_info

    @property
    def is_connected(self) -> bool:
        return self._controller.is_connected

    @property
    def is_busy(self) -> bool:
        return self._bulk_running

    @property
    def selection(self):
        return self._controller.selection

    def save_settings(self, settings: AppSettings) -> None:
        self._settings = settings
        self._settings_storage.save(settings)
        self._controller.apply_settings(settings)

    def update_last_connection(self, connection: str) -> None:
        if not self._settings.remember_last_bucket:
            return
        self._settings = replace(self._settings, last_connection=connection or "")
        self._settings_storage.save(self._settings)

    def maybe_auto_connect_profile(self) -> str | None:
        if not self._settings.remember_last_bucket:
            return None
        return self._settings.last_connection or None

    def list_profiles(self) -> list[ConnectionProfile]:
        return self._controller.list_profiles()

    def save_profile(self, profile: ConnectionProfile, *, original_name: str | None = None) -> None:
        self._controller.save_profile(profile, original_name=original_name)

    def delete_profile(self, name: str) -> None:
        self._controller.delete_profile(name)

    def sign_out(self) -> None:
        LOGGER.debug("Signing out")
        self._controller.sign_out()

    def connect(
        self,
        *,
        profile_name: str,
        on_success: Callable[[str], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> None:
        LOGGER.debug("Connecting using profile '%s'", profile_name)

        def on_connected(bucket: str) -> None:
            self.update_last_connection(profile_name)
            on_success(bucket)

        self._run(
            f"connect '{profile_name}'",
            lambda: self._controller.connect_with_profile(profile_name),
            on_success=on_connected,
            on_error=on_error,
            on_done=on_done,
            format_error=categorize_error,
        )

    def list_prefix(self, *, prefix: str, continuation_token: str | None = None, on_success, on_error: ErrorFn) -> None:
        self._run(
            f"list '{prefix}'",
            lambda: self._controller.list_prefix(prefix, continuation_token),
            on_success=on_success,
            on_error=on_error,
        )

    def list_prefixes_only(self, *, prefix: str, on_success, on_error: ErrorFn) -> None:
        self._run(
            f"list prefixes of '{prefix}'",
            lambda: self._controller.list_prefixes_only(prefix),
            on_success=on_success,
            on_error=on_error,
        )

    def create_directory(self, *, prefix: str, name: str, on_success, on_error: ErrorFn) -> None:
        self._run(
            f"create directory '{name}'",
            lambda: self._controller.create_directory(prefix, name),
            on_success=on_success,
            on_error=on_error,
        )

    def preview_object(self, *, key: str, on_success, on_error: ErrorFn) -> None:
        self._run(
            f"preview '{key}'",
            lambda: self._controller.preview_object(key),
            on_success=on_success,
            on_error=on_error,
        )

    def object_details(self, *, key: str, on_success, on_error: ErrorFn) -> None:
        self._run(
            f"details of '{key}'",
            lambda: self._controller.object_details(key),
            on_success=on_success,
            on_error=on_error,
        )

    def preflight_move(self, *, destination_prefix: str, on_success, on_error: ErrorFn) -> None:
        self._run(
            f"preflight move to '{destination_prefix}'",
            lambda: self._controller.preflight_move(destination_prefix),
            on_success=on_success,
            on_error=on_error,
        )

    def delete_selection(self, **callbacks) -> None:
        self._run_bulk("delete", self._controller.delete_selection, **callbacks)

    def retry_delete(self, operation: BulkOperation, **callbacks) -> None:
        self._run_bulk("retry delete", lambda sink: self._controller.retry_delete(operation, sink), **callbacks)

    def move_selection(self, *, destination_prefix: str, **callbacks) -> None:
        self._run_bulk(
            "move",
            lambda sink: self._controller.move_selection(destination_prefix, sink),
            **callbacks,
        )

    def retry_move(self, operation: BulkOperation, **callbacks) -> None:
        self._run_bulk("retry move", lambda sink: self._controller.retry_move(operation, sink), **callbacks)

    def download_selection(self, **callbacks) -> None:
        self._run_bulk("download", self._controller.download_selection, **callbacks)

    def retry_download(self, job: ArchiveJob, **callbacks) -> None:
        self._run_bulk("retry download", lambda sink: self._controller.retry_download(job, sink), **callbacks)

    def upload_files(
        self,
        *,
        source_paths: list[str],
        prefix: str,
        on_progress: Callable[[UploadOperation], None] | None = None,
        cancel_requested: Callable[[], bool] | None = None,
        on_success: Callable[[list[UploadOperation]], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> None:
        progress_callback = None
        if on_progress:
            progress_callback = lambda operation: self._dispatch(lambda: on_progress(operation))
        self._run(
            f"upload {len(source_paths)} file(s)",
            lambda: self._controller.upload_files(
                source_paths,
                prefix,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            ),
            on_success=on_success,
            on_error=on_error,
            on_done=on_done,
        )

    def upload_directory(
        self,
        *,
        local_dir: str,
        prefix: str,
        confirm_large_upload: Callable[[int], bool] | None = None,
        on_progress: Callable[[UploadOperation], None] | None = None,
        cancel_requested: Callable[[], bool] | None = None,
        on_success: Callable[[list[UploadOperation]], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> None:
        """Upload a local folder; ``confirm_large_upload`` runs on the worker thread."""

        progress_callback = None
        if on_progress:
            progress_callback = lambda operation: self._dispatch(lambda: on_progress(operation))
        self._run(
            f"upload folder '{local_dir}'",
            lambda: self._controller.upload_directory(
                local_dir,
                prefix,
                confirm_large_upload=confirm_large_upload,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            ),
            on_success=on_success,
            on_error=on_error,
            on_done=on_done,
        )

    def _run_bulk(
        self,
        description: str,
        start: Callable[[ProgressSink], Awaitable[object]],
        *,
        on_success: Callable[[object], None],
        on_error: ErrorFn,
        on_progress: Optional[Callable[[int, int], None]] = None,
        on_item_failure: Optional[Callable[[BulkFailure], None]] = None,
        on_finished: Optional[Callable[[BulkStatus, str], None]] = None,
        on_done: DoneFn | None = None,
    ) -> None:
        with self._bulk_lock:
            if self._bulk_running:
                raise OperationInProgressError("Another bulk operation is still running")
            self._bulk_running = True

        sink = ProgressSink(
            on_progress=self._dispatched(on_progress),
            on_item_failure=self._dispatched(on_item_failure),
            on_finished=self._dispatched(on_finished),
        )

        def release() -> None:
            with self._bulk_lock:
                self._bulk_running = False
            if on_done:
                on_done()

        self._run(
            description,
            lambda: start(sink),
            on_success=on_success,
            on_error=on_error,
            on_done=release,
        )

    def _dispatched(self, callback):
        if callback is None:
            return None
        return lambda *args: self._dispatch(lambda: callback(*args))

    def _run(
        self,
        description: str,
        coroutine_factory: Callable[[], Awaitable[object]],
        *,
        on_success: Callable[[object], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
        format_error: Callable[[Exception], str] = _format_error,
    ) -> None:
        LOGGER.debug("Starting %s", description)

        def task() -> None:
            try:
                result = asyncio.run(coroutine_factory())
            except (BotoCoreError, ClientError) as exc:
                LOGGER.exception("S3 error during %s", description)
                message = format_error(exc)
                self._dispatch(lambda: on_error(message))
            except Exception as exc:
                LOGGER.exception("Unexpected error during %s", description)
                message = format_error(exc)
                self._dispatch(lambda: on_error(message))
            else:
                LOGGER.debug("Finished %s", description)
                self._dispatch(lambda: on_success(result))
            finally:
                if on_done:
                    self._dispatch(on_done)

        self._background(task)
