from __future__ import annotations
"""Batched bulk delete of keys and whole prefixes."""
import logging
from typing import Iterable, Optional

from .enumerator import KeyEnumerator
from .models import BulkFailure, BulkOperation, ProgressSink
from .services import MAX_DELETE_BATCH, BucketService, describe_error
from .ui_utils import summarize_operation

LOGGER = logging.getLogger(__name__)

BATCH_ERROR_CODE = "BatchError"


class BulkDeleteEngine:
    """Deletes key sets through the backend's multi-object delete call.

    Batches run one after another so request sizes stay bounded and the
    progress percentage only ever grows. Per-key and whole-batch failures
    are collected on the returned :class:`BulkOperation`; once a delete has
    started it never raises.
    """

    def __init__(
        self,
        service: BucketService,
        enumerator: KeyEnumerator,
        *,
        batch_size: int = MAX_DELETE_BATCH,
    ):
        if not 1 <= batch_size <= MAX_DELETE_BATCH:
            raise ValueError(f"batch_size must be between 1 and {MAX_DELETE_BATCH}")
        self._service = service
        self._enumerator = enumerator
        self._batch_size = batch_size

    async def delete_prefix(self, prefix: str, sink: Optional[ProgressSink] = None) -> BulkOperation:
        """Delete every object currently stored under ``prefix``.

        Raises :class:`~s3_bulkops.enumerator.EnumerationError` before any
        delete is issued if the prefix cannot be listed.
        """

        return await self.delete_prefixes([prefix], sink)

    async def delete_prefixes(self, prefixes: Iterable[str], sink: Optional[ProgressSink] = None) -> BulkOperation:
        keys: dict[str, None] = {}
        for prefix in prefixes:
            found = await self._enumerator.enumerate_under(prefix, include_marker=True)
            LOGGER.info("Deleting %d key(s) under '%s'", len(found), prefix)
            keys.update(dict.fromkeys(found))
        return await self.delete_keys(keys, sink)

    async def delete_keys(self, keys: Iterable[str], sink: Optional[ProgressSink] = None) -> BulkOperation:
        sink = sink or ProgressSink()
        batch_keys = list(dict.fromkeys(keys))
        operation = BulkOperation(kind="delete")
        operation.start(len(batch_keys))
        sink.progress(operation)

        for batch in self._batches(batch_keys):
            try:
                deleted, errors = await self._service.delete_objects(batch)
            except Exception as exc:
                code, message = describe_error(exc)
                LOGGER.warning("Delete batch of %d key(s) failed: %s %s", len(batch), code, message)
                errors = [
                    BulkFailure(key=key, code=BATCH_ERROR_CODE, message=message, phase="batch")
                    for key in batch
                ]
            else:
                LOGGER.debug("Delete batch removed %d of %d key(s)", len(deleted), len(batch))
            for failure in errors:
                operation.record_failure(failure)
            operation.advance(len(batch))
            for failure in errors:
                sink.item_failed(failure)
            sink.progress(operation)

        operation.finish()
        summary = summarize_operation(operation)
        LOGGER.info(summary)
        sink.finished(operation, summary)
        return operation

    async def retry(self, operation: BulkOperation, sink: Optional[ProgressSink] = None) -> BulkOperation:
        """Resubmit exactly the failed keys of ``operation`` as a new operation."""

        return await self.delete_keys(operation.failed_keys, sink)

    def _batches(self, keys: list[str]) -> Iterable[list[str]]:
        for start in range(0, len(keys), self._batch_size):
            yield keys[start:start + self._batch_size]
