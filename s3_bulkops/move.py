from __future__ import annotations
"""Bulk move implemented as copy-then-delete per key."""
import logging
from typing import Iterable, Optional

from .models import BulkFailure, BulkOperation, MoveConflict, ProgressSink
from .pool import DEFAULT_CONCURRENCY, WorkerPool
from .services import BucketService, describe_error
from .ui_utils import base_name, summarize_operation

LOGGER = logging.getLogger(__name__)


class MoveStepError(RuntimeError):
    """Wraps the backend error of the copy or delete step of one move."""

    def __init__(self, phase: str, cause: Exception):
        super().__init__(f"{phase} failed: {cause}")
        self.phase = phase
        self.cause = cause


class BulkMoveEngine:
    """Moves keys into a destination prefix, one copy and one delete per key.

    A source is deleted only after its copy succeeded. If the delete then
    fails the object exists in both places; that is recorded as a failure
    and the copy is left alone.
    """

    def __init__(self, service: BucketService, *, concurrency: int = DEFAULT_CONCURRENCY):
        self._service = service
        self._pool = WorkerPool(concurrency)

    @staticmethod
    def destination_key(source_key: str, destination_prefix: str) -> str:
        return f"{destination_prefix or ''}{base_name(source_key)}"

    async def preflight(self, keys: Iterable[str], destination_prefix: str) -> list[MoveConflict]:
        """Report destinations the move would overwrite.

        A destination is reported when it already exists, and once per
        source when several selected sources share a base name. Advisory
        only: nothing is reserved, and another writer may create or remove a
        destination between this check and the move itself.
        """

        sources_by_destination: dict[str, list[str]] = {}
        for key in dict.fromkeys(keys):
            destination_key = self.destination_key(key, destination_prefix)
            if destination_key != key:
                sources_by_destination.setdefault(destination_key, []).append(key)

        result = await self._pool.run(list(sources_by_destination), self._service.head_object)
        for destination_key, exc in result.failed:
            LOGGER.warning("Preflight check for '%s' failed, not reported as conflict: %s", destination_key, exc)
        existing = {destination_key for destination_key, exists in result.succeeded if exists}

        # Reported in selection order, whatever order the checks completed in.
        conflicts: list[MoveConflict] = []
        for destination_key, sources in sources_by_destination.items():
            if destination_key in existing:
                conflicts.append(MoveConflict(destination_key=destination_key, source_key=sources[0]))
            if len(sources) > 1:
                conflicts.extend(
                    MoveConflict(destination_key=destination_key, source_key=source_key, reason="duplicate")
                    for source_key in sources
                )
        return conflicts

    async def move(
        self,
        keys: Iterable[str],
        destination_prefix: str,
        sink: Optional[ProgressSink] = None,
    ) -> BulkOperation:
        sink = sink or ProgressSink()
        sources = list(dict.fromkeys(keys))
        operation = BulkOperation(kind="move", destination_prefix=destination_prefix or "")
        operation.start(len(sources))
        sink.progress(operation)
        LOGGER.info("Moving %d key(s) to '%s'", len(sources), destination_prefix)

        async def _move_one(source_key: str) -> str:
            destination_key = self.destination_key(source_key, destination_prefix)
            if destination_key == source_key:
                return destination_key
            try:
                await self._service.copy_object(source_key, destination_key)
            except Exception as exc:
                raise MoveStepError("copy", exc) from exc
            try:
                await self._service.delete_object(source_key)
            except Exception as exc:
                raise MoveStepError("delete", exc) from exc
            return destination_key

        def _settled(source_key: str) -> None:
            operation.advance()
            sink.progress(operation)

        async def _tracked(source_key: str) -> str:
            try:
                return await _move_one(source_key)
            except MoveStepError as exc:
                failure = self._failure(source_key, destination_prefix, exc)
                operation.record_failure(failure)
                sink.item_failed(failure)
                raise

        result = await self._pool.run(sources, _tracked, on_settled=_settled)
        LOGGER.debug("Move finished: %d moved, %d failed", len(result.succeeded), len(result.failed))

        operation.finish()
        summary = summarize_operation(operation)
        LOGGER.info(summary)
        sink.finished(operation, summary)
        return operation

    async def retry(self, operation: BulkOperation, sink: Optional[ProgressSink] = None) -> BulkOperation:
        """Move the failed sources of ``operation`` again, to the same prefix."""

        return await self.move(operation.failed_keys, operation.destination_prefix or "", sink)

    def _failure(self, source_key: str, destination_prefix: str, exc: MoveStepError) -> BulkFailure:
        code, message = describe_error(exc.cause)
        if exc.phase == "delete":
            message = f"Copied but source not deleted: {message}"
        LOGGER.warning("Move of '%s' failed during %s: %s", source_key, exc.phase, code)
        return BulkFailure(
            key=source_key,
            code=code,
            message=message,
            destination_key=self.destination_key(source_key, destination_prefix),
            phase=exc.phase,
        )
