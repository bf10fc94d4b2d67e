from __future__ import annotations
"""Bounded-concurrency execution of independent per-item coroutines."""
import asyncio
from dataclasses import dataclass, field
import logging
from typing import Awaitable, Callable, Generic, Iterable, Optional, TypeVar

LOGGER = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class PoolResult(Generic[T, R]):
    succeeded: list[tuple[T, R]] = field(default_factory=list)
    failed: list[tuple[T, Exception]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)


class WorkerPool:
    """Runs a worker coroutine over items with a fixed number of tasks.

    Each task claims the next unclaimed item from a shared cursor until the
    cursor is exhausted. Claiming never awaits, so two tasks can never take
    the same item. An exception raised for one item is recorded and the task
    moves on; completion order is unspecified.
    """

    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency

    async def run(
        self,
        items: Iterable[T],
        worker: Callable[[T], Awaitable[R]],
        *,
        on_settled: Optional[Callable[[T], None]] = None,
    ) -> PoolResult[T, R]:
        pending = list(items)
        result: PoolResult[T, R] = PoolResult()
        if not pending:
            return result

        cursor = iter(pending)

        async def _drain() -> None:
            for item in cursor:
                try:
                    value = await worker(item)
                except Exception as exc:
                    LOGGER.debug("Worker failed for %r: %s", item, exc)
                    result.failed.append((item, exc))
                else:
                    result.succeeded.append((item, value))
                if on_settled:
                    on_settled(item)

        width = min(self.concurrency, len(pending))
        await asyncio.gather(*(_drain() for _ in range(width)))
        return result
