from __future__ import annotations
"""Expansion of directory-like prefixes into concrete object keys."""
import logging
from typing import Iterable

from botocore.exceptions import BotoCoreError, ClientError

from .services import BucketService, describe_error

LOGGER = logging.getLogger(__name__)

LIST_PAGE_SIZE = 1000


class EnumerationError(RuntimeError):
    """Raised when a prefix cannot be fully listed.

    The original backend error is available as ``__cause__``.
    """

    def __init__(self, prefix: str, code: str, message: str):
        super().__init__(f"Failed to enumerate keys under '{prefix}': {code} {message}".strip())
        self.prefix = prefix
        self.code = code
        self.message = message


class KeyEnumerator:
    """Turns a prefix into the flat list of keys currently stored under it."""

    def __init__(self, service: BucketService, *, page_size: int = LIST_PAGE_SIZE):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._service = service
        self._page_size = page_size

    async def enumerate_under(self, prefix: str, *, include_marker: bool = False) -> list[str]:
        """Return every key under ``prefix``, always fetched live.

        The zero-byte directory marker whose key equals ``prefix`` is left
        out unless ``include_marker`` is set (deleting a directory has to
        remove it too). Any failing page aborts the whole enumeration.
        """

        keys: dict[str, None] = {}
        token: str | None = None
        pages = 0
        while True:
            try:
                page = await self._service.list_objects(
                    prefix,
                    max_keys=self._page_size,
                    continuation_token=token,
                )
            except (ClientError, BotoCoreError) as exc:
                code, message = describe_error(exc)
                LOGGER.warning("Enumeration of '%s' failed after %d page(s): %s", prefix, pages, code)
                raise EnumerationError(prefix, code, message) from exc
            pages += 1
            for key in page.keys:
                if prefix and key == prefix and not include_marker:
                    continue
                keys[key] = None
            token = page.next_token
            if not token:
                break
        LOGGER.debug("Enumerated %d key(s) under '%s' in %d page(s)", len(keys), prefix, pages)
        return list(keys)

    async def expand(self, keys: Iterable[str], prefixes: Iterable[str] = ()) -> list[str]:
        """Union of direct ``keys`` and the expansion of ``prefixes``.

        Set semantics in first-seen order: a key selected directly and also
        found under a selected prefix appears once.
        """

        resolved: dict[str, None] = dict.fromkeys(keys)
        for prefix in prefixes:
            for key in await self.enumerate_under(prefix):
                resolved.setdefault(key, None)
        return list(resolved)
