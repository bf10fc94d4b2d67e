from __future__ import annotations
"""Selection of keys and directory-like prefixes that seeds bulk actions."""
from typing import Iterable

from .ui_utils import is_prefix


class SelectionModel:
    """Tracks the keys and prefixes the operator has selected.

    A selection holds strings only; prefixes are expanded by the engines at
    operation time, never cached here.
    """

    def __init__(self, items: Iterable[str] = ()):
        self._keys: dict[str, None] = {}
        self._prefixes: dict[str, None] = {}
        for item in items:
            self.add(item)

    def __len__(self) -> int:
        return len(self._keys) + len(self._prefixes)

    def __contains__(self, item: object) -> bool:
        return item in self._keys or item in self._prefixes

    @property
    def keys(self) -> list[str]:
        return list(self._keys)

    @property
    def prefixes(self) -> list[str]:
        return list(self._prefixes)

    @property
    def is_empty(self) -> bool:
        return not self._keys and not self._prefixes

    @property
    def has_prefixes(self) -> bool:
        return bool(self._prefixes)

    @property
    def is_mixed(self) -> bool:
        return bool(self._keys) and bool(self._prefixes)

    def add(self, item: str) -> None:
        if not item:
            raise ValueError("Selection entries cannot be empty")
        target = self._prefixes if is_prefix(item) else self._keys
        target[item] = None

    def discard(self, item: str) -> None:
        self._keys.pop(item, None)
        self._prefixes.pop(item, None)

    def toggle(self, item: str) -> bool:
        """Flip membership of ``item``; return whether it is now selected."""

        if item in self:
            self.discard(item)
            return False
        self.add(item)
        return True

    def select_all(self, items: Iterable[str]) -> None:
        for item in items:
            self.add(item)

    def clear(self) -> None:
        self._keys.clear()
        self._prefixes.clear()
