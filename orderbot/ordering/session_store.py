# orderbot/ordering/session_store.py
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Protocol

from .cart import CartLine, copy_lines

logger = logging.getLogger(__name__)


def session_key(conversation_id: str, user_id: Optional[str]) -> str:
    return f"{conversation_id}_{user_id or 'unknown'}"


class SessionStore(Protocol):
    def get(self, key: str) -> List[CartLine]: ...

    def save(self, key: str, lines: List[CartLine]) -> None: ...

    def clear(self, key: str) -> None: ...

    def lock(self, key: str): ...


class _KeyLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.holders = 0


class InMemorySessionStore:
    """Conversation carts for a single process.

    Reads hand out copies and writes replace the whole list, so a caller can
    mutate what it got from ``get`` without touching the stored cart. The
    global lock only covers the dict operations; turns on the same key are
    serialized with ``lock(key)``. A key's lock is dropped once nobody holds
    it and its cart is gone. Nothing expires on its own.
    """

    def __init__(self) -> None:
        self._carts: Dict[str, List[CartLine]] = {}
        self._key_locks: Dict[str, _KeyLock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> List[CartLine]:
        with self._guard:
            lines = self._carts.get(key)
            return copy_lines(lines) if lines else []

    def save(self, key: str, lines: List[CartLine]) -> None:
        snapshot = copy_lines(lines or [])
        with self._guard:
            if snapshot:
                self._carts[key] = snapshot
            else:
                self._carts.pop(key, None)
                self._release_idle(key)
        logger.debug("session %s saved with %d line(s)", key, len(snapshot))

    def clear(self, key: str) -> None:
        with self._guard:
            self._carts.pop(key, None)
            self._release_idle(key)
        logger.debug("session %s cleared", key)

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if key not in self._carts:
                    self._release_idle(key)

    def _release_idle(self, key: str) -> None:
        # caller holds _guard
        entry = self._key_locks.get(key)
        if entry is not None and entry.holders == 0:
            del self._key_locks[key]
