"""In-memory bucket state store.

Notes:
- Per-process only: separate processes each see their own dict, so this is
  meant for tests and single-process deployments.
- Thread-safe: the compare and the write happen under one lock.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from bucketgate.adapters.store.base import AbstractBucketStateStore


class InMemoryBucketStateStore(AbstractBucketStateStore):
    """Dict-backed store with an atomic compare-and-swap."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._values: dict[str, str] = {}

    def now(self) -> int:
        return int(self._clock() * 1000)

    def read(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def conditional_write(self, key: str, expected_prior: str | None, new_value: str) -> bool:
        with self._lock:
            if self._values.get(key) != expected_prior:
                return False
            self._values[key] = new_value
            return True

    def clear(self) -> None:
        """Drop every stored value."""

        with self._lock:
            self._values.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
