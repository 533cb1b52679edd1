"""Bucket state store interface.

The limiter depends on this abstraction (not a concrete backend) so the same
admission logic runs against an in-process dict in tests and a shared Redis
in production.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AbstractBucketStateStore(ABC):
    """Shared, concurrently accessible key-value capability."""

    @abstractmethod
    def now(self) -> int:
        """Return the current time in epoch milliseconds.

        Raises:
            StoreUnavailableError: If a store-provided clock cannot be read.
        """
        raise NotImplementedError

    @abstractmethod
    def read(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None when absent.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    def conditional_write(self, key: str, expected_prior: str | None, new_value: str) -> bool:
        """Write ``new_value`` only if ``key`` still holds ``expected_prior``.

        Args:
            key: Store key.
            expected_prior: Value observed earlier, or None meaning "absent".
            new_value: Value to store.

        Returns:
            True when applied; False, with no side effect, when the stored
            value changed since it was observed.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        raise NotImplementedError
