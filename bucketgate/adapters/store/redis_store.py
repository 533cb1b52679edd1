"""Redis-backed bucket state store.

The conditional write is an optimistic ``WATCH``/``MULTI``/``EXEC`` sequence:
Redis aborts the transaction when any other client touches the watched key
between the observation and ``EXEC``, which gives compare-and-swap semantics
over a single combined state key.
"""

from __future__ import annotations

import logging
import time

import redis
from redis.exceptions import RedisError, WatchError

from bucketgate.adapters.store.base import AbstractBucketStateStore
from bucketgate.core.errors import CorruptStateError, StoreUnavailableError

logger = logging.getLogger(__name__)


def _as_text(value: str | bytes | None) -> str | None:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


def _corrupt(key: str) -> CorruptStateError:
    return CorruptStateError(
        code="corrupt_bucket_state",
        message="Stored bucket state is not valid UTF-8",
        details={"key": key},
    )


class RedisBucketStateStore(AbstractBucketStateStore):
    """Shared store over a ``redis.Redis`` client.

    Every process pointed at the same Redis database shares bucket state.
    Socket timeouts are part of the client configuration; a timed-out call
    surfaces as ``StoreUnavailableError`` and is not retried here.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        state_ttl_seconds: int | None = None,
        use_server_time: bool = True,
    ) -> None:
        """Initialize the adapter.

        Args:
            client: Connected (or lazily connecting) Redis client.
            state_ttl_seconds: Optional expiry applied on every write so idle
                client state is evicted by Redis.
            use_server_time: Read the clock with ``TIME`` so all processes
                share one time source; otherwise use the local clock.
        """
        self._client = client
        self._ttl_ms = state_ttl_seconds * 1000 if state_ttl_seconds else None
        self._use_server_time = use_server_time

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        socket_timeout_seconds: float | None = None,
        state_ttl_seconds: int | None = None,
        use_server_time: bool = True,
    ) -> RedisBucketStateStore:
        """Build a store from a ``redis://`` URL."""

        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout_seconds,
            socket_connect_timeout=socket_timeout_seconds,
        )
        return cls(
            client,
            state_ttl_seconds=state_ttl_seconds,
            use_server_time=use_server_time,
        )

    def now(self) -> int:
        if not self._use_server_time:
            return int(time.time() * 1000)
        try:
            seconds, micros = self._client.time()
        except RedisError as exc:
            raise self._unavailable("time", exc) from exc
        return int(seconds) * 1000 + int(micros) // 1000

    def read(self, key: str) -> str | None:
        try:
            return _as_text(self._client.get(key))
        except UnicodeDecodeError as exc:
            raise _corrupt(key) from exc
        except RedisError as exc:
            raise self._unavailable("read", exc, key=key) from exc

    def conditional_write(self, key: str, expected_prior: str | None, new_value: str) -> bool:
        try:
            with self._client.pipeline() as pipe:
                pipe.watch(key)
                current = _as_text(pipe.get(key))
                if current != expected_prior:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, new_value, px=self._ttl_ms)
                pipe.execute()
                return True
        except WatchError:
            return False
        except UnicodeDecodeError as exc:
            raise _corrupt(key) from exc
        except RedisError as exc:
            raise self._unavailable("conditional_write", exc, key=key) from exc

    def _unavailable(self, operation: str, exc: Exception, *, key: str | None = None) -> StoreUnavailableError:
        logger.error(
            "store.unavailable",
            extra={
                "backend": "redis",
                "operation": operation,
                "error_type": type(exc).__name__,
            },
        )
        details: dict = {"backend": "redis"}
        if key is not None:
            details["key"] = key
        return StoreUnavailableError(
            code="store_unavailable",
            message=f"Redis {operation} failed: {type(exc).__name__}",
            details=details,  # type: ignore[arg-type]
        )
