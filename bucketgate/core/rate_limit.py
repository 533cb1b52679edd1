"""Process-wide limiter wiring.

Builds a ``TokenBucketLimiter`` from settings and caches it in-module so
callers share one store connection pool. The limiter itself is stateless, so
rebuilding it on a settings change loses no bucket state.
"""

from __future__ import annotations

import logging

from bucketgate.adapters.store.base import AbstractBucketStateStore
from bucketgate.adapters.store.factory import create_state_store
from bucketgate.core.config import settings
from bucketgate.services.token_bucket import TokenBucketLimiter

logger = logging.getLogger(__name__)


_limiter: TokenBucketLimiter | None = None
_limiter_config: tuple | None = None


def _current_config() -> tuple:
    return (
        settings.limiter.capacity,
        settings.limiter.refill_rate_per_second,
        settings.limiter.max_retries,
        settings.limiter.key_prefix,
        settings.store.backend,
        settings.store.redis_url,
        settings.store.socket_timeout_seconds,
        settings.store.state_ttl_seconds,
        settings.store.use_server_time,
    )


def get_rate_limiter(store: AbstractBucketStateStore | None = None) -> TokenBucketLimiter:
    """Return a process-wide limiter instance.

    If configuration changes (primarily in tests), the limiter is rebuilt.

    Args:
        store: Optional store to use instead of the configured backend; an
            explicit store always yields a fresh, uncached limiter.

    Returns:
        TokenBucketLimiter: Configured limiter instance.
    """

    global _limiter, _limiter_config

    if store is not None:
        return _build_limiter(store)

    config = _current_config()
    if _limiter is None or _limiter_config != config:
        _limiter = _build_limiter(create_state_store(settings.store))
        _limiter_config = config
        logger.info(
            "rate_limit.configured",
            extra={
                "backend": settings.store.backend,
                "capacity": settings.limiter.capacity,
                "refill_rate_per_second": settings.limiter.refill_rate_per_second,
                "max_retries": settings.limiter.max_retries,
            },
        )

    return _limiter


def reset_rate_limiter() -> None:
    """Drop the cached limiter so the next call rebuilds it."""

    global _limiter, _limiter_config
    _limiter = None
    _limiter_config = None


def _build_limiter(store: AbstractBucketStateStore) -> TokenBucketLimiter:
    return TokenBucketLimiter(
        store,
        capacity=settings.limiter.capacity,
        refill_rate_per_second=settings.limiter.refill_rate_per_second,
        max_retries=settings.limiter.max_retries,
        key_prefix=settings.limiter.key_prefix,
    )
