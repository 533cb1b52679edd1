"""Factory for creating bucket state stores from configuration."""

from bucketgate.adapters.store.base import AbstractBucketStateStore
from bucketgate.adapters.store.in_memory import InMemoryBucketStateStore
from bucketgate.adapters.store.redis_store import RedisBucketStateStore
from bucketgate.core.config import StoreSettings, settings
from bucketgate.core.errors import InvalidConfigurationError


def create_state_store(store_settings: StoreSettings | None = None) -> AbstractBucketStateStore:
    """Instantiate the configured state store backend.

    Args:
        store_settings: Store settings; defaults to the global settings.

    Returns:
        AbstractBucketStateStore: Ready-to-use store adapter.

    Raises:
        InvalidConfigurationError: If the backend name is not supported.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryBucketStateStore()

    if backend == "redis":
        return RedisBucketStateStore.from_url(
            cfg.redis_url,
            socket_timeout_seconds=cfg.socket_timeout_seconds,
            state_ttl_seconds=cfg.state_ttl_seconds,
            use_server_time=cfg.use_server_time,
        )

    raise InvalidConfigurationError(
        code="invalid_configuration",
        message=f"Unknown store backend: '{backend}'. Supported backends: memory, redis",
        details={"backend": backend},
    )
