"""Distributed token-bucket admission control over a shared state store."""

from bucketgate.adapters.store import (
    AbstractBucketStateStore,
    InMemoryBucketStateStore,
    RedisBucketStateStore,
    create_state_store,
)
from bucketgate.core.errors import (
    AppError,
    ContentionError,
    CorruptStateError,
    InvalidConfigurationError,
    StoreUnavailableError,
    ValidationAppError,
)
from bucketgate.core.logging import configure_logging, correlation_scope
from bucketgate.schemas.bucket import BucketState, RateLimitDecision
from bucketgate.services.token_bucket import TokenBucketLimiter

__all__ = [
    "AbstractBucketStateStore",
    "AppError",
    "BucketState",
    "ContentionError",
    "CorruptStateError",
    "InMemoryBucketStateStore",
    "InvalidConfigurationError",
    "RateLimitDecision",
    "RedisBucketStateStore",
    "StoreUnavailableError",
    "TokenBucketLimiter",
    "ValidationAppError",
    "configure_logging",
    "correlation_scope",
    "create_state_store",
]
