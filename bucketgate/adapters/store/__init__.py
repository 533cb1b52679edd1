"""Bucket state store adapters.

The limiter depends only on ``AbstractBucketStateStore``; the concrete
backends below can be swapped without touching the admission logic.
"""

from bucketgate.adapters.store.base import AbstractBucketStateStore
from bucketgate.adapters.store.factory import create_state_store
from bucketgate.adapters.store.in_memory import InMemoryBucketStateStore
from bucketgate.adapters.store.redis_store import RedisBucketStateStore

__all__ = [
    "AbstractBucketStateStore",
    "InMemoryBucketStateStore",
    "RedisBucketStateStore",
    "create_state_store",
]
