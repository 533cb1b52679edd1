"""Token bucket limiter over a shared, concurrently mutated state store.

Each admission check is one optimistic transaction against the client's
combined state key:

1. read the encoded state (absent means a full bucket as of now);
2. accrue real-valued tokens for the elapsed time, capped at capacity;
3. admit iff at least one whole token is available, and take it;
4. conditionally write the new state against the exact value read.

If the conditional write loses to another caller the whole cycle is repeated
from a fresh read, so no two callers can spend the same token. The limiter
keeps no per-client memory of its own and is safe to share across threads or
to rebuild per call.
"""

from __future__ import annotations

import hashlib
import logging
import math

from bucketgate.adapters.store.base import AbstractBucketStateStore
from bucketgate.core.errors import (
    ContentionError,
    InvalidConfigurationError,
    ValidationAppError,
)
from bucketgate.core.logging import correlation_scope
from bucketgate.schemas.bucket import (
    DEFAULT_KEY_PREFIX,
    BucketState,
    RateLimitDecision,
    state_key,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5


def _hash_client_id(client_id: str) -> str:
    """Hash the client id for logging without exposing it."""
    return hashlib.sha256(client_id.encode()).hexdigest()[:16]


def _invalid(field: str, message: str) -> InvalidConfigurationError:
    return InvalidConfigurationError(
        code="invalid_configuration",
        message=message,
        details={"field": field},
    )


class TokenBucketLimiter:
    """Distributed token bucket admission control.

    Attributes:
        capacity: Maximum tokens per bucket.
        refill_rate_per_second: Tokens accrued per elapsed second.
        max_retries: Conflict retries allowed after the first attempt.
    """

    def __init__(
        self,
        store: AbstractBucketStateStore,
        *,
        capacity: int,
        refill_rate_per_second: float,
        max_retries: int = DEFAULT_MAX_RETRIES,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Shared state store capability.
            capacity: Maximum tokens per bucket (positive integer).
            refill_rate_per_second: Tokens added per second (positive).
            max_retries: Bound on optimistic-conflict retries.
            key_prefix: Namespace for state keys.

        Raises:
            InvalidConfigurationError: If any parameter is out of range.
        """
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
            raise _invalid("capacity", "capacity must be a positive integer")
        if isinstance(refill_rate_per_second, bool) or not isinstance(refill_rate_per_second, (int, float)):
            raise _invalid("refill_rate_per_second", "refill_rate_per_second must be a number")
        if not math.isfinite(refill_rate_per_second) or refill_rate_per_second <= 0:
            raise _invalid("refill_rate_per_second", "refill_rate_per_second must be > 0")
        if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 1:
            raise _invalid("max_retries", "max_retries must be a positive integer")
        if not key_prefix:
            raise _invalid("key_prefix", "key_prefix must be a non-empty string")

        self.capacity = capacity
        self.refill_rate_per_second = float(refill_rate_per_second)
        self.max_retries = max_retries
        self._store = store
        self._key_prefix = key_prefix

    def is_allowed(self, client_id: str) -> bool:
        """Return True and consume one token if ``client_id`` may proceed now.

        Raises:
            ValidationAppError: If client_id is empty.
            StoreUnavailableError: If the store cannot be reached.
            ContentionError: If conflict retries are exhausted.
            CorruptStateError: If the stored state cannot be decoded.
        """

        return self.consume(client_id).allowed

    def consume(self, client_id: str) -> RateLimitDecision:
        """Run one atomic admission check for ``client_id``.

        A denied check still persists the refreshed balance and timestamp so
        accrued refill is recorded together with the decision.

        Args:
            client_id: Non-empty client identifier.

        Returns:
            RateLimitDecision describing the outcome.

        Raises:
            ValidationAppError: If client_id is empty.
            StoreUnavailableError: If the store cannot be reached.
            ContentionError: If conflict retries are exhausted.
            CorruptStateError: If the stored state cannot be decoded.
        """
        if not isinstance(client_id, str) or not client_id:
            raise ValidationAppError(
                code="invalid_client_id",
                message="client_id must be a non-empty string",
            )

        with correlation_scope() as correlation_id:
            return self._check(client_id, correlation_id)

    def _check(self, client_id: str, correlation_id: str) -> RateLimitDecision:
        key = state_key(client_id, self._key_prefix)
        client_hash = _hash_client_id(client_id)
        attempts = self.max_retries + 1

        for attempt in range(1, attempts + 1):
            raw = self._store.read(key)
            now_ms = self._store.now()
            prior = BucketState.full(self.capacity, now_ms) if raw is None else BucketState.decode(raw)

            updated, decision = self._apply(prior, now_ms)

            if self._store.conditional_write(key, raw, updated.encode()):
                self._log_decision(client_hash, correlation_id, decision, attempt)
                return decision

            logger.debug(
                "rate_limit.conflict",
                extra={
                    "client_hash": client_hash,
                    "correlation_id": correlation_id,
                    "attempt": attempt,
                    "max_attempts": attempts,
                },
            )

        logger.warning(
            "rate_limit.contention",
            extra={
                "client_hash": client_hash,
                "correlation_id": correlation_id,
                "attempts": attempts,
            },
        )
        raise ContentionError(
            code="rate_limit_contention",
            message=f"Gave up after {attempts} conflicting updates to the same bucket",
            details={"attempts": attempts},
        )

    def _apply(self, prior: BucketState, now_ms: int) -> tuple[BucketState, RateLimitDecision]:
        """Compute refill and the admission decision for one observed state."""

        elapsed_seconds = max(0, now_ms - prior.last_refill_at_ms) / 1000.0
        refilled = min(float(self.capacity), prior.tokens + elapsed_seconds * self.refill_rate_per_second)

        allowed = refilled >= 1.0
        tokens = refilled - 1.0 if allowed else refilled

        # A regressed clock must not move the timestamp backwards.
        updated = BucketState(
            tokens=tokens,
            last_refill_at_ms=max(now_ms, prior.last_refill_at_ms),
        )
        decision = RateLimitDecision(
            allowed=allowed,
            limit=self.capacity,
            remaining=tokens,
            retry_after_seconds=None if allowed else (1.0 - tokens) / self.refill_rate_per_second,
        )
        return updated, decision

    def _log_decision(
        self,
        client_hash: str,
        correlation_id: str,
        decision: RateLimitDecision,
        attempt: int,
    ) -> None:
        extra = {
            "client_hash": client_hash,
            "correlation_id": correlation_id,
            "limit": decision.limit,
            "remaining": round(decision.remaining, 3),
            "attempt": attempt,
        }
        if decision.allowed:
            logger.debug("rate_limit.allowed", extra=extra)
            return

        extra["retry_after_s"] = round(decision.retry_after_seconds or 0.0, 3)
        logger.info("rate_limit.denied", extra=extra)
