"""Bucket state record, its single-string encoding, and decision results."""

from __future__ import annotations

import math
from dataclasses import dataclass

from bucketgate.core.errors import CorruptStateError

DEFAULT_KEY_PREFIX = "rate_limit"

_SEPARATOR = ":"


def state_key(client_id: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """Return the store key holding the combined state for ``client_id``."""

    return f"{prefix}:{client_id}:state"


@dataclass(frozen=True)
class BucketState:
    """Per-client token bucket state.

    Both fields live in one encoded value under one key so a single
    conditional write covers them together.

    Attributes:
        tokens: Real-valued tokens currently available, in ``[0, capacity]``.
        last_refill_at_ms: Epoch milliseconds when this state was computed.
    """

    tokens: float
    last_refill_at_ms: int

    @classmethod
    def full(cls, capacity: int, now_ms: int) -> BucketState:
        """Build the initial state for a client that has never been seen."""

        return cls(tokens=float(capacity), last_refill_at_ms=now_ms)

    def encode(self) -> str:
        """Serialize to ``"<tokens>:<last_refill_at_ms>"``.

        ``repr`` keeps the shortest string that round-trips the float exactly.
        """

        return f"{float(self.tokens)!r}{_SEPARATOR}{int(self.last_refill_at_ms)}"

    @classmethod
    def decode(cls, raw: str) -> BucketState:
        """Parse a value previously produced by :meth:`encode`.

        Args:
            raw: Encoded state string read from the store.

        Returns:
            The decoded state.

        Raises:
            CorruptStateError: If the value is malformed or out of range.
        """

        tokens_text, sep, refill_text = raw.partition(_SEPARATOR)
        try:
            if not sep:
                raise ValueError("missing separator")
            tokens = float(tokens_text)
            last_refill_at_ms = int(refill_text)
        except ValueError as exc:
            raise CorruptStateError(
                code="corrupt_bucket_state",
                message="Stored bucket state could not be decoded",
                details={"raw_value": raw[:64]},
            ) from exc

        if not math.isfinite(tokens) or tokens < 0:
            raise CorruptStateError(
                code="corrupt_bucket_state",
                message="Stored bucket state has an invalid token balance",
                details={"raw_value": raw[:64], "field": "tokens"},
            )

        return cls(tokens=tokens, last_refill_at_ms=last_refill_at_ms)


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of one admission check.

    Attributes:
        allowed: Whether the unit of work may proceed.
        limit: Bucket capacity.
        remaining: Real-valued token balance left after the decision.
        retry_after_seconds: Time until one whole token accrues (None when allowed).
    """

    allowed: bool
    limit: int
    remaining: float
    retry_after_seconds: float | None
