"""Structured logging for the limiter.

Every admission check runs inside a correlation scope, so the events one
check emits (conflict retries, store failures, the final decision) carry the
same ``correlation_id``. Callers can bind their own id first (for example a
request id) and the limiter will reuse it instead of minting one.

Records are rendered as one JSON object per line, with sensitive extras
(raw client ids, store credentials) replaced by ``[REDACTED]``.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

from bucketgate.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "client_id",
        "password",
        "redis_url",
        "url",
        "token",
        "secret",
        "authorization",
        "raw_value",
    }
)

# Attributes every LogRecord carries; anything else arrived through extra=
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}

_correlation_id: ContextVar[str | None] = ContextVar("bucketgate_correlation_id", default=None)


def current_correlation_id() -> str | None:
    """Return the id bound to the current context, if any."""

    return _correlation_id.get()


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the block.

    An id already bound by an enclosing scope is kept, so a caller's id
    spans every check it makes.

    Args:
        correlation_id: Id to bind; a short random id is generated when omitted.

    Yields:
        The id in effect inside the block.
    """

    existing = _correlation_id.get()
    if existing is not None:
        yield existing
        return

    bound = correlation_id or uuid.uuid4().hex[:12]
    token = _correlation_id.set(bound)
    try:
        yield bound
    finally:
        _correlation_id.reset(token)


def _redact(value: Any, sensitive_keys: frozenset[str]) -> Any:
    """Return ``value`` with sensitive mapping keys masked, recursively."""

    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in sensitive_keys else _redact(v, sensitive_keys)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(v, sensitive_keys) for v in value)
    return value


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class CorrelationIdFilter(logging.Filter):
    """Stamp records with the context's correlation id when they lack one."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        if getattr(record, "correlation_id", None) is None:
            correlation_id = current_correlation_id()
            if correlation_id is not None:
                record.correlation_id = correlation_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Mask sensitive extras in place so every downstream formatter is safe."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        masked = _redact(_extras(record), self.sensitive_keys)
        record.__dict__.update(masked)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: fixed envelope first, then extras."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))
        self.ensure_ascii = ensure_ascii

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_redact(_extras(record), self.sensitive_keys))

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output == "stdout":
        return logging.StreamHandler(sys.stdout)

    path = Path(log_settings.file_path or "logs/bucketgate.log")
    path.parent.mkdir(parents=True, exist_ok=True)
    if log_settings.max_bytes:
        return RotatingFileHandler(
            path,
            maxBytes=log_settings.max_bytes,
            backupCount=log_settings.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install a single root handler according to ``log_settings``.

    Args:
        log_settings: Optional log settings; defaults to the global settings.
    """

    cfg = log_settings or settings.log
    level = logging.getLevelName(cfg.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = _build_handler(cfg)
    handler.addFilter(CorrelationIdFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # redis-py logs connection churn at DEBUG
    logging.getLogger("redis").setLevel(max(level, logging.INFO))
