# feed_enricher/logging_bridge.py
"""
Structured activity/error records for the enricher.

Records go to the service JSONL writer when `service.logging_utils` is
importable (CLI and watch mode). Library callers without it get stdlib
logging on `feed_enricher.activity` / `feed_enricher.error`.
"""

from __future__ import annotations

import logging
from typing import Any

try:
    from service import logging_utils as _sink
except ImportError:
    _sink = None

_MASK = "***REDACTED***"
_SECRET_KEYS = frozenset({
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "auth",
    "bearer",
    "cookie",
    "set-cookie",
})


def _is_secret(key: Any) -> bool:
    k = str(key).lower()
    return k in _SECRET_KEYS or k.endswith("_secret")


def scrub(record: dict[str, Any]) -> dict[str, Any]:
    """Copy of `record` with secret-like keys masked, including one nested `headers` dict."""
    out: dict[str, Any] = {}
    for key, value in record.items():
        if _is_secret(key):
            out[key] = _MASK
        elif str(key).lower() == "headers" and isinstance(value, dict):
            out[key] = {hk: (_MASK if _is_secret(hk) else hv) for hk, hv in value.items()}
        else:
            out[key] = value
    return out


def _emit(writer_name: str, logger_name: str, level: int, record: dict[str, Any]) -> None:
    payload = scrub(record)
    writer = getattr(_sink, writer_name, None)
    if writer is not None:
        try:
            writer(payload)
            return
        except OSError:
            logging.getLogger(__name__).debug("JSONL sink unavailable", exc_info=True)
    logging.getLogger(logger_name).log(level, payload)


def activity(record: dict[str, Any]) -> None:
    _emit("write_activity_log", "feed_enricher.activity", logging.INFO, record)


def error(record: dict[str, Any]) -> None:
    _emit("write_error_log", "feed_enricher.error", logging.ERROR, record)
