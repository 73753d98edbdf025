# service/logging_utils.py
from __future__ import annotations

import contextlib
import datetime as _dt
import json
import logging
import os
import socket
from collections.abc import Iterable
from typing import Any

# Env is read per call so tests (and long-lived processes) can redirect logs:
#   LOG_DIR                 base directory (default /app/local/logs)
#   ACTIVITY_LOG_PREFIX     activity file prefix (default "activity")
#   ERROR_LOG_PREFIX        error file prefix (default "error")
#   ACTIVITY_LOG_MAX_BYTES  size-based rotation threshold; <=0 disables
#   LOG_DISABLE=1           drop structured records entirely

_REDACTED = "***REDACTED***"

# Case-insensitive substrings; a matching KEY has its value scrubbed.
_DEFAULT_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "cookie",
    "set-cookie",
}

_HOSTNAME = socket.gethostname()
_PID = os.getpid()


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Append one structured activity record as a JSON line.
    May raise on unrecoverable I/O/serialization errors; never mutates `record`.
    """
    _write_jsonl(_log_path_for_today(os.getenv("ACTIVITY_LOG_PREFIX", "activity")), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Same as write_activity_log, into the error file."""
    _write_jsonl(_log_path_for_today(os.getenv("ERROR_LOG_PREFIX", "error")), record)


def redact(record: dict[str, Any], keys: set[str] | None = None) -> dict[str, Any]:
    """Redacted deep copy of `record`."""
    return _redact_deep(record, keys or _DEFAULT_REDACT_KEYS)


def configure_logging(level: str | None = None) -> None:
    """Initialize stdlib logging once, honoring LOG_LEVEL."""
    root = logging.getLogger()
    if root.handlers:
        return
    name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# ---- Internal helpers --------------------------------------------------------


def _log_path_for_today(prefix: str) -> str:
    today = _dt.date.today().isoformat()
    return os.path.join(os.getenv("LOG_DIR", "/app/local/logs"), f"{prefix}-{today}.jsonl")


def _max_bytes() -> int:
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


def _rotate_file_if_needed(path: str) -> None:
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    rotated = f"{path}.{_dt.datetime.now().strftime('%Y%m%d-%H%M%S')}"
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, rotated)


def _key_matches(name: str, patterns: Iterable[str]) -> bool:
    n = name.lower()
    return any(pat in n for pat in patterns)


def _redact_deep(value: Any, patterns: Iterable[str]) -> Any:
    if isinstance(value, dict):
        return {
            k: (_REDACTED if isinstance(k, str) and _key_matches(k, patterns) else _redact_deep(v, patterns))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_deep(v, patterns) for v in value)
    if isinstance(value, str) and value.lower().startswith("bearer "):
        return f"{value.split(' ', 1)[0]} {_REDACTED}"
    return value


def _write_jsonl(path: str, record: dict[str, Any]) -> None:
    if os.getenv("LOG_DISABLE") == "1":
        return
    payload = dict(_redact_deep(record, _DEFAULT_REDACT_KEYS))
    payload.setdefault("ts", _dt.datetime.now(_dt.timezone.utc).isoformat())
    payload["_meta"] = {"host": _HOSTNAME, "pid": _PID}
    # default=str keeps odd values (datetimes, enums) from failing the write
    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    _rotate_file_if_needed(path)

    fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
    try:
        os.write(fd, data)  # single write; O_APPEND keeps lines whole
    finally:
        os.close(fd)
