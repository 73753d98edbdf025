from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

_SIX_DIGITS_RE = re.compile(r"\d{6,}")


def now_iso() -> str:
    """
    UTC ISO-8601 timestamp with 'Z' suffix.
    """
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def now_ms() -> int:
    """Epoch milliseconds, the unit the cache record carries."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def first_digit_run(*texts: str | None) -> str | None:
    """Return the first run of 6+ digits across `texts`, scanned in order."""
    for text in texts:
        if not text:
            continue
        m = _SIX_DIGITS_RE.search(text)
        if m:
            return m.group(0)
    return None


def key_str(v: Any) -> str:
    """String form of an identifier value; ints stay '500123', not '500123.0'."""
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def shorten(s: str | None, limit: int = 28) -> str:
    if not s:
        return "none"
    return s if len(s) <= limit else s[:limit] + "…"
