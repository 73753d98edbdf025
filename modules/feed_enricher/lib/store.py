# feed_enricher/store.py
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .cache import Cache
from .models import CapturedPayload
from .utils import now_ms

LOG = logging.getLogger(__name__)

Subscriber = Callable[[CapturedPayload], None]


class PayloadStore:
    """
    Holds the single most recent CapturedPayload.

    - Hydrates from the durable cache on init ("no entry" and "corrupt entry"
      both mean: start with no payload).
    - Mirrors each capture into the cache, best-effort.
    - Notifies subscribers synchronously, in registration order; one failing
      subscriber never stops the rest.
    """

    def __init__(self, cache: Cache, cache_key: str) -> None:
        self._cache = cache
        self._cache_key = cache_key
        self._subscribers: list[Subscriber] = []
        self.latest: CapturedPayload | None = self._hydrate()

    @property
    def latest_url(self) -> str | None:
        return self.latest.source_url if self.latest else None

    def subscribe(self, cb: Subscriber) -> Callable[[], None]:
        self._subscribers.append(cb)

        def _unsubscribe() -> None:
            if cb in self._subscribers:
                self._subscribers.remove(cb)

        return _unsubscribe

    def capture(self, url: str, body: Any) -> CapturedPayload:
        payload = CapturedPayload(source_url=url, body=body, captured_at=now_ms())
        self.latest = payload

        try:
            self._cache.set(
                self._cache_key,
                {"timestamp": payload.captured_at, "url": url, "payload": body},
            )
        except Exception:
            LOG.debug("cache write failed for %s", self._cache_key, exc_info=True)

        for cb in list(self._subscribers):
            try:
                cb(payload)
            except Exception:
                LOG.error("payload subscriber failed", exc_info=True)
        return payload

    def _hydrate(self) -> CapturedPayload | None:
        try:
            stored = self._cache.get(self._cache_key)
        except Exception:
            LOG.warning("Stored payload unreadable; starting empty", exc_info=True)
            return None
        if not isinstance(stored, dict) or stored.get("payload") is None:
            LOG.info("No stored payload available")
            return None
        try:
            captured_at = int(stored.get("timestamp") or 0)
        except (TypeError, ValueError):
            captured_at = 0
        LOG.info("Hydrated stored payload from %s", stored.get("url"))
        return CapturedPayload(
            source_url=str(stored.get("url") or ""),
            body=stored["payload"],
            captured_at=captured_at,
        )
