from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import requests

from .lib.config import Settings
from .lib.dom import LiveDocument
from .lib.enricher import FeedEnricher
from .lib.http_client import HttpClient
from .lib.logging_bridge import activity as log_activity
from .lib.logging_bridge import error as log_error
from .lib.scheduler import ManualTimer
from .lib.transport import decode_body

LOG = logging.getLogger(__name__)


def run(**kwargs: Any) -> tuple[str, dict] | None:
    """
    One-shot enrichment of a saved or fetched list page.

    Accepts kwargs (from the CLI or a caller), including:
      page_path | page_url: str      # the rendered list page
      feed_path | feed_url: str      # the feed body (fetched through the interceptor)
      output_path: str | None        # write the annotated page here
      cache_path: str = ""           # reuse the last captured payload across runs
      config_path: str | None        # YAML/JSON settings file

    Returns:
      - None when nothing was annotated, or
      - (html, meta) with the annotated page and the run counters.
    """
    settings = Settings.from_env_and_kwargs(kwargs)
    if not (settings.page_path or settings.page_url):
        raise ValueError("feed_enricher.run needs 'page_path' or 'page_url'")

    log_activity({
        "component": "feed_enricher.main",
        "op": "start",
        "page": settings.page_path or settings.page_url,
        "feed": settings.feed_path or settings.feed_url,
        "cache": bool(settings.cache_path),
    })

    client = HttpClient(timeout=settings.timeout, user_agent=settings.user_agent)
    enricher: FeedEnricher | None = None
    try:
        html = _load_page(settings, client)
        document = LiveDocument(html, url=settings.page_url or "", ready_state="complete")
        # Nothing advances this timer: the single run below is explicit.
        enricher = FeedEnricher(settings, document, timer=ManualTimer())
        enricher.intercept(client.intercepting())
        enricher.attach()

        if settings.feed_url:
            try:
                client.get_text(settings.feed_url)
            except requests.RequestException as e:
                # No capture; fall back to whatever the cache holds.
                log_error({"component": "feed_enricher.main", "op": "feed_fetch", "url": settings.feed_url, "error": repr(e)})
        elif settings.feed_path:
            text = Path(settings.feed_path).read_text(encoding="utf-8")
            enricher.store.capture(settings.feed_path, decode_body(text))

        counters = enricher.run_now()
        if counters is None:
            counters = enricher.scheduler.state.counters
        out_html = document.render()
    finally:
        if enricher is not None:
            enricher.close()
        client.close()

    meta = {
        "anchors": counters.anchors,
        "indexed": counters.indexed,
        "injected": counters.injected,
        "errors": counters.errors,
        "source": enricher.last_url(),
    }
    if settings.output_path:
        Path(settings.output_path).write_text(out_html, encoding="utf-8")
        meta["output_path"] = settings.output_path

    log_activity({"component": "feed_enricher.main", "op": "finish", **meta})
    if counters.injected == 0:
        return None
    return out_html, meta


def _load_page(settings: Settings, client: HttpClient) -> str:
    if settings.page_url:
        return client.get_text(settings.page_url)
    return Path(str(settings.page_path)).read_text(encoding="utf-8")
