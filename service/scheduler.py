# service/scheduler.py
"""
Long-running "watch" mode.

One BackgroundScheduler with a single worker thread carries both jobs:
  * an IntervalTrigger poll that fetches the feed through the intercepting
    client (a 2xx response is captured, which triggers a debounced run), and
  * the enricher's own debounce job (ApschedulerTimer on the same scheduler).

A single worker keeps pipeline runs and document access on one thread.
After every pipeline run the annotated page is written to `output_path`.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pytz
import requests
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from modules.feed_enricher.lib.config import ConfigError, Settings
from modules.feed_enricher.lib.dom import LiveDocument
from modules.feed_enricher.lib.enricher import FeedEnricher
from modules.feed_enricher.lib.http_client import HttpClient
from modules.feed_enricher.lib.scheduler import ApschedulerTimer
from modules.feed_enricher.lib.status import LogStatusDisplay, StatusSnapshot
from modules.feed_enricher.lib.transport import decode_body

from .logging_utils import write_activity_log, write_error_log

LOG = logging.getLogger(__name__)

POLL_JOB_ID = "feed-enricher-poll"


# ---- Status sink ------------------------------------------------------------


class SnapshotFileDisplay(LogStatusDisplay):
    """Logs the counters and rewrites the annotated page after every run."""

    def __init__(self, document: LiveDocument, output_path: str | None) -> None:
        super().__init__()
        self._document = document
        self._output_path = output_path
        self.writes = 0

    def update(self, snapshot: StatusSnapshot) -> None:
        super().update(snapshot)
        if not self._output_path:
            return
        Path(self._output_path).write_text(self._document.render(), encoding="utf-8")
        self.writes += 1
        write_activity_log({
            "event": "snapshot_written",
            "path": self._output_path,
            **snapshot.as_dict(),
        })


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """
    A small façade around APScheduler so the CLI can manage lifecycle cleanly.
    """

    def __init__(
        self,
        scheduler: BackgroundScheduler,
        enricher: FeedEnricher | None = None,
        client: HttpClient | None = None,
    ) -> None:
        self._scheduler = scheduler
        self.enricher = enricher
        self._client = client
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        """Shut down the enricher's timer, the scheduler and the HTTP client."""
        if self.enricher is not None:
            self.enricher.close()
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            # wait=False -> stop immediately; an in-flight poll is allowed to finish.
            self._scheduler.shutdown(wait=False)
        if self._client is not None:
            self._client.close()
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """
        Block until the scheduler is fully stopped (or timeout).
        Returns True if stopped before timeout, else False.
        """
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())


# ---- Module API -------------------------------------------------------------


def build_scheduler(tz: Any = None) -> BackgroundScheduler:
    """Single-worker scheduler; polls and pipeline runs never run concurrently."""
    return BackgroundScheduler(
        timezone=tz or _resolve_timezone(),
        job_defaults={"coalesce": True, "max_instances": 1},
        executors={"default": ThreadPoolExecutor(1)},
        jobstores={"default": MemoryJobStore()},
    )


def start_watch(settings: Settings, *, scheduler: BackgroundScheduler | None = None) -> SchedulerController:
    """
    Load the page once, attach the enricher, and poll the feed every
    `poll_seconds`. Returns a controller exposing stop() and join().
    """
    if not (settings.page_path or settings.page_url):
        raise ConfigError("watch needs 'page_path' or 'page_url'")
    if not (settings.feed_url or settings.feed_path):
        raise ConfigError("watch needs 'feed_url' or 'feed_path'")

    sched = scheduler or build_scheduler()
    client = HttpClient(timeout=settings.timeout, user_agent=settings.user_agent)

    if settings.page_url:
        html = client.get_text(settings.page_url)
    else:
        html = Path(str(settings.page_path)).read_text(encoding="utf-8")
    document = LiveDocument(html, url=settings.page_url or "", ready_state="loading")

    enricher = FeedEnricher(
        settings,
        document,
        timer=ApschedulerTimer(scheduler=sched),
        display=SnapshotFileDisplay(document, settings.output_path),
    )
    enricher.intercept(client.intercepting())
    enricher.attach()

    sched.add_job(
        poll_once,
        trigger=_build_interval_trigger(settings.poll_seconds),
        args=(enricher, client, settings),
        id=POLL_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    if not sched.running:
        sched.start()
    # The page is "loaded" once the scheduler is up; this arms the first run.
    document.set_ready_state("complete")

    write_activity_log({
        "event": "watch_started",
        "page": settings.page_path or settings.page_url,
        "feed": settings.feed_url or settings.feed_path,
        "poll_seconds": settings.poll_seconds,
        "debounce_ms": settings.debounce_ms,
    })
    LOG.info("Watching %s every %ds.", settings.feed_url or settings.feed_path, settings.poll_seconds)
    return SchedulerController(sched, enricher=enricher, client=client)


def poll_once(enricher: FeedEnricher, client: HttpClient, settings: Settings) -> bool:
    """
    Fetch the feed once. A successful fetch is captured by the interceptor
    (feed_url) or handed to the store directly (feed_path).
    Returns False on failure; the next interval retries.
    """
    try:
        if settings.feed_url:
            client.get_text(settings.feed_url)
        else:
            text = Path(str(settings.feed_path)).read_text(encoding="utf-8")
            enricher.store.capture(str(settings.feed_path), decode_body(text))
        return True
    except (requests.RequestException, OSError) as e:
        LOG.warning("Feed poll failed: %r", e)
        write_error_log({
            "event": "poll_failed",
            "feed": settings.feed_url or settings.feed_path,
            "error": repr(e),
        })
        return False


# ---- Helpers ----------------------------------------------------------------


def _build_interval_trigger(seconds: Any) -> IntervalTrigger:
    try:
        n = int(seconds)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"poll_seconds must be an integer (got {seconds!r})") from e
    if n <= 0:
        raise ConfigError("poll_seconds must be > 0")
    return IntervalTrigger(seconds=n, timezone=pytz.UTC)


def _resolve_timezone():
    """
    APScheduler 3.x expects a pytz timezone: env TZ, else UTC.
    """
    tz_name = os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid tz '%s')", tz_name)
        return pytz.UTC
