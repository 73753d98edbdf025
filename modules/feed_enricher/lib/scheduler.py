# feed_enricher/scheduler.py
"""
Debounced, single-flight re-run scheduling.

    Idle --trigger--> Scheduled --timer--> Running --done--> Idle
                        ^  |                  |
                        +--+ trigger:         + trigger while running:
                          reset timer           run once more afterwards

The timer is a collaborator: `ApschedulerTimer` (a one-shot DateTrigger job
replaced on every reschedule) in production, `ManualTimer` for replays and
tests. Triggers may arrive from HTTP or scheduler worker threads, so the
state fields sit behind a lock; the job itself runs outside it. After
`shutdown()` the scheduler stays closed.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger
from bs4.element import Tag

from .config import Settings
from .injection import BLOCK_CLASS
from .models import PipelineState

LOG = logging.getLogger(__name__)

Job = Callable[[PipelineState, str], None]


# ---- Timers -------------------------------------------------------------------


class Timer(ABC):
    """One pending callback at a time; scheduling again replaces it."""

    @abstractmethod
    def schedule(self, delay_s: float, fn: Callable[[], None]) -> None:
        raise NotImplementedError

    @abstractmethod
    def cancel(self) -> None:
        raise NotImplementedError

    def shutdown(self) -> None:
        self.cancel()


class ApschedulerTimer(Timer):
    """
    Backed by an APScheduler job with a fixed id. `replace_existing=True`
    is the cancel-and-reschedule primitive.
    """

    def __init__(self, scheduler: BaseScheduler | None = None, job_id: str = "feed-enricher-run") -> None:
        self._owns = scheduler is None
        self._scheduler = scheduler or BackgroundScheduler(
            timezone=pytz.UTC,
            executors={"default": ThreadPoolExecutor(1)},
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self.job_id = job_id
        self._closed = False
        self._started = False

    def schedule(self, delay_s: float, fn: Callable[[], None]) -> None:
        if self._closed:
            return
        if not self._scheduler.running:
            # Only a scheduler we own and never started gets started here.
            if not self._owns or self._started:
                LOG.debug("scheduler stopped; dropping run for %s", self.job_id)
                return
            self._scheduler.start()
            self._started = True
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(delay_s, 0.0))
        self._scheduler.add_job(
            fn,
            trigger=DateTrigger(run_date=run_date, timezone=pytz.UTC),
            id=self.job_id,
            replace_existing=True,
            misfire_grace_time=None,
        )

    def cancel(self) -> None:
        if not self._scheduler.running:
            return
        with contextlib.suppress(JobLookupError):
            self._scheduler.remove_job(self.job_id)

    def shutdown(self) -> None:
        self._closed = True
        self.cancel()
        if self._owns and self._scheduler.running:
            self._scheduler.shutdown(wait=False)


class ManualTimer(Timer):
    """Virtual clock; callbacks fire only from `advance()`."""

    def __init__(self) -> None:
        self.now = 0.0
        self.fired_at: list[float] = []
        self._due: float | None = None
        self._fn: Callable[[], None] | None = None

    @property
    def pending(self) -> bool:
        return self._due is not None

    def schedule(self, delay_s: float, fn: Callable[[], None]) -> None:
        self._due = self.now + max(delay_s, 0.0)
        self._fn = fn

    def cancel(self) -> None:
        self._due = None
        self._fn = None

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._due is not None and self._due <= target:
            self.now = self._due
            fn = self._fn
            self._due = None
            self._fn = None
            self.fired_at.append(self.now)
            if fn is not None:
                fn()
        self.now = target


# ---- State machine --------------------------------------------------------------


class SchedulerState(str, enum.Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


class ReactiveScheduler:
    """
    Owns the PipelineState and calls `job(state, reason)`; runs never overlap.
    The job reads whatever payload is current when it fires.
    """

    def __init__(self, job: Job, *, timer: Timer, window_s: float = 0.2) -> None:
        self.state = PipelineState()
        self._job = job
        self._timer = timer
        self._window_s = float(window_s)
        self._lock = threading.Lock()
        self._status = SchedulerState.IDLE
        self._rerun = False
        self._reason = "init"
        self._generation = 0
        self._closed = False

    @property
    def status(self) -> SchedulerState:
        return self._status

    def trigger(self, reason: str) -> None:
        with self._lock:
            if self._closed:
                LOG.debug("trigger %s ignored after shutdown", reason)
                return
            self._reason = reason
            if self._status is SchedulerState.RUNNING:
                self._rerun = True
                LOG.debug("trigger %s deferred until current run finishes", reason)
                return
            self._arm()
        LOG.debug("run scheduled in %.0f ms (%s)", self._window_s * 1000, reason)

    def run_now(self, reason: str = "manual") -> bool:
        """
        Cancel any pending timer and run immediately. False when a run is in
        flight (a rerun is queued instead) or after shutdown.
        """
        with self._lock:
            if self._closed:
                return False
            if self._status is SchedulerState.RUNNING:
                self._rerun = True
                self._reason = reason
                return False
            self._generation += 1
            self._timer.cancel()
            self._status = SchedulerState.RUNNING
        self._execute(reason)
        return True

    def shutdown(self) -> None:
        """Stop for good: pending and queued runs are dropped, triggers are ignored."""
        with self._lock:
            self._closed = True
            self._generation += 1
            self._rerun = False
            if self._status is SchedulerState.SCHEDULED:
                self._status = SchedulerState.IDLE
        self._timer.shutdown()

    # ---- internals --------------------------------------------------------

    def _arm(self) -> None:
        # lock held
        self._generation += 1
        gen = self._generation
        self._status = SchedulerState.SCHEDULED
        self._timer.schedule(self._window_s, lambda: self._fire(gen))

    def _fire(self, gen: int) -> None:
        with self._lock:
            if gen != self._generation or self._status is not SchedulerState.SCHEDULED:
                return
            self._status = SchedulerState.RUNNING
            reason = self._reason
        self._execute(reason)

    def _execute(self, reason: str) -> None:
        try:
            self._job(self.state, reason)
        except Exception:
            LOG.exception("pipeline run failed (%s)", reason)
        finally:
            with self._lock:
                if self._rerun and not self._closed:
                    self._rerun = False
                    self._arm()
                else:
                    self._status = SchedulerState.IDLE


# ---- Trigger filters -----------------------------------------------------------

_PAGE_HREF_RE = re.compile(r"([?&#](page|p|offset|start|pageNumber)=\d+)|(/page/\d+)|(/browse\b)", re.I)
_PAGINATION_LABELS = {
    "next",
    "next page",
    "prev",
    "previous",
    "previous page",
    "more",
    "load more",
    "show more",
    "first",
    "last",
    "»",
    "«",
    "›",
    "‹",
}


def _class_list(el: Tag) -> list[str]:
    classes = el.get("class") or []
    return classes.split() if isinstance(classes, str) else list(classes)


def is_candidate_insertion(node: Any, settings: Settings) -> bool:
    """True when an inserted subtree carries list entries. Annotation blocks never count."""
    if not isinstance(node, Tag) or BLOCK_CLASS in _class_list(node):
        return False
    if node.name == "a" and any(p in str(node.get("href") or "") for p in settings.link_patterns):
        return True
    return node.select_one(settings.candidate_selector()) is not None


def is_pagination_click(element: Any, max_depth: int = 4) -> bool:
    """Recognize pager / list-navigation links by destination or visible label."""
    el = element
    for _ in range(max_depth):
        if not isinstance(el, Tag):
            return False
        if el.name in ("a", "button"):
            break
        el = el.parent
    else:
        return False
    if not isinstance(el, Tag) or el.name not in ("a", "button"):
        return False

    href = str(el.get("href") or "")
    if href and _PAGE_HREF_RE.search(href):
        return True
    label = el.get_text(" ", strip=True).lower()
    aria = str(el.get("aria-label") or "").strip().lower()
    if label.isdigit():
        return True
    if label in _PAGINATION_LABELS or aria in _PAGINATION_LABELS:
        return True
    return any("pagination" in c or "page-link" in c for c in _class_list(el))
