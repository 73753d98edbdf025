# feed_enricher/enricher.py
from __future__ import annotations

import logging
from typing import Any

from .cache import Cache, open_cache
from .config import Settings
from .dom import LiveDocument
from .models import CapturedPayload, PipelineState, RunCounters
from .pipeline import run_pipeline
from .scheduler import ApschedulerTimer, ReactiveScheduler, Timer, is_candidate_insertion, is_pagination_click
from .status import LogStatusDisplay, StatusDisplay, StatusSnapshot
from .store import PayloadStore
from .transport import InterceptingTransport, endpoint_matcher

LOG = logging.getLogger(__name__)


class FeedEnricher:
    """
    Wires capture -> store -> scheduler -> pipeline for one live document.

    Call `intercept(transport)` for every transport the host page uses and
    `attach()` once; from then on payload captures, list re-renders,
    navigation and pager clicks all funnel into the debounced scheduler.
    """

    def __init__(
        self,
        settings: Settings,
        document: LiveDocument,
        *,
        cache: Cache | None = None,
        timer: Timer | None = None,
        display: StatusDisplay | None = None,
    ) -> None:
        self.settings = settings
        self.document = document
        self.store = PayloadStore(cache if cache is not None else open_cache(settings.cache_path), settings.cache_key)
        self.display = display or LogStatusDisplay()
        self.scheduler = ReactiveScheduler(
            self._run,
            timer=timer or ApschedulerTimer(),
            window_s=settings.debounce_seconds,
        )
        self._attached = False
        self.store.subscribe(self._on_capture)

    # ---- wiring -----------------------------------------------------------

    def intercept(self, transport: InterceptingTransport) -> None:
        transport.intercept(endpoint_matcher(self.settings.endpoint_substring), self.store.capture)

    def attach(self) -> None:
        if self._attached:
            return
        self._attached = True
        doc = self.document
        doc.observe_mutations(self._on_mutations)
        doc.history.add_listener(self._on_navigation)
        doc.add_click_listener(self._on_click)
        doc.on_ready(lambda: self.scheduler.trigger("load"))
        LOG.info("Enricher attached; watching for %s calls", self.settings.endpoint_substring)

    def close(self) -> None:
        self.scheduler.shutdown()

    # ---- debug surface ----------------------------------------------------

    def last_url(self) -> str | None:
        return self.store.latest_url

    def last_payload(self) -> Any:
        return self.store.latest.body if self.store.latest else None

    def run_now(self) -> RunCounters | None:
        """Counters of the run just made, or None when it was queued behind one in flight."""
        if not self.scheduler.run_now("manual"):
            return None
        return self.scheduler.state.counters

    def status(self) -> StatusSnapshot:
        return StatusSnapshot.from_state(self.scheduler.state)

    def show_status(self) -> None:
        self.display.update(self.status())
        self.display.show()

    def hide_status(self) -> None:
        self.display.hide()

    # ---- reactions --------------------------------------------------------

    def _run(self, state: PipelineState, reason: str) -> None:
        # Read the payload at fire time, never at schedule time.
        with self.document.lock:
            run_pipeline(state, self.document, self.store.latest, self.settings, reason=reason)
        self.display.update(StatusSnapshot.from_state(state))

    def _on_capture(self, payload: CapturedPayload) -> None:
        LOG.info("Captured payload from %s", payload.source_url)
        self.scheduler.trigger("capture")

    def _on_mutations(self, nodes: list[Any]) -> None:
        if any(is_candidate_insertion(n, self.settings) for n in nodes):
            self.scheduler.trigger("mutation")

    def _on_navigation(self, kind: str, url: str) -> None:
        self.scheduler.trigger(f"navigation:{kind}")

    def _on_click(self, element: Any) -> None:
        if is_pagination_click(element):
            self.scheduler.trigger("click")
