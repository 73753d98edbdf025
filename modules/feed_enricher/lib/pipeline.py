# feed_enricher/pipeline.py
"""
One enrichment pass: normalize -> index -> scan -> match -> inject.

Every stage except `inject` is a pure function of its inputs; the run's
results land in the PipelineState handed in by the caller.
"""

from __future__ import annotations

import logging
import time

from . import logging_bridge
from .config import Settings
from .dom import LiveDocument
from .indexing import build_index, normalize_items, shape_keys
from .injection import inject
from .matching import match_entry
from .models import CapturedPayload, EntryCandidate, PipelineState, RunCounters

LOG = logging.getLogger(__name__)


def find_candidates(document: LiveDocument, settings: Settings) -> list[EntryCandidate]:
    """Every link whose href contains one of the configured path patterns."""
    out: list[EntryCandidate] = []
    for a in document.select(settings.candidate_selector()):
        href = document.resolve(str(a.get("href") or ""))
        text = a.get_text(" ", strip=True)
        out.append(EntryCandidate(href=href, text=text, element=a))
    return out


def run_pipeline(
    state: PipelineState,
    document: LiveDocument,
    payload: CapturedPayload | None,
    settings: Settings,
    *,
    reason: str = "manual",
) -> RunCounters:
    """
    Run one pass against `payload` and record the counters on `state`.

    Nothing here raises for bad input: an unusable payload means a zero-item
    run, and a failing entry is logged and skipped.
    """
    t0 = time.perf_counter_ns()
    state.runs += 1
    state.last_reason = reason

    if payload is None:
        LOG.info("No payload available to run (%s)", reason)
        return state.counters

    state.last_url = payload.source_url
    items = normalize_items(payload.body)
    if items is None:
        LOG.warning("No items array found in payload; keys: %s", shape_keys(payload.body))
        state.counters = RunCounters()
        logging_bridge.activity({
            "component": "feed_enricher.pipeline",
            "op": "no_items",
            "reason": reason,
            "url": payload.source_url,
            "body_type": type(payload.body).__name__,
        })
        return state.counters

    index = build_index(items)
    LOG.info("Items array length: %d; index sizes %s", len(items), index.sizes())

    candidates = find_candidates(document, settings)
    LOG.info("Anchors found on page: %d", len(candidates))

    counters = RunCounters(anchors=len(candidates), indexed=len(items))
    strategies: dict[str, int] = {}
    for candidate in candidates:
        try:
            match = match_entry(candidate, index)
            if match is None:
                continue
            key = match.strategy.split(":", 1)[0]
            strategies[key] = strategies.get(key, 0) + 1
            if inject(document, candidate, match, settings):
                counters.injected += 1
        except Exception:
            counters.errors += 1
            LOG.exception("Error processing entry href=%s", candidate.href)

    state.counters = counters
    logging_bridge.activity({
        "component": "feed_enricher.pipeline",
        "op": "summary",
        "reason": reason,
        "url": payload.source_url,
        "anchors": counters.anchors,
        "indexed": counters.indexed,
        "injected": counters.injected,
        "errors": counters.errors,
        "matched_by": strategies,
        "duration_us": int((time.perf_counter_ns() - t0) // 1000),
    })
    LOG.info("Enrichment complete. injected: %d", counters.injected)
    return counters
