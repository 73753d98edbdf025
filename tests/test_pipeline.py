# tests/test_pipeline.py
import json

from modules.feed_enricher.lib.injection import BLOCK_CLASS, MARKER_ATTR
from modules.feed_enricher.lib.models import CapturedPayload, PipelineState
from modules.feed_enricher.lib.pipeline import find_candidates, run_pipeline


def _payload(body):
    return CapturedPayload(source_url="https://www.workmarket.com/feed/firehose", body=body, captured_at=0)


def _activity_records():
    import glob
    import os

    out = []
    for path in glob.glob(os.path.join(os.environ["LOG_DIR"], "activity-test-*.jsonl")):
        with open(path, encoding="utf-8") as f:
            out.extend(json.loads(line) for line in f if line.strip())
    return out


def test_find_candidates_uses_link_patterns(document, settings):
    hrefs = [c.href for c in find_candidates(document, settings)]
    assert hrefs == ["/assignment/500123", "/work/987654321", "/assignment/details?tab=1", "/job/111"]


def test_find_candidates_resolves_against_page_url(page_html, settings):
    from modules.feed_enricher.lib.dom import LiveDocument

    doc = LiveDocument(page_html, url="https://www.workmarket.com/assignments")
    assert find_candidates(doc, settings)[0].href == "https://www.workmarket.com/assignment/500123"


def test_full_run_counts_and_annotations(document, settings, feed_body):
    state = PipelineState()
    counters = run_pipeline(state, document, _payload(feed_body), settings, reason="capture")

    assert (counters.anchors, counters.indexed, counters.injected, counters.errors) == (4, 3, 3, 0)
    assert state.counters is counters
    assert state.runs == 1
    assert state.last_url.endswith("/feed/firehose")
    assert len(document.select(f".{BLOCK_CLASS}")) == 3
    unmatched = document.select_one('a[href="/job/111"]').parent
    assert not unmatched.has_attr(MARKER_ATTR)

    summary = [r for r in _activity_records() if r.get("op") == "summary"][-1]
    assert summary["matched_by"] == {"workNumber": 1, "id": 1, "uuid": 1}
    assert summary["reason"] == "capture"


def test_second_run_is_idempotent(document, settings, feed_body):
    state = PipelineState()
    run_pipeline(state, document, _payload(feed_body), settings)
    again = run_pipeline(state, document, _payload(feed_body), settings)
    assert again.injected == 0
    assert again.anchors == 4
    assert len(document.select(f".{BLOCK_CLASS}")) == 3
    assert state.runs == 2


def test_unrecognized_payload_is_a_zero_item_run(document, settings, feed_body):
    state = PipelineState()
    run_pipeline(state, document, _payload(feed_body), settings)
    counters = run_pipeline(state, document, _payload("<html>oops</html>"), settings)
    assert (counters.anchors, counters.indexed, counters.injected) == (0, 0, 0)
    assert any(r.get("op") == "no_items" for r in _activity_records())


def test_no_payload_leaves_counters(document, settings):
    state = PipelineState()
    counters = run_pipeline(state, document, None, settings)
    assert counters.injected == 0
    assert state.runs == 1
    assert document.select(f".{BLOCK_CLASS}") == []


def test_entry_error_is_isolated(document, settings, feed_body, monkeypatch):
    from modules.feed_enricher.lib import pipeline

    real_inject = pipeline.inject

    def flaky(doc, candidate, match, s):
        if candidate.href == "/work/987654321":
            raise RuntimeError("broken entry")
        return real_inject(doc, candidate, match, s)

    monkeypatch.setattr(pipeline, "inject", flaky)
    counters = run_pipeline(PipelineState(), document, _payload(feed_body), settings)
    assert counters.errors == 1
    assert counters.injected == 2


def test_payload_shapes_behave_the_same(page_html, settings, feed_body):
    from modules.feed_enricher.lib.dom import LiveDocument

    items = feed_body["results"]
    for body in (items, {"items": items}, {"data": items}):
        doc = LiveDocument(page_html)
        assert run_pipeline(PipelineState(), doc, _payload(body), settings).injected == 3
