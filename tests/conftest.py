# tests/conftest.py
import json
import os
import tempfile

import pytest
from freezegun import freeze_time

from modules.feed_enricher.lib.config import Settings
from modules.feed_enricher.lib.dom import LiveDocument


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="fe-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    for name in ("FEED_ENRICHER_CACHE_PATH", "FEED_ENRICHER_DEBOUNCE_MS", "FEED_ENRICHER_ENDPOINT", "FEED_ENRICHER_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Sample page + feed
# ---------------------------------------------------------------------
# Four entries: workNumber / id / uuid matches, and one entry with no token.
PAGE_HTML = """<!doctype html>
<html><head><title>Assignments</title></head><body>
<nav><a href="/about">About</a></nav>
<div id="list">
  <div class="card"><h3><a href="/assignment/500123">Install POS terminals</a></h3><p>Chicago, IL</p></div>
  <div class="assignment-card"><a href="/work/987654321">Site survey</a></div>
  <div class="list-item"><a href="/assignment/details?tab=1">WO-777888 site visit</a></div>
  <div class="card"><a href="/job/111">Short id 111</a></div>
</div>
</body></html>
"""

FEED_BODY = {
    "results": [
        {
            "id": 1,
            "workNumber": "500123",
            "publicTitle": "Install POS terminals",
            "spendLimit": 250,
            "pricingType": "FLAT",
            "companyName": "Acme Corp",
            "company": "Acme",
            "assignedTo": [{"name": "Pat Lee"}, {"name": "Sam Roe"}],
        },
        {
            "id": 987654321,
            "workNumber": "600001",
            "budget": 90.5,
            "pricing": "HOURLY",
            "client": "Beta LLC",
            "assignToFirstResource": True,
        },
        {"id": 3, "uuid": "777888", "workNumber": "700002"},
    ]
}


@pytest.fixture
def page_html() -> str:
    return PAGE_HTML


@pytest.fixture
def feed_body() -> dict:
    return json.loads(json.dumps(FEED_BODY))


@pytest.fixture
def document() -> LiveDocument:
    return LiveDocument(PAGE_HTML, ready_state="complete")


@pytest.fixture
def settings() -> Settings:
    return Settings.from_env_and_kwargs({})


@pytest.fixture
def page_file(tmp_path):
    p = tmp_path / "page.html"
    p.write_text(PAGE_HTML, encoding="utf-8")
    return p


@pytest.fixture
def feed_file(tmp_path):
    p = tmp_path / "firehose.json"
    p.write_text(json.dumps(FEED_BODY), encoding="utf-8")
    return p
