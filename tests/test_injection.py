# tests/test_injection.py
import pytest

from modules.feed_enricher.lib.config import Settings
from modules.feed_enricher.lib.dom import LiveDocument
from modules.feed_enricher.lib.injection import (
    AUTO_ASSIGN_SENTINEL,
    BLOCK_CLASS,
    MARKER_ATTR,
    MISSING,
    extract_fields,
    find_container,
    inject,
)
from modules.feed_enricher.lib.models import EntryCandidate, MatchResult


def _rows(block):
    out = {}
    for row in block.select(".wm-feed-details-row"):
        label = row.select_one(".wm-feed-details-label").get_text()
        value = row.select_one(".wm-feed-details-value").get_text()
        out[label.rstrip(": ")] = value
    return out


def _candidate(doc, css):
    a = doc.select_one(css)
    return EntryCandidate(href=a["href"], text=a.get_text(" ", strip=True), element=a)


def test_extract_fields_primary_keys():
    item = {
        "workNumber": "500123",
        "spendLimit": 250,
        "pricingType": "FLAT",
        "companyName": "Acme Corp",
        "company": "Acme",
        "assignedTo": [{"name": "Pat Lee"}, {"name": "Sam Roe"}],
    }
    assert extract_fields(item) == {
        "workOrder": "500123",
        "spendLimit": 250,
        "pricingType": "FLAT",
        "companyName": "Acme Corp",
        "company": "Acme",
        "assignedToFirst": "Pat Lee",
    }


def test_extract_fields_fallback_keys():
    info = extract_fields({
        "spend_limit": 0,
        "pricing": "HOURLY",
        "company_name": "Beta LLC",
        "client": "Beta",
        "assignedTo": ["Jo Park"],
    })
    assert info["spendLimit"] == 0
    assert info["pricingType"] == "HOURLY"
    assert info["companyName"] == "Beta LLC"
    assert info["company"] == "Beta"
    assert info["assignedToFirst"] == "Jo Park"


def test_extract_fields_budget_is_last_resort():
    assert extract_fields({"spendLimit": None, "budget": 9})["spendLimit"] == 9


def test_auto_assign_sentinel():
    info = extract_fields({"assignToFirstResource": True, "assignedTo": [{"name": "X"}]})
    assert info["assignedToFirst"] == AUTO_ASSIGN_SENTINEL


def test_extract_fields_empty():
    assert extract_fields(None) == {}
    assert extract_fields({}) == {}


def test_inject_renders_block_and_marks_container(document, settings):
    cand = _candidate(document, 'a[href="/assignment/500123"]')
    item = {"workNumber": "500123", "spendLimit": 250, "assignedTo": []}

    assert inject(document, cand, MatchResult(item, "workNumber"), settings) is True

    card = document.select_one("div.card")
    assert card.get(MARKER_ATTR) == "1"
    block = card.select_one(f".{BLOCK_CLASS}")
    assert block is not None
    assert block.select_one(".wm-feed-details-title").get_text() == "Feed details"
    # block sits right after the anchor
    assert cand.element.find_next_sibling() is block
    rows = _rows(block)
    assert rows["Work order"] == "500123"
    assert rows["Spend limit"] == "250"
    assert rows["Pricing type"] == MISSING
    assert rows["Assigned to (first resource)"] == MISSING


def test_inject_is_idempotent_per_container(document, settings):
    cand = _candidate(document, 'a[href="/assignment/500123"]')
    match = MatchResult({"workNumber": "500123"}, "workNumber")
    assert inject(document, cand, match, settings) is True
    assert inject(document, cand, match, settings) is False
    assert len(document.select(f".{BLOCK_CLASS}")) == 1


def test_find_container_prefers_anchor_itself(settings):
    doc = LiveDocument('<div><a class="card" href="/work/123456">x</a></div>')
    a = doc.select_one("a")
    assert find_container(a, settings) is a


@pytest.mark.parametrize(
    "wrapper",
    [
        '<section data-assignment="9">{}</section>',
        '<section role="article">{}</section>',
        '<section class="list-item extra">{}</section>',
    ],
)
def test_find_container_signatures(settings, wrapper):
    doc = LiveDocument("<body>" + wrapper.format('<p><span><a href="/work/123456">x</a></span></p>') + "</body>")
    assert find_container(doc.select_one("a"), settings).name == "section"


def test_find_container_depth_bound_falls_back_to_parent():
    settings = Settings.from_env_and_kwargs({"max_ancestor_depth": 3})
    # card is four steps above the anchor: a -> span -> p -> div -> div.card
    doc = LiveDocument('<div class="card"><div><p><span><a href="/work/123456">x</a></span></p></div></div>')
    a = doc.select_one("a")
    container = find_container(a, settings)
    assert container.name == "span"


def test_rerendered_container_gets_annotated_again(document, settings):
    match = MatchResult({"workNumber": "500123"}, "workNumber")
    inject(document, _candidate(document, 'a[href="/assignment/500123"]'), match, settings)

    list_el = document.select_one("#list")
    document.replace_children(list_el, '<div class="card"><a href="/assignment/500123">Install</a></div>')
    assert document.select(f".{BLOCK_CLASS}") == []

    assert inject(document, _candidate(document, 'a[href="/assignment/500123"]'), match, settings) is True
    assert len(document.select(f".{BLOCK_CLASS}")) == 1
