# tests/test_details.py
import types

from modules.feed_enricher.lib.details import (
    DETAILS_URL,
    NOT_FOUND,
    clean_html,
    fetch_all_details,
    find_assignment_ids,
    parse_details_page,
)

DETAILS_HTML = """<html><body>
<h2 class="assignment-header">Install POS terminals <small>#41234567</small></h2>
<div class="sidebar"><div class="intro-summary">
  <dl class="iconed-dl"><dt>Status</dt><dd>Sent</dd></dl>
  <dl class="iconed-dl"><dt>When</dt><dd>Jan 1</dd></dl>
  <dl class="iconed-dl"><dt>Where</dt><dd>Chicago, IL
      60601</dd></dl>
  <dl class="iconed-dl"><dt>Who</dt><dd><strong><a href="/c/1">Acme Corp</a></strong></dd></dl>
</div></div>
<script>
var config = {
  workEncoded: {"description": "&lt;p&gt;Scope of Work: Mount terminals&lt;/p&gt;&lt;p&gt;Required Tools:&lt;/p&gt;&lt;ul&gt;&lt;li&gt;Drill&lt;/li&gt;&lt;li&gt;Ladder&lt;/li&gt;&lt;/ul&gt;", "pricing": {"type": "HOURLY", "perHourPrice": 45.5, "maxNumberOfHours": 8, "maxSpendLimit": 364}, "schedule": {"from": 1735689600000}},
  authEncoded: {}
};
</script>
</body></html>
"""

LIST_HTML = """<html><body>
<div class="row"><span>Assign. ID: 41234567</span></div>
<div class="row"><span>Assign. ID: 41234568</span></div>
<div class="row"><span>Assign. ID: 41234567</span></div>
<div class="row"><span>Work ID: 99</span></div>
</body></html>
"""


def test_find_assignment_ids_unique_in_order():
    assert find_assignment_ids(LIST_HTML) == ["41234567", "41234568"]
    assert find_assignment_ids("<p>nothing here</p>") == []


def test_clean_html_lists_and_paragraphs():
    text = clean_html("<p>One</p><ul><li>a</li><li>b</li></ul><p>Two</p>")
    assert text == "One\n- a\n- b\nTwo"


def test_parse_details_page_from_embedded_json():
    d = parse_details_page(DETAILS_HTML, "41234567")
    assert d.url == DETAILS_URL.format(id="41234567")
    assert d.title == "Install POS terminals"
    assert d.location == "Chicago, IL"
    assert d.company == "Acme Corp"
    assert d.description == "Mount terminals"
    assert d.required_tools == "- Drill\n- Ladder"
    assert d.pay_type == "HOURLY"
    assert d.pay_rate == 45.5
    assert d.max_hours == 8
    assert d.max_spend == 364
    assert d.start_date == "2025-01-01T00:00:00+00:00"
    assert d.as_dict()["status"] == "Succeeded"


def test_parse_details_page_falls_back_to_desc_text():
    html = '<html><body><div id="desc-text">&lt;p&gt;Hello there&lt;/p&gt;</div></body></html>'
    d = parse_details_page(html, "1")
    assert d.description == "Hello there"
    assert d.title == NOT_FOUND
    assert d.pay_rate == 0
    assert d.required_tools == NOT_FOUND


def test_parse_details_page_invalid_json_uses_fallback():
    html = "<html><body><script>x = {workEncoded: {broken}, authEncoded: 1}</script></body></html>"
    d = parse_details_page(html, "2")
    assert d.description == NOT_FOUND
    assert d.start_date == NOT_FOUND


class FakeClient:
    def __init__(self, pages):
        self.pages = pages
        self.urls = []

    def get(self, url):
        self.urls.append(url)
        html = self.pages.get(url)
        if html is None:
            return types.SimpleNamespace(status_code=404, reason="Not Found", text="")
        return types.SimpleNamespace(status_code=200, reason="OK", text=html)


def test_fetch_all_details_continues_past_failures():
    client = FakeClient({DETAILS_URL.format(id="41234567"): DETAILS_HTML})
    records, ok, failed = fetch_all_details(client, ["41234567", "41234568"])
    assert (ok, failed) == (1, 1)
    assert records[0]["title"] == "Install POS terminals"
    assert records[1] == {"id": "41234568", "error": "HTTP Error: 404 Not Found", "status": "Failed"}
    assert client.urls == [DETAILS_URL.format(id=i) for i in ("41234567", "41234568")]
