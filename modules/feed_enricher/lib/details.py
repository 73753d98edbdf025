# feed_enricher/details.py
"""
Assignment details scraper.

Finds assignment IDs on a list page ("Assign. ID: 12345") and parses each
details page, preferring the embedded `workEncoded` JSON over CSS selectors.
"""

from __future__ import annotations

import html as _html
import json
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from bs4 import BeautifulSoup

from . import logging_bridge
from .http_client import HttpClient

LOG = logging.getLogger(__name__)

DETAILS_URL = "https://www.workmarket.com/assignments/details/{id}"
NOT_FOUND = "Not found"

_ASSIGN_ID_RE = re.compile(r"Assign\. ID:\s*(\d+)")
_WORK_ENCODED_RE = re.compile(r"workEncoded:\s*({[\s\S]*?}),\s*authEncoded:")
_TOOLS_RE = re.compile(r"Required Tools:", re.I)
_BLANK_LINES_RE = re.compile(r"\n\s*\n")

_LOCATION_SEL = ".sidebar .intro-summary dl.iconed-dl:nth-of-type(3) dd"
_COMPANY_SEL = ".sidebar .intro-summary dl.iconed-dl:nth-of-type(4) dd strong a"


class DetailsError(Exception):
    """A details page could not be fetched."""


@dataclass
class AssignmentDetails:
    id: str
    url: str
    status: str = "Succeeded"
    title: str = NOT_FOUND
    company: str = NOT_FOUND
    location: str = NOT_FOUND
    start_date: str = NOT_FOUND
    pay_type: str = NOT_FOUND
    pay_rate: float = 0
    max_hours: float = 0
    max_spend: float = 0
    description: str = NOT_FOUND
    required_tools: str = NOT_FOUND

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def find_assignment_ids(html: str) -> list[str]:
    """Unique assignment IDs from text nodes, in first-seen order."""
    soup = BeautifulSoup(html, "html5lib")
    seen: dict[str, None] = {}
    for node in soup.find_all(string=re.compile(r"Assign\. ID:")):
        m = _ASSIGN_ID_RE.search(str(node))
        if m:
            seen.setdefault(m.group(1), None)
    LOG.info("Found %d unique assignment IDs", len(seen))
    return list(seen)


def clean_html(markup: str) -> str:
    """Flatten description HTML to text: list items become '- item' lines."""
    soup = BeautifulSoup(markup, "html5lib")
    for lst in soup.find_all(["ul", "ol"]):
        lines = [f"- {li.get_text(strip=True)}" for li in lst.find_all("li")]
        lst.replace_with("\n".join(lines) + "\n")
    for el in soup.find_all(["p", "br"]):
        el.insert_after("\n")
    text = soup.get_text()
    return _BLANK_LINES_RE.sub("\n", text).strip()


def _text(soup: BeautifulSoup, selector: str) -> str:
    el = soup.select_one(selector)
    return el.get_text().strip() if el is not None else NOT_FOUND


def _split_description(text: str) -> tuple[str, str]:
    if _TOOLS_RE.search(text):
        scope, tools = _TOOLS_RE.split(text, maxsplit=1)
        return scope.replace("Scope of Work:", "").strip(), tools.strip()
    return text.replace("Scope of Work:", "").strip(), NOT_FOUND


def _format_start(value: Any) -> str:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).isoformat()
    except ValueError:
        return str(value)


def parse_details_page(html: str, assignment_id: str) -> AssignmentDetails:
    soup = BeautifulSoup(html, "html5lib")
    out = AssignmentDetails(id=assignment_id, url=DETAILS_URL.format(id=assignment_id))

    header = soup.select_one("h2.assignment-header")
    if header is not None:
        small = header.find("small")
        if small is not None:
            small.extract()
        out.title = header.get_text().strip()

    loc = soup.select_one(_LOCATION_SEL)
    if loc is not None:
        out.location = loc.get_text().strip().split("\n")[0].strip()
    out.company = _text(soup, _COMPANY_SEL)

    work: dict[str, Any] | None = None
    m = _WORK_ENCODED_RE.search(html)
    if m:
        try:
            work = json.loads(m.group(1))
        except ValueError:
            LOG.warning("workEncoded JSON invalid for %s", assignment_id)

    if not isinstance(work, dict):
        LOG.info("No workEncoded object for %s; using #desc-text", assignment_id)
        fallback = _text(soup, "#desc-text")
        out.description = clean_html(_html.unescape(fallback)) if fallback != NOT_FOUND else NOT_FOUND
        return out

    if work.get("description"):
        out.description, out.required_tools = _split_description(clean_html(_html.unescape(work["description"])))

    pricing = work.get("pricing")
    if isinstance(pricing, dict):
        out.pay_type = pricing.get("type") or NOT_FOUND
        out.pay_rate = pricing.get("perHourPrice") or 0
        out.max_hours = pricing.get("maxNumberOfHours") or 0
        out.max_spend = pricing.get("maxSpendLimit") or 0

    schedule = work.get("schedule")
    if isinstance(schedule, dict) and schedule.get("from"):
        out.start_date = _format_start(schedule["from"])
    return out


def fetch_details_html(client: HttpClient, assignment_id: str) -> str:
    url = DETAILS_URL.format(id=assignment_id)
    resp = client.get(url)
    if not (200 <= resp.status_code < 300):
        raise DetailsError(f"HTTP Error: {resp.status_code} {resp.reason}")
    return resp.text


def fetch_all_details(client: HttpClient, ids: list[str]) -> tuple[list[dict[str, Any]], int, int]:
    """
    Fetch and parse each ID sequentially. Failures are recorded per ID and
    never stop the batch. Returns (records, succeeded, failed).
    """
    records: list[dict[str, Any]] = []
    ok = failed = 0
    for assignment_id in ids:
        try:
            details = parse_details_page(fetch_details_html(client, assignment_id), assignment_id)
            records.append(details.as_dict())
            ok += 1
            LOG.debug("Parsed details for %s: %s", assignment_id, details)
        except Exception as e:
            LOG.error("Failed to fetch/parse details for %s: %r", assignment_id, e)
            records.append({"id": assignment_id, "error": str(e), "status": "Failed"})
            failed += 1

    logging_bridge.activity({
        "component": "feed_enricher.details",
        "op": "summary",
        "requested": len(ids),
        "succeeded": ok,
        "failed": failed,
    })
    return records, ok, failed
