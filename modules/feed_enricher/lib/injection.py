# feed_enricher/injection.py
from __future__ import annotations

import logging
from typing import Any

from bs4.element import Tag

from .config import Settings
from .dom import LiveDocument
from .models import EntryCandidate, FeedItem, MatchResult

LOG = logging.getLogger(__name__)

BLOCK_CLASS = "wm-feed-details-block"
MARKER_ATTR = "data-wm-enriched"
AUTO_ASSIGN_SENTINEL = "(assignToFirstResource:true)"
MISSING = "—"

FIELD_LABELS = (
    ("workOrder", "Work order"),
    ("spendLimit", "Spend limit"),
    ("pricingType", "Pricing type"),
    ("companyName", "Company name"),
    ("company", "Company"),
    ("assignedToFirst", "Assigned to (first resource)"),
)


def _first_present(item: FeedItem, *keys: str) -> Any:
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return None


def _first_assignee(item: FeedItem) -> Any:
    if item.get("assignToFirstResource") is True:
        return AUTO_ASSIGN_SENTINEL
    assigned = item.get("assignedTo")
    if not isinstance(assigned, list) or not assigned:
        return None
    first = assigned[0]
    if isinstance(first, dict):
        return first.get("name")
    return first


def extract_fields(item: FeedItem | None) -> dict[str, Any]:
    """Pull the display fields out of a feed item, tolerating both key spellings."""
    if not item:
        return {}
    return {
        "workOrder": item.get("workNumber"),
        "spendLimit": _first_present(item, "spendLimit", "spend_limit", "budget"),
        "pricingType": _first_present(item, "pricingType", "pricing_type", "pricing"),
        "companyName": _first_present(item, "companyName", "company_name"),
        "company": _first_present(item, "company", "client"),
        "assignedToFirst": _first_assignee(item),
    }


def _display(value: Any) -> str:
    if value is None:
        return MISSING
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_block(document: LiveDocument, info: dict[str, Any]) -> Tag:
    """
    <div class="wm-feed-details-block">
      <div class="wm-feed-details-title">Feed details</div>
      <div class="wm-feed-details-row"><span>Work order: </span><span>500123</span></div>
      ...
    </div>
    """
    wrap = document.new_tag("div", **{"class": BLOCK_CLASS})
    title = document.new_tag("div", **{"class": "wm-feed-details-title"})
    title.string = "Feed details"
    wrap.append(title)
    for key, label in FIELD_LABELS:
        row = document.new_tag("div", **{"class": "wm-feed-details-row"})
        name = document.new_tag("span", **{"class": "wm-feed-details-label"})
        name.string = f"{label}: "
        value = document.new_tag("span", **{"class": "wm-feed-details-value"})
        value.string = _display(info.get(key))
        row.append(name)
        row.append(value)
        wrap.append(row)
    return wrap


def _is_container(el: Tag, settings: Settings) -> bool:
    classes = el.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    if any(c in classes for c in settings.container_classes):
        return True
    if any(el.get(attr) for attr in settings.container_attrs):
        return True
    return el.get("role") in settings.container_roles


def find_container(anchor: Tag, settings: Settings) -> Tag:
    """
    Nearest card-like ancestor (the anchor itself counts) within
    `max_ancestor_depth` steps; otherwise the anchor's parent.
    """
    el: Any = anchor
    for _ in range(settings.max_ancestor_depth):
        if not isinstance(el, Tag) or el.name == "[document]":
            break
        if _is_container(el, settings):
            return el
        el = el.parent
    parent = anchor.parent
    return parent if isinstance(parent, Tag) else anchor


def is_marked(container: Tag) -> bool:
    return container.has_attr(MARKER_ATTR)


def inject(document: LiveDocument, candidate: EntryCandidate, match: MatchResult, settings: Settings) -> bool:
    """
    Annotate the candidate's container once. Returns True when a block was
    inserted, False when the container already carries the marker.
    """
    anchor = candidate.element
    container = find_container(anchor, settings)
    if is_marked(container):
        LOG.debug("Already injected for matched anchor href=%s strategy=%s", candidate.href, match.strategy)
        return False

    block = build_block(document, extract_fields(match.item))
    if isinstance(anchor.parent, Tag):
        document.insert_after(anchor, block)
    else:
        container.append(block)
    container[MARKER_ATTR] = "1"
    LOG.info(
        "Injected href=%s strategy=%s id=%s workNumber=%s title=%s",
        candidate.href,
        match.strategy,
        match.item.get("id"),
        match.item.get("workNumber"),
        match.item.get("publicTitle") or match.item.get("title"),
    )
    return True
