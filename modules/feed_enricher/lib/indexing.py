# feed_enricher/indexing.py
from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from .models import FeedItem, ItemIndex
from .utils import key_str

LIST_KEYS = ("results", "items", "data")


def normalize_items(body: Any) -> list[Any] | None:
    """
    Return the payload's item list, or None when the shape is unrecognized.

    Checked in order: the body itself, then body["results"|"items"|"data"].
    Raw text (a failed decode) is never a list, so it normalizes to None.
    """
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in LIST_KEYS:
            value = body.get(key)
            if isinstance(value, list):
                return value
    return None


def build_index(items: Iterable[Any]) -> ItemIndex:
    """
    Single pass over `items`. Missing identifiers are skipped per table;
    duplicate keys keep the last item.
    """
    index = ItemIndex()
    for it in items:
        if not isinstance(it, dict):
            continue
        item: FeedItem = it
        if item.get("id") is not None:
            index.by_id[key_str(item["id"])] = item
        if item.get("uuid"):
            index.by_uuid[key_str(item["uuid"])] = item
        if item.get("workNumber") is not None:
            index.by_work_number[key_str(item["workNumber"])] = item
    return index


def shape_keys(body: Any) -> list[str]:
    """Top-level keys, for logging an unrecognized payload."""
    return sorted(str(k) for k in body.keys()) if isinstance(body, dict) else []
