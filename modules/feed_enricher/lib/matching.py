# feed_enricher/matching.py
"""
Resolve a rendered entry to a feed item.

Strategies run in a fixed order and the first hit wins:

  1. workNumber  - numeric token looked up in by_work_number
  2. id          - numeric token looked up in by_id
  3. uuid        - numeric token looked up in by_uuid
  4. contain-workNumber:<wn> - first workNumber that appears verbatim in the
     href or text

The numeric token is the first run of 6+ digits in the href, then the text.
Without a token only strategy 4 can match.

Strategy 4 can pick an unrelated item whose work number happens to be a
substring of the entry (e.g. "500123" inside "15001234"); that behavior is kept.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from .models import EntryCandidate, ItemIndex, MatchResult
from .utils import first_digit_run

LOG = logging.getLogger(__name__)

Strategy = Callable[[EntryCandidate, ItemIndex], "MatchResult | None"]


def numeric_token(candidate: EntryCandidate) -> str | None:
    return first_digit_run(candidate.href, candidate.text)


def by_work_number(candidate: EntryCandidate, index: ItemIndex) -> MatchResult | None:
    token = numeric_token(candidate)
    if token and token in index.by_work_number:
        return MatchResult(index.by_work_number[token], "workNumber")
    return None


def by_id(candidate: EntryCandidate, index: ItemIndex) -> MatchResult | None:
    token = numeric_token(candidate)
    if token and token in index.by_id:
        return MatchResult(index.by_id[token], "id")
    return None


def by_uuid(candidate: EntryCandidate, index: ItemIndex) -> MatchResult | None:
    token = numeric_token(candidate)
    if token and token in index.by_uuid:
        return MatchResult(index.by_uuid[token], "uuid")
    return None


def by_contained_work_number(candidate: EntryCandidate, index: ItemIndex) -> MatchResult | None:
    href = candidate.href or ""
    text = candidate.text or ""
    for wn, item in index.by_work_number.items():
        if wn and (wn in href or wn in text):
            return MatchResult(item, f"contain-workNumber:{wn}")
    return None


STRATEGIES: tuple[Strategy, ...] = (
    by_work_number,
    by_id,
    by_uuid,
    by_contained_work_number,
)


def match_entry(
    candidate: EntryCandidate,
    index: ItemIndex,
    strategies: Sequence[Strategy] = STRATEGIES,
) -> MatchResult | None:
    for strategy in strategies:
        result = strategy(candidate, index)
        if result is not None:
            return result
    LOG.debug(
        "No match for entry href=%s text=%r token=%s",
        candidate.href,
        (candidate.text or "").strip()[:80],
        numeric_token(candidate),
    )
    return None
