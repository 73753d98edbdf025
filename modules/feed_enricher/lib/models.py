from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# A feed record is kept as the decoded JSON object; identity fields are optional.
FeedItem = dict[str, Any]


@dataclass(frozen=True)
class CapturedPayload:
    """
    The most recent body seen on the feed endpoint.

    `body` is the decoded JSON value, or the raw text when decoding failed.
    Replaced (never mutated) on each capture.
    """

    source_url: str
    body: Any
    captured_at: int  # epoch ms


@dataclass
class ItemIndex:
    """
    Lookup tables built from one payload's item list.
    Collisions keep the last item seen (payload order).
    """

    by_id: dict[str, FeedItem] = field(default_factory=dict)
    by_uuid: dict[str, FeedItem] = field(default_factory=dict)
    by_work_number: dict[str, FeedItem] = field(default_factory=dict)

    def sizes(self) -> dict[str, int]:
        return {
            "byId": len(self.by_id),
            "byUuid": len(self.by_uuid),
            "byWorkNumber": len(self.by_work_number),
        }


@dataclass(frozen=True)
class EntryCandidate:
    """A rendered link that looks like a list entry."""

    href: str
    text: str
    element: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class MatchResult:
    item: FeedItem
    strategy: str


@dataclass
class RunCounters:
    anchors: int = 0
    indexed: int = 0
    injected: int = 0
    errors: int = 0


@dataclass
class PipelineState:
    """
    Mutable state owned by the scheduler and handed to each run.
    Stages never keep a reference to it past the run.
    """

    counters: RunCounters = field(default_factory=RunCounters)
    last_url: str | None = None
    runs: int = 0
    last_reason: str | None = None
