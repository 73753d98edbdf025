# feed_enricher/status.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass

from .models import PipelineState
from .utils import shorten

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusSnapshot:
    anchors: int
    indexed: int
    injected: int
    source: str  # shortened last source URL, or "none"
    runs: int

    @classmethod
    def from_state(cls, state: PipelineState) -> StatusSnapshot:
        c = state.counters
        return cls(
            anchors=c.anchors,
            indexed=c.indexed,
            injected=c.injected,
            source=shorten(state.last_url),
            runs=state.runs,
        )

    def as_dict(self) -> dict:
        return asdict(self)


class StatusDisplay(ABC):
    """Whatever renders the counters; the enricher only pushes snapshots."""

    @abstractmethod
    def update(self, snapshot: StatusSnapshot) -> None:
        raise NotImplementedError

    @abstractmethod
    def show(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def hide(self) -> None:
        raise NotImplementedError


class LogStatusDisplay(StatusDisplay):
    """Logs counters while visible."""

    def __init__(self) -> None:
        self.visible = True
        self.last: StatusSnapshot | None = None

    def update(self, snapshot: StatusSnapshot) -> None:
        self.last = snapshot
        if self.visible:
            LOG.info(
                "Anchors %d | Indexed items %d | Injected %d | Last source %s",
                snapshot.anchors,
                snapshot.indexed,
                snapshot.injected,
                snapshot.source,
            )

    def show(self) -> None:
        self.visible = True
        if self.last is not None:
            self.update(self.last)

    def hide(self) -> None:
        self.visible = False
