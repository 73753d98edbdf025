# modules/feed_enricher/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, Settings
from .dom import LiveDocument
from .enricher import FeedEnricher
from .models import CapturedPayload, EntryCandidate, ItemIndex, MatchResult, PipelineState, RunCounters
from .pipeline import run_pipeline

__all__ = [
    "CapturedPayload",
    "ConfigError",
    "EntryCandidate",
    "FeedEnricher",
    "ItemIndex",
    "LiveDocument",
    "MatchResult",
    "PipelineState",
    "RunCounters",
    "Settings",
    "run_pipeline",
]
