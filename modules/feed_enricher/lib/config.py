from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

DEFAULT_ENDPOINT = "/feed/firehose"
DEFAULT_CACHE_KEY = "workmarket_firehose_last"
DEFAULT_LINK_PATTERNS = ("/assignment/", "/work/", "/job/", "/workorder/", "/jobs/")
DEFAULT_CONTAINER_CLASSES = ("card", "assignment-card", "list-item")


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env/file cannot form a valid Settings."""


# -----------------------------
# Models
# -----------------------------
@dataclass
class Settings:
    """
    Canonical configuration for the feed enricher.

    Matching/injection knobs describe the host page; the one-shot inputs
    (page/feed/output) are only used by `main.run` and the CLI.
    """

    # Capture
    endpoint_substring: str = DEFAULT_ENDPOINT

    # Document shape
    link_patterns: tuple[str, ...] = DEFAULT_LINK_PATTERNS
    container_classes: tuple[str, ...] = DEFAULT_CONTAINER_CLASSES
    container_attrs: tuple[str, ...] = ("data-assignment",)
    container_roles: tuple[str, ...] = ("article",)
    max_ancestor_depth: int = 6

    # Scheduling
    debounce_ms: int = 200
    poll_seconds: int = 60

    # Durable cache ("" keeps it in memory)
    cache_path: str = ""
    cache_key: str = DEFAULT_CACHE_KEY

    # HTTP
    timeout: float = 15.0
    user_agent: str = "FeedEnricher/0.1 (+https://example.invalid)"

    # One-shot inputs
    page_path: str | None = None
    page_url: str | None = None
    feed_path: str | None = None
    feed_url: str | None = None
    output_path: str | None = None

    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    # ------------- convenience -------------
    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    def candidate_selector(self) -> str:
        """CSS selector for every link whose href contains one of the patterns."""
        return ", ".join(f'a[href*="{p}"]' for p in self.link_patterns)

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None = None) -> Settings:
        """
        Build Settings from (file < env < kwargs) with validation.

        Recognized kwargs (all optional):

            config_path: str            # YAML or JSON mapping merged underneath kwargs
            endpoint_substring: str = "/feed/firehose"
            link_patterns: list[str]
            container_classes / container_attrs / container_roles: list[str]
            max_ancestor_depth: int = 6
            debounce_ms: int = 200
            poll_seconds: int = 60
            cache_path: str = ""        # sqlite file; empty -> in-memory
            cache_key: str = "workmarket_firehose_last"
            timeout: float = 15.0
            user_agent: str
            page_path | page_url, feed_path | feed_url, output_path
        """
        kw = dict(kwargs or {})

        merged: dict[str, Any] = {}
        config_path = kw.pop("config_path", None) or os.getenv("FEED_ENRICHER_CONFIG")
        if config_path:
            merged.update(load_file(str(config_path)))

        env_map = {
            "cache_path": "FEED_ENRICHER_CACHE_PATH",
            "debounce_ms": "FEED_ENRICHER_DEBOUNCE_MS",
            "endpoint_substring": "FEED_ENRICHER_ENDPOINT",
        }
        for key, env_name in env_map.items():
            val = os.getenv(env_name)
            if val not in (None, ""):
                merged[key] = val

        merged.update({k: v for k, v in kw.items() if v is not None})

        known = set(cls.__dataclass_fields__) - {"extra"}
        extra = {k: v for k, v in merged.items() if k not in known}

        try:
            settings = cls(
                endpoint_substring=str(merged.get("endpoint_substring") or DEFAULT_ENDPOINT).strip(),
                link_patterns=_str_tuple(merged.get("link_patterns"), DEFAULT_LINK_PATTERNS),
                container_classes=_str_tuple(merged.get("container_classes"), DEFAULT_CONTAINER_CLASSES),
                container_attrs=_str_tuple(merged.get("container_attrs"), ("data-assignment",)),
                container_roles=_str_tuple(merged.get("container_roles"), ("article",)),
                max_ancestor_depth=int(merged.get("max_ancestor_depth", 6)),
                debounce_ms=int(merged.get("debounce_ms", 200)),
                poll_seconds=int(merged.get("poll_seconds", 60)),
                cache_path=str(merged.get("cache_path") or "").strip(),
                cache_key=str(merged.get("cache_key") or DEFAULT_CACHE_KEY).strip(),
                timeout=float(merged.get("timeout", 15.0)),
                user_agent=str(merged.get("user_agent") or cls.user_agent),
                page_path=_opt_str(merged.get("page_path")),
                page_url=_opt_str(merged.get("page_url")),
                feed_path=_opt_str(merged.get("feed_path")),
                feed_url=_opt_str(merged.get("feed_url")),
                output_path=_opt_str(merged.get("output_path")),
                extra=extra,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid feed_enricher settings: {e}") from e

        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def load_file(path: str) -> dict[str, Any]:
    """
    Read a YAML (.yml/.yaml) or JSON settings file. The top level must be a mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            if path.lower().endswith((".yml", ".yaml")):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"feed_enricher config file not found: {path}") from e
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"feed_enricher config file is invalid: {path}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"feed_enricher config must be a mapping: {path}")
    return data


def _opt_str(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _str_tuple(value: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        value = [x for x in value.split(",")]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"Expected a list of strings, got {type(value).__name__}")
    out = tuple(str(x).strip() for x in value if str(x).strip())
    return out or default


def _validate_settings(s: Settings) -> None:
    if not s.endpoint_substring:
        raise ConfigError("'endpoint_substring' cannot be empty.")
    if not s.link_patterns:
        raise ConfigError("At least one link pattern is required.")
    if s.max_ancestor_depth < 1:
        raise ConfigError("'max_ancestor_depth' must be >= 1.")
    if s.debounce_ms < 0:
        raise ConfigError("'debounce_ms' must be >= 0.")
    if s.poll_seconds <= 0:
        raise ConfigError("'poll_seconds' must be >= 1.")
    if not s.cache_key:
        raise ConfigError("'cache_key' cannot be empty.")
    if s.page_path and s.page_url:
        raise ConfigError("Provide only one of 'page_path' or 'page_url'.")
    if s.feed_path and s.feed_url:
        raise ConfigError("Provide only one of 'feed_path' or 'feed_url'.")
