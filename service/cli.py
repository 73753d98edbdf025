# service/cli.py
"""
User-facing command-line entrypoints.

Subcommands
-----------
enrich --page FILE|URL --feed FILE|URL [--out FILE] [--set k=v ...]
    - One-shot run via modules.feed_enricher.main.run(...)
    - Prints the run counters; optionally writes the annotated page

watch --page FILE|URL --feed FILE|URL [--out FILE] [--poll-seconds N]
    - Polls the feed on an interval via service.scheduler.start_watch()
    - Rewrites --out after every scheduled pipeline run
    - Registers signal handlers for graceful shutdown

details --page FILE|URL [--out FILE]
    - Finds "Assign. ID" values on a list page, fetches each details page
      and prints the parsed records as JSON

cache show | cache clear
    - Inspect or drop the last captured payload in the sqlite cache
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
import uuid
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from modules.feed_enricher import main as _enricher_main
from modules.feed_enricher.lib import details as _details
from modules.feed_enricher.lib.cache import CacheError, SqliteCache
from modules.feed_enricher.lib.config import ConfigError, Settings
from modules.feed_enricher.lib.http_client import HttpClient
from modules.feed_enricher.lib.indexing import normalize_items
from service import logging_utils as L
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    L.configure_logging(os.getenv("LOG_LEVEL", "INFO"))


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """
    Parse key=value strings into a dict.
    - Values that look like JSON (true/false/null/number/object/array) are parsed.
    - Otherwise keep as raw strings.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--set item must be key=value (got {raw!r})")
        k, v = raw.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --set item {raw!r}")
        try:
            out[k] = json.loads(v)
        except ValueError:
            out[k] = v
    return out


def _is_url(value: str) -> bool:
    return value.lower().startswith(("http://", "https://"))


def _source_kwargs(name: str, value: str | None) -> dict[str, str]:
    """`--page x` -> {"page_url": x} or {"page_path": x}."""
    if not value:
        return {}
    return {f"{name}_url": value} if _is_url(value) else {f"{name}_path": value}


def _settings_kwargs(args: argparse.Namespace) -> dict[str, Any]:
    kw: dict[str, Any] = {}
    if args.config:
        kw["config_path"] = args.config
    kw.update(_parse_kv_pairs(getattr(args, "set", None) or []))
    kw.update(_source_kwargs("page", getattr(args, "page", None)))
    kw.update(_source_kwargs("feed", getattr(args, "feed", None)))
    if getattr(args, "out", None):
        kw["output_path"] = args.out
    if getattr(args, "poll_seconds", None):
        kw["poll_seconds"] = args.poll_seconds
    return kw


def _print_table(rows: Iterable[tuple[str, str]], headers: tuple[str, str] = ("KEY", "VALUE")) -> None:
    """Very simple two-column table printer."""
    rows = list(rows)
    w0 = max(len(headers[0]), *(len(r[0]) for r in rows)) if rows else len(headers[0])
    w1 = max(len(headers[1]), *(len(r[1]) for r in rows)) if rows else len(headers[1])
    sep = f"+-{'-' * w0}-+-{'-' * w1}-+"
    print(sep)
    print(f"| {headers[0].ljust(w0)} | {headers[1].ljust(w1)} |")
    print(sep)
    for c0, c1 in rows:
        print(f"| {c0.ljust(w0)} | {c1.ljust(w1)} |")
    print(sep)


def _now_iso():
    return datetime.now().astimezone().isoformat()


# ------------------------------ Subcommands ----------------------------------
def cmd_enrich(args: argparse.Namespace) -> int:
    run_id = uuid.uuid4().hex
    start_time = time.monotonic()
    kwargs = _settings_kwargs(args)
    LOG.debug("enrich with kwargs=%s", kwargs)

    try:
        result = _enricher_main.run(**kwargs)
    except KeyboardInterrupt:
        return 130
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "ts": _now_iso(),
            "event": "cli_enrich_error",
            "run_id": run_id,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })
        return 1

    L.write_activity_log({
        "ts": _now_iso(),
        "event": "cli_enrich",
        "run_id": run_id,
        "annotated": result is not None,
        "duration_ms": int((time.monotonic() - start_time) * 1000),
    })
    if result is None:
        print("DONE: nothing annotated.")
        return 0

    html, meta = result
    _print_table(((k, str(v)) for k, v in meta.items()), headers=("COUNTER", "VALUE"))
    if args.print_html:
        print("\n----- HTML OUTPUT -----\n")
        print(html)
    print("SUCCESS: page annotated.")
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    """
    Poll the feed until a termination signal is received, then stop cleanly.
    """
    stop_event = threading.Event()
    controller: _scheduler.SchedulerController | None = None

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        settings = Settings.from_env_and_kwargs(_settings_kwargs(args))
        controller = _scheduler.start_watch(settings)
        L.write_activity_log({"ts": _now_iso(), "event": "watch_start"})

        # Main wait loop (respond quickly to signals)
        while not stop_event.is_set():
            time.sleep(0.3)
        return 0

    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.exception("Fatal error in watch: %s", e)
        return 1
    finally:
        if controller is not None:
            controller.stop()
            controller.join(timeout=10.0)
            L.write_activity_log({"ts": _now_iso(), "event": "watch_stop"})


def cmd_details(args: argparse.Namespace) -> int:
    try:
        settings = Settings.from_env_and_kwargs(_settings_kwargs(args))
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    client = HttpClient(timeout=settings.timeout, user_agent=settings.user_agent)
    try:
        if settings.page_url:
            html = client.get_text(settings.page_url)
        else:
            html = Path(str(settings.page_path)).read_text(encoding="utf-8")
        ids = _details.find_assignment_ids(html)
        if not ids:
            print("No assignment IDs found.")
            return 0
        records, ok, failed = _details.fetch_all_details(client, ids)
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.exception("details failed: %s", e)
        print(f"FAILURE: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()

    body = json.dumps(records, indent=2, ensure_ascii=False)
    if settings.output_path:
        Path(settings.output_path).write_text(body, encoding="utf-8")
    else:
        print(body)
    print(f"Fetched {ok} of {len(ids)} assignment(s); {failed} failed.", file=sys.stderr)
    return 0 if failed == 0 else 1


def cmd_cache(args: argparse.Namespace) -> int:
    try:
        settings = Settings.from_env_and_kwargs(_settings_kwargs(args))
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    if not settings.cache_path:
        print("ERROR: no cache configured (set cache_path or FEED_ENRICHER_CACHE_PATH).", file=sys.stderr)
        return 2

    cache = SqliteCache(settings.cache_path)
    try:
        if args.action == "clear":
            cache.delete(settings.cache_key)
            print(f"Cleared {settings.cache_key!r}.")
            return 0

        entry = cache.get(settings.cache_key)
    except CacheError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if not isinstance(entry, dict):
        print(f"No cached payload under {settings.cache_key!r}.")
        return 0
    items = normalize_items(entry.get("payload"))
    _print_table(
        [
            ("key", settings.cache_key),
            ("timestamp", str(entry.get("timestamp"))),
            ("url", str(entry.get("url"))),
            ("items", "unrecognized shape" if items is None else str(len(items))),
        ],
        headers=("FIELD", "VALUE"),
    )
    return 0


# ------------------------------- Argparse ------------------------------------
def _add_source_args(sp: argparse.ArgumentParser, *, feed: bool) -> None:
    sp.add_argument("--page", required=True, help="List page: a saved HTML file or an http(s) URL.")
    if feed:
        sp.add_argument("--feed", help="Feed body: a saved JSON file or an http(s) URL.")
    sp.add_argument("--out", help="Write output here.")
    sp.add_argument(
        "--set",
        metavar="k=v",
        nargs="*",
        help="Extra settings (JSON values supported), e.g. debounce_ms=300.",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Feed enricher command-line tools",
    )
    p.add_argument(
        "--config",
        help="Path to a YAML/JSON settings file (fallbacks to FEED_ENRICHER_CONFIG env).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    # enrich
    sp = sub.add_parser("enrich", help="Annotate a list page once from a feed body.")
    _add_source_args(sp, feed=True)
    sp.add_argument(
        "--print-html",
        action="store_true",
        help="Print the annotated page to stdout.",
    )
    sp.set_defaults(func=cmd_enrich)

    # watch
    sp = sub.add_parser("watch", help="Poll the feed and keep the annotated page current.")
    _add_source_args(sp, feed=True)
    sp.add_argument("--poll-seconds", type=int, help="Feed poll interval (default 60).")
    sp.set_defaults(func=cmd_watch)

    # details
    sp = sub.add_parser("details", help="Fetch details for every assignment ID on a page.")
    _add_source_args(sp, feed=False)
    sp.set_defaults(func=cmd_details)

    # cache
    sp = sub.add_parser("cache", help="Inspect or clear the cached payload.")
    sp.add_argument("action", choices=("show", "clear"))
    sp.add_argument("--set", metavar="k=v", nargs="*", help="Extra settings, e.g. cache_path=/data/feed.sqlite.")
    sp.set_defaults(func=cmd_cache)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
