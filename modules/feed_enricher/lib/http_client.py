# feed_enricher/http_client.py
from __future__ import annotations

import logging
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .transport import InterceptingTransport, SessionTransport, Transport

LOG = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "FeedEnricher/0.1 (+https://example.invalid)"


def build_session(user_agent: str = DEFAULT_USER_AGENT, retries: int = 3) -> requests.Session:
    """Pooled session retrying idempotent calls on throttling and 5xx."""
    session = requests.Session()
    session.headers["User-Agent"] = user_agent
    adapter = HTTPAdapter(
        max_retries=Retry(
            total=retries,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"GET", "HEAD"}),
            raise_on_status=False,
        ),
        pool_connections=10,
        pool_maxsize=20,
    )
    for prefix in ("http://", "https://"):
        session.mount(prefix, adapter)
    return session


class HttpClient:
    """
    Every call goes through `self.transport`. `intercepting()` wraps it so
    registered capture rules see the traffic; callers still get the plain
    `requests.Response` back.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Transport | None = None,
    ):
        self.timeout = float(timeout)
        self.session = build_session(user_agent)
        self.transport: Transport = transport or SessionTransport(self.session)

    def intercepting(self) -> InterceptingTransport:
        """Wrap the current transport once and return the wrapper."""
        if not isinstance(self.transport, InterceptingTransport):
            self.transport = InterceptingTransport(self.transport)
        return self.transport

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        return self.transport.send("GET", url, **kwargs)

    def _get_ok(self, url: str, **kwargs: Any) -> requests.Response:
        resp = self.get(url, **kwargs)
        resp.raise_for_status()
        return resp

    def get_text(self, url: str, *, encoding: str | None = None, **kwargs: Any) -> str:
        resp = self._get_ok(url, **kwargs)
        if encoding:
            resp.encoding = encoding
        elif not resp.encoding:
            resp.encoding = resp.apparent_encoding
        return resp.text

    def close(self) -> None:
        self.transport.close()
        self.session.close()
