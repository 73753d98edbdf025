# feed_enricher/transport.py
"""
Behavior-preserving observation of HTTP traffic.

`InterceptingTransport` decorates any `Transport` and lets callers register
`intercept(predicate, on_body)` rules. For a matching, successful response the
body is read without disturbing the caller:

  - non-streamed responses: requests caches `.content`, so reading it here and
    again in the caller yields the same bytes;
  - streamed responses: `response.raw` is wrapped in a tee that copies what the
    caller reads and fires the rule once the stream reaches EOF.

Code that drives its own `requests.Session` can be observed too via
`InterceptingTransport.mount(session)`, which installs `InterceptingAdapter`.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from typing import Any

import requests
from requests.adapters import HTTPAdapter

LOG = logging.getLogger(__name__)

Predicate = Callable[[str], bool]
BodyCallback = Callable[[str, Any], None]


def decode_body(text: str | None) -> Any:
    """
    JSON-decode `text`; on failure (or a JSON null) hand back the raw text.
    Never raises.
    """
    if text is None:
        return None
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return text
    return text if parsed is None else parsed


def endpoint_matcher(substring: str) -> Predicate:
    def _match(url: str) -> bool:
        return isinstance(url, str) and substring in url

    return _match


# ---- Transports -------------------------------------------------------------


class Transport(ABC):
    """Minimal request interface: one call, one `requests.Response`."""

    @abstractmethod
    def send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        raise NotImplementedError

    def close(self) -> None:
        return None


class SessionTransport(Transport):
    """Inner transport delegating straight to a `requests.Session`."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self.session = session or requests.Session()

    def send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return self.session.request(method, url, **kwargs)

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("SessionTransport.close() swallow", exc_info=True)


class InterceptingTransport(Transport):
    """
    Decorator over another Transport. The caller always receives the inner
    transport's response object (or exception) unchanged.
    """

    def __init__(self, inner: Transport) -> None:
        self._inner = inner
        self._rules: list[tuple[Predicate, BodyCallback]] = []

    def intercept(self, predicate: Predicate, on_body: BodyCallback) -> None:
        """Register a rule; `on_body(url, decoded_body)` runs once per captured response."""
        self._rules.append((predicate, on_body))

    def send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        # Exceptions from the inner transport propagate as-is: no capture.
        resp = self._inner.send(method, url, **kwargs)
        return self.observe(resp, url=url, streamed=bool(kwargs.get("stream")))

    def mount(self, session: requests.Session, **adapter_kwargs: Any) -> InterceptingAdapter:
        """Observe a foreign session through the same rules."""
        adapter = InterceptingAdapter(self, **adapter_kwargs)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return adapter

    def close(self) -> None:
        self._inner.close()

    # ---- observation -----------------------------------------------------

    def observe(self, resp: requests.Response, *, url: str | None = None, streamed: bool = False) -> requests.Response:
        try:
            target = url or _request_url(resp)
            callbacks = [cb for pred, cb in self._rules if _safe_match(pred, target)]
            if not callbacks:
                return resp
            if not resp.ok:
                LOG.info("Not capturing %s: HTTP %s", target, resp.status_code)
                return resp

            LOG.info("Detected request to feed endpoint: %s", target)
            if streamed and not getattr(resp, "_content_consumed", False):
                resp.raw = _TeeRaw(resp.raw, lambda data: self._emit(callbacks, target, _decode_bytes(resp, data)))
            else:
                self._emit(callbacks, target, resp.text)
        except Exception:
            LOG.warning("Interception wrapper error", exc_info=True)
        return resp

    def _emit(self, callbacks: list[BodyCallback], url: str, text: str | None) -> None:
        body = decode_body(text)
        LOG.info("Captured payload type: %s", type(body).__name__)
        for cb in callbacks:
            try:
                cb(url, body)
            except Exception:
                LOG.error("Capture callback failed for %s", url, exc_info=True)


class InterceptingAdapter(HTTPAdapter):
    """HTTPAdapter that hands every response to an InterceptingTransport."""

    def __init__(self, transport: InterceptingTransport, **kwargs: Any) -> None:
        self._transport = transport
        super().__init__(**kwargs)

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):  # type: ignore[override]
        resp = super().send(request, stream=stream, timeout=timeout, verify=verify, cert=cert, proxies=proxies)
        # Session.send reads .content right after us when stream=False.
        return self._transport.observe(resp, url=request.url, streamed=stream)


# ---- internals ----------------------------------------------------------------


class _TeeRaw:
    """
    Wraps a urllib3-style raw stream. Bytes flow to the caller untouched;
    a copy is kept and `on_complete(bytes)` fires once at EOF.
    """

    def __init__(self, raw: Any, on_complete: Callable[[bytes], None]) -> None:
        self._raw = raw
        self._buf = bytearray()
        self._on_complete = on_complete
        self._done = False

    def read(self, amt: int | None = None, *args: Any, **kwargs: Any) -> bytes:
        chunk = self._raw.read(amt, *args, **kwargs)
        if chunk:
            self._buf.extend(chunk)
        if not chunk or amt is None:
            self._finish()
        return chunk

    def stream(self, amt: int = 2**16, decode_content: bool | None = None) -> Iterator[bytes]:
        if not hasattr(self._raw, "stream"):
            while True:
                chunk = self.read(amt)
                if not chunk:
                    return
                yield chunk
        for chunk in self._raw.stream(amt, decode_content=decode_content):
            self._buf.extend(chunk)
            yield chunk
        self._finish()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._raw, name)

    def _finish(self) -> None:
        if self._done:
            return
        self._done = True
        self._on_complete(bytes(self._buf))


def _request_url(resp: requests.Response) -> str:
    req = getattr(resp, "request", None)
    return (getattr(req, "url", None) or resp.url or "") if req is not None else (resp.url or "")


def _safe_match(pred: Predicate, url: str) -> bool:
    try:
        return bool(pred(url))
    except Exception:
        LOG.debug("Intercept predicate raised for %r", url, exc_info=True)
        return False


def _decode_bytes(resp: requests.Response, data: bytes) -> str:
    return data.decode(resp.encoding or "utf-8", errors="replace")
