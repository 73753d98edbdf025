# feed_enricher/dom.py
"""
A small "live page" around a BeautifulSoup tree.

The host page (a replay driver, the CLI, or tests) changes the tree through
this API, and the enricher listens the way a browser script would: mutation
observers, history events, capture-phase clicks and the ready state.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag

LOG = logging.getLogger(__name__)

READY_STATES = ("loading", "interactive", "complete")

MutationCallback = Callable[[list[Tag]], None]
NavigationCallback = Callable[[str, str], None]
ClickCallback = Callable[[Tag], None]


def parse_fragment(markup: str) -> list[Any]:
    """Parse an HTML fragment into detached top-level nodes."""
    frag = BeautifulSoup(markup, "html5lib")
    body = frag.body
    nodes = list(body.contents) if body is not None else list(frag.contents)
    return [n.extract() for n in nodes]


class History:
    """URL stack with push/replace/pop notifications (state changes first)."""

    def __init__(self, document: LiveDocument) -> None:
        self._document = document
        self._entries: list[str] = [document.url]
        self._pos = 0
        self._listeners: list[NavigationCallback] = []

    @property
    def length(self) -> int:
        return len(self._entries)

    def add_listener(self, cb: NavigationCallback) -> None:
        self._listeners.append(cb)

    def push_state(self, url: str) -> None:
        url = self._document.resolve(url)
        del self._entries[self._pos + 1 :]
        self._entries.append(url)
        self._pos += 1
        self._go(url, "push")

    def replace_state(self, url: str) -> None:
        url = self._document.resolve(url)
        self._entries[self._pos] = url
        self._go(url, "replace")

    def back(self) -> None:
        if self._pos > 0:
            self._pos -= 1
            self._go(self._entries[self._pos], "pop")

    def forward(self) -> None:
        if self._pos < len(self._entries) - 1:
            self._pos += 1
            self._go(self._entries[self._pos], "pop")

    def _go(self, url: str, kind: str) -> None:
        self._document.url = url
        for cb in list(self._listeners):
            try:
                cb(kind, url)
            except Exception:
                LOG.error("navigation listener failed (%s %s)", kind, url, exc_info=True)


class LiveDocument:
    """
    `lock` serializes tree changes. The host and the enricher both write to
    the soup, and the enricher may run on a scheduler worker thread, so
    anything that edits or walks the tree from another thread holds it.
    """

    def __init__(self, html: str, url: str = "", *, ready_state: str = "loading") -> None:
        self.soup = BeautifulSoup(html, "html5lib")
        self.lock = threading.RLock()
        self.url = url
        self._ready_state = ready_state
        self._mutation_observers: list[MutationCallback] = []
        self._capture_listeners: list[ClickCallback] = []
        self._click_handlers: dict[int, list[ClickCallback]] = {}
        self._ready_callbacks: list[Callable[[], None]] = []
        self.history = History(self)

    # ---- tree access ------------------------------------------------------

    @property
    def body(self) -> Tag:
        body = self.soup.body
        return body if body is not None else self.soup

    def select(self, css: str) -> list[Tag]:
        return self.soup.select(css)

    def select_one(self, css: str) -> Tag | None:
        return self.soup.select_one(css)

    def new_tag(self, name: str, **attrs: Any) -> Tag:
        return self.soup.new_tag(name, attrs=attrs)

    def resolve(self, href: str) -> str:
        return urljoin(self.url, href) if self.url else href

    def render(self) -> str:
        with self.lock:
            return str(self.soup)

    # ---- mutation ---------------------------------------------------------

    def observe_mutations(self, cb: MutationCallback) -> None:
        self._mutation_observers.append(cb)

    def append_html(self, parent: Tag, markup: str) -> list[Tag]:
        nodes = parse_fragment(markup)
        with self.lock:
            for node in nodes:
                parent.append(node)
        self._notify(nodes)
        return [n for n in nodes if isinstance(n, Tag)]

    def replace_children(self, parent: Tag, markup: str) -> list[Tag]:
        """Client-side re-render: old children go, the new fragment is inserted."""
        nodes = parse_fragment(markup)
        with self.lock:
            parent.clear()
            for node in nodes:
                parent.append(node)
        self._notify(nodes)
        return [n for n in nodes if isinstance(n, Tag)]

    def insert_after(self, ref: Tag, node: Tag) -> None:
        with self.lock:
            ref.insert_after(node)
        self._notify([node])

    def _notify(self, nodes: list[Any]) -> None:
        inserted = [n for n in nodes if isinstance(n, Tag)]
        if not inserted:
            return
        for cb in list(self._mutation_observers):
            try:
                cb(inserted)
            except Exception:
                LOG.error("mutation observer failed", exc_info=True)

    # ---- ready state ------------------------------------------------------

    @property
    def ready_state(self) -> str:
        return self._ready_state

    def set_ready_state(self, state: str) -> None:
        if state not in READY_STATES:
            raise ValueError(f"unknown ready state {state!r}")
        self._ready_state = state
        if state == "loading":
            return
        pending, self._ready_callbacks = self._ready_callbacks, []
        for cb in pending:
            try:
                cb()
            except Exception:
                LOG.error("ready callback failed", exc_info=True)

    def on_ready(self, cb: Callable[[], None]) -> None:
        """Run `cb` once the document is interactive (now, if it already is)."""
        if self._ready_state in ("interactive", "complete"):
            cb()
        else:
            self._ready_callbacks.append(cb)

    # ---- clicks -----------------------------------------------------------

    def add_click_listener(self, cb: ClickCallback) -> None:
        """Document-level listener, capturing phase: runs before element handlers."""
        self._capture_listeners.append(cb)

    def on_click(self, element: Tag, cb: ClickCallback) -> None:
        self._click_handlers.setdefault(id(element), []).append(cb)

    def click(self, element: Tag) -> None:
        for cb in list(self._capture_listeners):
            try:
                cb(element)
            except Exception:
                LOG.error("click listener failed", exc_info=True)
        node: Any = element
        while isinstance(node, Tag):
            for cb in self._click_handlers.get(id(node), []):
                cb(element)
            node = node.parent
