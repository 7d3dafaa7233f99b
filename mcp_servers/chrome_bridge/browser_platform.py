"""
Browser capabilities used by the peer.

`BrowserPlatform` is the boundary to real browser primitives (tab inventory,
documents, cookie store, extension registry, screen capture). `InMemoryBrowser`
implements it over parsed HTML so a headless peer can serve the bridge.
"""

from __future__ import annotations

import copy
import itertools
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Protocol
from urllib.parse import urljoin

from bs4 import Tag
from PIL import Image

from .errors import BridgeError, TabNotFound
from .tools.dom import PageDocument, text_content

logger = logging.getLogger("mcp.chrome_bridge.platform")

BLANK_PAGE = "<html><head><title></title></head><body></body></html>"


@dataclass(frozen=True, slots=True)
class TabInfo:
    id: int
    url: str = "about:blank"
    title: str = ""
    active: bool = False
    window_id: int = 1
    index: int = 0
    status: str = "complete"

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["windowId"] = d.pop("window_id")
        return d


class TabEventListener(Protocol):
    def on_created(self, tab: TabInfo) -> None: ...

    def on_updated(self, tab: TabInfo, change_info: dict[str, Any]) -> None: ...

    def on_removed(self, tab_id: int, remove_info: dict[str, Any]) -> None: ...

    def on_activated(self, tab: TabInfo) -> None: ...


class BrowserPlatform(Protocol):
    async def query_tabs(self, *, active: bool | None = None, window_id: int | None = None) -> list[TabInfo]: ...

    async def get_tab(self, tab_id: int) -> TabInfo | None: ...

    async def create_tab(
        self,
        url: str = "about:blank",
        *,
        active: bool = True,
        index: int | None = None,
        window_id: int | None = None,
    ) -> TabInfo: ...

    async def get_document(self, tab_id: int) -> PageDocument: ...

    async def inject_css(self, tab_id: int, css: str) -> None: ...

    async def get_cookies(self, domain: str) -> list[dict[str, Any]]: ...

    async def get_extension(self, extension_id: str) -> dict[str, Any]: ...

    async def list_extensions(self) -> list[dict[str, Any]]: ...

    async def send_extension_message(self, extension_id: str, message: Any) -> Any: ...

    async def capture_visible(self, tab_id: int | None = None) -> Image.Image: ...

    def follow_link(self, tab_id: int, element: Tag) -> None: ...


def cookie_domain_matches(cookie_domain: str, domain: str) -> bool:
    cd = (cookie_domain or "").strip().lstrip(".").lower()
    d = (domain or "").strip().lstrip(".").lower()
    if not cd or not d:
        return False
    return cd == d or cd.endswith("." + d)


@dataclass
class _Extension:
    info: dict[str, Any]
    on_message: Callable[[Any], Any] | None = None


@dataclass
class InMemoryBrowser:
    """Tab/document/cookie/extension state held in memory."""

    viewport: tuple[int, int] = (1280, 800)
    pages: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._tabs: dict[int, TabInfo] = {}
        self._documents: dict[int, PageDocument] = {}
        self._ids = itertools.count(1)
        self._listeners: list[TabEventListener] = []
        self._cookies: list[dict[str, Any]] = []
        self._extensions: dict[str, _Extension] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Setup
    # ─────────────────────────────────────────────────────────────────────────

    def add_listener(self, listener: TabEventListener) -> None:
        self._listeners.append(listener)

    def add_page(self, url: str, html: str) -> None:
        self.pages[url] = html

    def add_cookie(self, **cookie: Any) -> None:
        self._cookies.append(dict(cookie))

    def add_extension(self, info: dict[str, Any], *, on_message: Callable[[Any], Any] | None = None) -> None:
        ext_id = str(info.get("id") or "").strip()
        if not ext_id:
            raise ValueError("extension info requires an 'id'")
        self._extensions[ext_id] = _Extension(info=dict(info), on_message=on_message)

    # ─────────────────────────────────────────────────────────────────────────
    # Tabs
    # ─────────────────────────────────────────────────────────────────────────

    async def query_tabs(self, *, active: bool | None = None, window_id: int | None = None) -> list[TabInfo]:
        tabs = sorted(self._tabs.values(), key=lambda t: (t.window_id, t.index))
        if active is not None:
            tabs = [t for t in tabs if t.active is active]
        if window_id is not None:
            tabs = [t for t in tabs if t.window_id == window_id]
        return tabs

    async def get_tab(self, tab_id: int) -> TabInfo | None:
        return self._tabs.get(int(tab_id))

    async def create_tab(
        self,
        url: str = "about:blank",
        *,
        active: bool = True,
        index: int | None = None,
        window_id: int | None = None,
    ) -> TabInfo:
        wid = int(window_id) if window_id is not None else 1
        siblings = [t for t in self._tabs.values() if t.window_id == wid]
        pos = len(siblings) if index is None else max(0, min(int(index), len(siblings)))
        for t in siblings:
            if t.index >= pos:
                self._tabs[t.id] = replace(t, index=t.index + 1)

        tab_id = next(self._ids)
        tab = TabInfo(id=tab_id, url=url or "about:blank", active=False, window_id=wid, index=pos, status="loading")
        self._tabs[tab_id] = tab
        self._emit_created(tab)
        self._load(tab_id, tab.url)
        if active:
            await self.activate_tab(tab_id)
        return self._tabs[tab_id]

    async def activate_tab(self, tab_id: int) -> TabInfo:
        tab = self._require(tab_id)
        for t in list(self._tabs.values()):
            if t.window_id == tab.window_id and t.active and t.id != tab.id:
                self._tabs[t.id] = replace(t, active=False)
        tab = replace(tab, active=True)
        self._tabs[tab.id] = tab
        for listener in list(self._listeners):
            listener.on_activated(tab)
        return tab

    async def navigate(self, tab_id: int, url: str) -> TabInfo:
        self._require(tab_id)
        self._load(int(tab_id), url)
        return self._tabs[int(tab_id)]

    async def close_tab(self, tab_id: int) -> None:
        tab = self._require(tab_id)
        del self._tabs[tab.id]
        self._documents.pop(tab.id, None)
        for t in list(self._tabs.values()):
            if t.window_id == tab.window_id and t.index > tab.index:
                self._tabs[t.id] = replace(t, index=t.index - 1)
        info = {"windowId": tab.window_id, "isWindowClosing": False}
        for listener in list(self._listeners):
            listener.on_removed(tab.id, info)

    def _require(self, tab_id: int) -> TabInfo:
        tab = self._tabs.get(int(tab_id))
        if tab is None:
            raise TabNotFound(tab_id)
        return tab

    def _load(self, tab_id: int, url: str) -> None:
        tab = replace(self._tabs[tab_id], url=url, status="loading")
        self._tabs[tab_id] = tab
        self._emit_updated(tab, {"status": "loading", "url": url})

        page = PageDocument.parse(url, self.pages.get(url, BLANK_PAGE))
        self._documents[tab_id] = page
        title = text_content(page.soup.title) if page.soup.title is not None else ""
        tab = replace(tab, title=title, status="complete")
        self._tabs[tab_id] = tab
        self._emit_updated(tab, {"status": "complete"})

    def _emit_created(self, tab: TabInfo) -> None:
        for listener in list(self._listeners):
            listener.on_created(tab)

    def _emit_updated(self, tab: TabInfo, change_info: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            listener.on_updated(tab, dict(change_info))

    # ─────────────────────────────────────────────────────────────────────────
    # Documents
    # ─────────────────────────────────────────────────────────────────────────

    async def get_document(self, tab_id: int) -> PageDocument:
        self._require(tab_id)
        return self._documents[int(tab_id)]

    async def inject_css(self, tab_id: int, css: str) -> None:
        page = await self.get_document(tab_id)
        soup = page.soup
        style = soup.new_tag("style")
        style.string = css
        head = soup.head
        if head is None:
            head = soup.new_tag("head")
            root = soup.html or soup
            root.insert(0, head)
        head.append(style)

    def follow_link(self, tab_id: int, element: Tag) -> None:
        href = element.get("href") if element.name == "a" else None
        if not href:
            return
        tab = self._tabs.get(int(tab_id))
        if tab is None:
            return
        target = urljoin(tab.url, str(href))
        if target.startswith("javascript:") or target.split("#", 1)[0] == tab.url.split("#", 1)[0]:
            return
        logger.info("follow_link tab=%s url=%s", tab_id, target)
        self._load(int(tab_id), target)

    # ─────────────────────────────────────────────────────────────────────────
    # Cookies / extensions / capture
    # ─────────────────────────────────────────────────────────────────────────

    async def get_cookies(self, domain: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(c) for c in self._cookies if cookie_domain_matches(str(c.get("domain") or ""), domain)]

    async def get_extension(self, extension_id: str) -> dict[str, Any]:
        ext = self._extensions.get(str(extension_id))
        if ext is None:
            raise BridgeError(f"Failed to find extension with id {extension_id}.")
        return copy.deepcopy(ext.info)

    async def list_extensions(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(ext.info) for ext in self._extensions.values()]

    async def send_extension_message(self, extension_id: str, message: Any) -> Any:
        ext = self._extensions.get(str(extension_id))
        if ext is None or ext.on_message is None:
            raise BridgeError("Could not establish connection. Receiving end does not exist.")
        return ext.on_message(message)

    async def capture_visible(self, tab_id: int | None = None) -> Image.Image:
        if tab_id is not None:
            self._require(tab_id)
        elif not any(t.active for t in self._tabs.values()):
            raise BridgeError("No active tab to capture")
        return Image.new("RGB", self.viewport, "white")


__all__ = [
    "BLANK_PAGE",
    "BrowserPlatform",
    "InMemoryBrowser",
    "TabEventListener",
    "TabInfo",
    "cookie_domain_matches",
]
