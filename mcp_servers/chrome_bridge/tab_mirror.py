from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from .browser_platform import TabInfo

if TYPE_CHECKING:
    from .browser_platform import BrowserPlatform

logger = logging.getLogger("mcp.chrome_bridge.tabs")

TabSubscriber = Callable[[str, dict[str, Any], dict[str, Any]], None]


class TabStateMirror:
    """Local copy of the browser's tab inventory, kept current by lifecycle events.

    Handlers are last-write-wins per tab id. Every mutation is pushed to
    subscribers as ``(event_type, tab_dict, additional_info)``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tabs: dict[int, TabInfo] = {}
        self._content_ready: set[int] = set()
        self._subscribers: list[TabSubscriber] = []

    def subscribe(self, callback: TabSubscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock, contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return _unsubscribe

    async def seed(self, platform: BrowserPlatform) -> int:
        tabs = await platform.query_tabs()
        with self._lock:
            for tab in tabs:
                self._tabs[tab.id] = tab
        logger.info("tab_mirror_seeded count=%s", len(tabs))
        return len(tabs)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle events
    # ─────────────────────────────────────────────────────────────────────────

    def on_created(self, tab: TabInfo) -> None:
        with self._lock:
            self._tabs[tab.id] = tab
        self._notify("created", tab, {})

    def on_updated(self, tab: TabInfo, change_info: dict[str, Any]) -> None:
        with self._lock:
            self._tabs[tab.id] = tab
            if change_info.get("status") == "loading":
                self._content_ready.discard(tab.id)
        self._notify("updated", tab, dict(change_info))

    def on_removed(self, tab_id: int, remove_info: dict[str, Any]) -> None:
        with self._lock:
            tab = self._tabs.pop(tab_id, None)
            self._content_ready.discard(tab_id)
        self._notify("removed", tab or TabInfo(id=tab_id), dict(remove_info))

    def on_activated(self, tab: TabInfo) -> None:
        with self._lock:
            for other in list(self._tabs.values()):
                if other.window_id == tab.window_id and other.active and other.id != tab.id:
                    self._tabs[other.id] = replace(other, active=False)
            self._tabs[tab.id] = replace(tab, active=True)
            current = self._tabs[tab.id]
        self._notify("activated", current, {"windowId": tab.window_id})

    def mark_content_ready(self, tab_id: int) -> None:
        with self._lock:
            tab = self._tabs.get(tab_id)
            if tab is None:
                return
            self._content_ready.add(tab_id)
        self._notify("content_ready", tab, {})

    # ─────────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────────

    def all_tabs(self) -> list[TabInfo]:
        with self._lock:
            return sorted(self._tabs.values(), key=lambda t: (t.window_id, t.index))

    def tab(self, tab_id: int) -> TabInfo | None:
        with self._lock:
            return self._tabs.get(tab_id)

    def active_tab(self, window_id: int | None = None) -> TabInfo | None:
        for t in self.all_tabs():
            if t.active and (window_id is None or t.window_id == window_id):
                return t
        return None

    def is_content_ready(self, tab_id: int) -> bool:
        with self._lock:
            return tab_id in self._content_ready

    def _notify(self, event_type: str, tab: TabInfo, additional: dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        payload = tab.to_dict()
        for cb in subscribers:
            try:
                cb(event_type, payload, additional)
            except Exception:
                logger.exception("tab_subscriber_failed event=%s", event_type)


__all__ = ["TabStateMirror", "TabSubscriber"]
