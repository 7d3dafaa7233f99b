"""
Peer-side operation registry.

Maps each relay method name to an async handler backed by the browser platform
and the tab mirror. `handle_request` is the dispatch boundary: every failure is
turned into an error reply envelope here and never escapes to the socket loop.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ..errors import INTERNAL_ERROR, INVALID_PARAMS, BridgeError, MissingArgument, TabNotFound, UnknownOperation
from .dom import DomExecutor, ensure_scriptable
from .operations import parse_operation
from .screenshot import encode_capture

if TYPE_CHECKING:
    from ..browser_platform import BrowserPlatform
    from ..tab_mirror import TabStateMirror

logger = logging.getLogger("mcp.chrome_bridge.dispatch")

PeerHandler = Callable[[dict[str, Any]], Awaitable[Any]]

PEER_METHODS: tuple[str, ...] = (
    "chrome_get_active_tab",
    "chrome_get_all_tabs",
    "chrome_execute_script",
    "chrome_inject_css",
    "chrome_get_extension_info",
    "chrome_send_message",
    "chrome_get_cookies",
    "chrome_capture_screenshot",
    "chrome_create_tab",
)


def reply_envelope(
    request_id: Any,
    method: str | None,
    *,
    result: Any = None,
    error: BridgeError | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if error is not None:
        payload["error"] = error.to_dict()
    else:
        payload["result"] = result
    return payload


def _require(params: dict[str, Any], name: str, method: str) -> Any:
    value = params.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingArgument(name, method)
    return value


def _tab_id(value: Any, method: str) -> int:
    if isinstance(value, bool):
        raise BridgeError(f"tab_id must be a number for {method}", code=INVALID_PARAMS)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise BridgeError(f"tab_id must be a number for {method}", code=INVALID_PARAMS) from exc


class PeerDispatcher:
    """Route relay method calls to browser capabilities and the DOM executor."""

    def __init__(
        self,
        platform: BrowserPlatform,
        mirror: TabStateMirror,
        *,
        on_page_log: Callable[[int, str], None] | None = None,
    ) -> None:
        self.platform = platform
        self.mirror = mirror
        self._on_page_log = on_page_log
        self._handlers: dict[str, PeerHandler] = {
            "chrome_get_active_tab": self._get_active_tab,
            "chrome_get_all_tabs": self._get_all_tabs,
            "chrome_execute_script": self._execute_script,
            "chrome_inject_css": self._inject_css,
            "chrome_get_extension_info": self._get_extension_info,
            "chrome_send_message": self._send_message,
            "chrome_get_cookies": self._get_cookies,
            "chrome_capture_screenshot": self._capture_screenshot,
            "chrome_create_tab": self._create_tab,
        }

    def has(self, method: str) -> bool:
        return method in self._handlers

    @property
    def method_names(self) -> list[str]:
        return list(self._handlers.keys())

    async def dispatch(self, method: str, params: dict[str, Any] | None = None) -> Any:
        handler = self._handlers.get(method)
        if handler is None:
            raise UnknownOperation(method)
        return await handler(params if isinstance(params, dict) else {})

    async def handle_request(self, message: dict[str, Any]) -> dict[str, Any]:
        """Execute one request envelope and build its reply (never raises)."""
        request_id = message.get("id")
        method = message.get("method")
        params = message.get("params")
        if not isinstance(method, str) or not method:
            return reply_envelope(request_id, None, error=BridgeError("Missing method", code=INVALID_PARAMS))
        try:
            result = await self.dispatch(method, params if isinstance(params, dict) else {})
        except BridgeError as exc:
            logger.info("peer_op_failed method=%s code=%s reason=%s", method, exc.code, exc.message)
            return reply_envelope(request_id, method, error=exc)
        except Exception as exc:
            logger.exception("peer_op_crashed method=%s", method)
            return reply_envelope(request_id, method, error=BridgeError(str(exc) or type(exc).__name__, code=INTERNAL_ERROR))
        return reply_envelope(request_id, method, result=result)

    # ─────────────────────────────────────────────────────────────────────────
    # Tabs
    # ─────────────────────────────────────────────────────────────────────────

    async def _get_active_tab(self, _params: dict[str, Any]) -> dict[str, Any] | None:
        tab = self.mirror.active_tab()
        return tab.to_dict() if tab is not None else None

    async def _get_all_tabs(self, _params: dict[str, Any]) -> list[dict[str, Any]]:
        return [t.to_dict() for t in self.mirror.all_tabs()]

    async def _create_tab(self, params: dict[str, Any]) -> dict[str, Any]:
        index = params.get("index")
        window_id = params.get("windowId")
        tab = await self.platform.create_tab(
            str(params.get("url") or "about:blank"),
            active=bool(params.get("active", True)),
            index=int(index) if isinstance(index, (int, float)) and not isinstance(index, bool) else None,
            window_id=int(window_id) if isinstance(window_id, (int, float)) and not isinstance(window_id, bool) else None,
        )
        return tab.to_dict()

    # ─────────────────────────────────────────────────────────────────────────
    # Page content
    # ─────────────────────────────────────────────────────────────────────────

    async def _scriptable_tab(self, params: dict[str, Any], method: str) -> int:
        tab_id = _tab_id(_require(params, "tab_id", method), method)
        tab = await self.platform.get_tab(tab_id)
        if tab is None:
            raise TabNotFound(tab_id)
        ensure_scriptable(tab.url)
        return tab_id

    async def _execute_script(self, params: dict[str, Any]) -> Any:
        method = "chrome_execute_script"
        tab_id = await self._scriptable_tab(params, method)
        op = parse_operation(_require(params, "operation", method))

        page = await self.platform.get_document(tab_id)
        if not self.mirror.is_content_ready(tab_id):
            self.mirror.mark_content_ready(tab_id)

        page_log = self._on_page_log
        executor = DomExecutor(
            page,
            on_log=(lambda message: page_log(tab_id, message)) if page_log is not None else None,
            on_click=lambda el: self.platform.follow_link(tab_id, el),
        )
        return executor.execute(op)

    async def _inject_css(self, params: dict[str, Any]) -> bool:
        method = "chrome_inject_css"
        tab_id = await self._scriptable_tab(params, method)
        css = _require(params, "css", method)
        await self.platform.inject_css(tab_id, str(css))
        return True

    # ─────────────────────────────────────────────────────────────────────────
    # Extensions / cookies / capture
    # ─────────────────────────────────────────────────────────────────────────

    async def _get_extension_info(self, params: dict[str, Any]) -> Any:
        extension_id = params.get("extension_id")
        if extension_id:
            return await self.platform.get_extension(str(extension_id))
        return await self.platform.list_extensions()

    async def _send_message(self, params: dict[str, Any]) -> Any:
        method = "chrome_send_message"
        extension_id = _require(params, "extension_id", method)
        message = _require(params, "message", method)
        return await self.platform.send_extension_message(str(extension_id), message)

    async def _get_cookies(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        domain = _require(params, "domain", "chrome_get_cookies")
        return await self.platform.get_cookies(str(domain))

    async def _capture_screenshot(self, params: dict[str, Any]) -> str:
        method = "chrome_capture_screenshot"
        raw_tab = params.get("tab_id")
        tab_id = _tab_id(raw_tab, method) if raw_tab is not None else None
        frame = await self.platform.capture_visible(tab_id)
        return encode_capture(
            frame,
            fmt=str(params.get("format") or "png"),
            quality=params.get("quality"),
            area=params.get("area"),
        )


__all__ = ["PEER_METHODS", "PeerDispatcher", "PeerHandler", "reply_envelope"]
