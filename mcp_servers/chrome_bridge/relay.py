from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import itertools
import json
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import websockets

from .config import BridgeConfig
from .errors import (
    CorrelationIdCollision,
    MalformedPeerResponse,
    NoPeerConnection,
    PeerDisconnected,
    PeerTimeout,
    SocketError,
    error_from_wire,
)
from .peer import HEARTBEAT_METHOD, heartbeat_ack

logger = logging.getLogger("mcp.chrome_bridge.relay")

MAX_FRAME_BYTES = 16 * 1024 * 1024


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class PendingCall:
    request_id: str
    method: str
    deadline: float
    connection: Any
    future: asyncio.Future


class PeerSlot:
    """Holds the single active peer socket; takeover goes through `supersede`."""

    def __init__(self) -> None:
        self._ws: Any | None = None

    @property
    def current(self) -> Any | None:
        return self._ws

    def supersede(self, new: Any) -> Any | None:
        old = self._ws
        self._ws = new
        return old if old is not new else None

    def clear_if(self, ws: Any) -> bool:
        if self._ws is ws:
            self._ws = None
            return True
        return False


class RelayBroker:
    """WebSocket relay between the MCP server and one browser peer.

    - Sync `dispatch()` for the stdio server; the asyncio server runs on a daemon thread.
    - Pending calls live in a table keyed by correlation id, so replies may arrive in any order.
    - Fail-fast: with no peer connected nothing is sent and `NoPeerConnection` is raised.
    """

    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        on_notification: Callable[[dict[str, Any]], None] | None = None,
        max_notifications: int = 500,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self._on_notification = on_notification

        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._connected = threading.Event()

        self._server: Any | None = None
        self._bind_error: str | None = None
        self._slot = PeerSlot()
        self._peer_last_seen_ms = 0
        self._peer_connected_at_ms = 0

        self._seq = itertools.count(1)
        self._pending: dict[str, PendingCall] = {}
        self._notifications: deque[dict[str, Any]] = deque(maxlen=max(1, int(max_notifications)))

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self, *, wait_timeout: float = 5.0, require_listening: bool = True) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop.clear()
        with self._lock:
            self._bind_error = None

        t = threading.Thread(target=self._run_thread, name="mcp-chrome-bridge-relay", daemon=True)
        self._thread = t
        t.start()

        deadline = time.time() + max(0.05, float(wait_timeout))
        while time.time() < deadline:
            with self._lock:
                if self._server is not None:
                    return
            if not t.is_alive():
                break
            time.sleep(0.02)

        with self._lock:
            bind_error = self._bind_error
            listening = self._server is not None
        if listening:
            return
        if not t.is_alive():
            raise RuntimeError(f"Relay thread died during startup on {self.config.host}:{self.config.port}")
        if require_listening:
            raise RuntimeError(
                f"Relay bind failed on {self.config.host}:{self.config.port}: {bind_error or 'timed out'}"
            )

    def stop(self, *, timeout: float = 2.0) -> None:
        self._stop.set()
        loop = self._loop
        if loop is not None:
            with contextlib.suppress(Exception):
                asyncio.run_coroutine_threadsafe(self._shutdown_async(), loop).result(timeout=timeout)
        t = self._thread
        if t is not None:
            t.join(timeout=timeout)

    def status(self) -> dict[str, Any]:
        with self._lock:
            listening = self._server is not None
            bind_error = self._bind_error
            pending = len(self._pending)
            last_seen = self._peer_last_seen_ms
            connected_at = self._peer_connected_at_ms
            connected = self._slot.current is not None
            notifications = len(self._notifications)
        return {
            "listening": listening,
            "host": self.config.host,
            "port": self.config.port,
            "connected": connected,
            "pending": pending,
            "notifications": notifications,
            **({"connectedAtMs": connected_at} if connected and connected_at else {}),
            **({"lastSeenMs": last_seen} if last_seen else {}),
            **({"bindError": bind_error} if bind_error else {}),
        }

    def is_connected(self) -> bool:
        with self._lock:
            return self._slot.current is not None

    def wait_for_connection(self, *, timeout: float = 5.0) -> bool:
        return bool(self._connected.wait(timeout=max(0.0, float(timeout))))

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def notifications(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._notifications)

    def pop_notification(self) -> dict[str, Any] | None:
        with self._lock:
            return self._notifications.popleft() if self._notifications else None

    # ─────────────────────────────────────────────────────────────────────────
    # Calls
    # ─────────────────────────────────────────────────────────────────────────

    def dispatch(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        """Blocking call from a non-loop thread; raises BridgeError subclasses."""
        loop = self._loop
        if loop is None or not self.is_connected():
            raise NoPeerConnection()
        t = self.config.call_timeout if timeout is None else max(0.01, float(timeout))
        fut = asyncio.run_coroutine_threadsafe(self.call(method, params, timeout=t), loop)
        try:
            return fut.result(timeout=t + 5.0)
        except concurrent.futures.TimeoutError as exc:
            fut.cancel()
            raise PeerTimeout(method, t) from exc

    async def call(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        ws = self._slot.current
        if ws is None:
            raise NoPeerConnection()

        t = self.config.call_timeout if timeout is None else max(0.01, float(timeout))
        loop = asyncio.get_running_loop()
        request_id = self._next_request_id(method)
        with self._lock:
            if request_id in self._pending:
                raise CorrelationIdCollision(request_id)
            call = PendingCall(
                request_id=request_id,
                method=method,
                deadline=loop.time() + t,
                connection=ws,
                future=loop.create_future(),
            )
            self._pending[request_id] = call

        try:
            await self._send_json(
                ws,
                {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params if params is not None else {}},
            )
        except Exception as exc:
            self._forget(call)
            raise SocketError(f"Failed to send request to Chrome extension: {exc}") from exc

        try:
            return await asyncio.wait_for(call.future, timeout=t)
        except asyncio.TimeoutError:
            logger.info("relay_call_timeout id=%s method=%s timeout=%ss", request_id, method, t)
            raise PeerTimeout(method, t) from None
        finally:
            self._forget(call)

    def _next_request_id(self, method: str) -> str:
        return f"{method}_{time.monotonic_ns()}_{next(self._seq)}"

    def _forget(self, call: PendingCall) -> bool:
        with self._lock:
            if self._pending.get(call.request_id) is call:
                del self._pending[call.request_id]
                return True
        return False

    # ─────────────────────────────────────────────────────────────────────────
    # Server loop
    # ─────────────────────────────────────────────────────────────────────────

    def _run_thread(self) -> None:
        asyncio.run(self._run_async())

    async def _run_async(self) -> None:
        self._loop = asyncio.get_running_loop()
        backoff_s = 0.25
        max_backoff_s = 5.0
        try:
            while not self._stop.is_set():
                with self._lock:
                    has_server = self._server is not None
                if has_server:
                    await asyncio.sleep(0.1)
                    continue

                try:
                    server = await websockets.serve(
                        self._handle_connection,
                        self.config.host,
                        int(self.config.port),
                        max_size=MAX_FRAME_BYTES,
                        ping_interval=None,
                    )
                except OSError as exc:
                    with self._lock:
                        self._bind_error = str(exc)
                    logger.warning("relay_bind_failed host=%s port=%s err=%s", self.config.host, self.config.port, exc)
                    await asyncio.sleep(backoff_s)
                    backoff_s = min(backoff_s * 1.6, max_backoff_s)
                    continue

                with self._lock:
                    self._server = server
                    self._bind_error = None
                backoff_s = 0.25
                logger.info("relay_listening url=%s", self.config.url)
        finally:
            await self._shutdown_async()

    async def _shutdown_async(self) -> None:
        with self._lock:
            srv = self._server
            self._server = None
        if srv is not None:
            with contextlib.suppress(Exception):
                srv.close()
                await srv.wait_closed()

        ws = self._slot.current
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        self._release(ws, reason="Relay broker stopped")
        self._reject_all("Relay broker stopped")

    async def _handle_connection(self, ws: Any) -> None:
        with self._lock:
            old = self._slot.supersede(ws)
            self._peer_connected_at_ms = _now_ms()
            self._peer_last_seen_ms = self._peer_connected_at_ms
        self._connected.set()
        logger.info("relay_peer_connected remote=%s", getattr(ws, "remote_address", None))

        if old is not None:
            logger.info("relay_peer_superseded close_old=%s", self.config.close_superseded)
            if self.config.close_superseded:
                with contextlib.suppress(Exception):
                    await old.close(code=1001, reason="superseded")

        try:
            async for raw in ws:
                with self._lock:
                    self._peer_last_seen_ms = _now_ms()
                await self._on_message(ws, raw)
        except Exception as exc:
            logger.info("relay_peer_socket_error err=%s", exc)
        finally:
            self._release(ws, reason="Chrome extension disconnected before replying")

    def _release(self, ws: Any | None, *, reason: str) -> None:
        """Clear the slot (only if it still holds `ws`) and reject calls owned by `ws`."""
        if ws is None:
            return
        with self._lock:
            if self._slot.clear_if(ws):
                self._connected.clear()
                logger.info("relay_peer_disconnected")
            owned = [c for c in self._pending.values() if c.connection is ws]
            for c in owned:
                del self._pending[c.request_id]
        for c in owned:
            if not c.future.done():
                c.future.set_exception(PeerDisconnected(reason))

    def _reject_all(self, reason: str) -> None:
        with self._lock:
            calls = list(self._pending.values())
            self._pending.clear()
        for c in calls:
            if not c.future.done():
                c.future.set_exception(PeerDisconnected(reason))

    # ─────────────────────────────────────────────────────────────────────────
    # Inbound frames
    # ─────────────────────────────────────────────────────────────────────────

    async def _on_message(self, ws: Any, raw: Any) -> None:
        try:
            msg = json.loads(raw)
        except Exception:
            self._on_unparseable(ws, "invalid JSON")
            return
        if not isinstance(msg, dict):
            self._on_unparseable(ws, f"expected object, got {type(msg).__name__}")
            return

        method = msg.get("method")
        if method == HEARTBEAT_METHOD:
            if "result" in msg:
                return
            try:
                await self._send_json(ws, heartbeat_ack())
            except Exception as exc:
                logger.info("relay_heartbeat_ack_failed err=%s", exc)
            return

        req_id = msg.get("id")
        if req_id is None:
            if isinstance(method, str) and method and "error" not in msg:
                self._on_peer_notification(msg)
            else:
                logger.warning("relay_uncorrelated_error payload=%s", msg.get("error"))
            return

        with self._lock:
            call = self._pending.get(str(req_id))
        if call is None or call.connection is not ws:
            logger.info("relay_reply_dropped id=%s reason=no pending call", req_id)
            return
        if call.future.done():
            return

        if "error" in msg:
            call.future.set_exception(error_from_wire(msg.get("error")))
        elif "result" in msg:
            call.future.set_result(msg.get("result"))
        else:
            call.future.set_exception(MalformedPeerResponse(f"Reply for {call.method} has neither result nor error"))

    def _on_unparseable(self, ws: Any, detail: str) -> None:
        with self._lock:
            owned = [c for c in self._pending.values() if c.connection is ws and not c.future.done()]
        if len(owned) == 1:
            owned[0].future.set_exception(MalformedPeerResponse(f"Malformed reply for {owned[0].method}: {detail}"))
            return
        logger.warning("relay_malformed_frame detail=%s pending=%s", detail, len(owned))

    def _on_peer_notification(self, msg: dict[str, Any]) -> None:
        params = msg.get("params")
        event = {
            "ts": _now_ms(),
            "method": msg.get("method"),
            "params": params if isinstance(params, dict) else {},
        }
        with self._lock:
            self._notifications.append(event)
        cb = self._on_notification
        if cb is not None:
            try:
                cb(event)
            except Exception:
                logger.exception("relay_notification_callback_failed")

    async def _send_json(self, ws: Any, payload: dict[str, Any]) -> None:
        await ws.send(json.dumps(payload, ensure_ascii=False))


__all__ = ["MAX_FRAME_BYTES", "PeerSlot", "PendingCall", "RelayBroker"]
