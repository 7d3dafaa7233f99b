from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

import websockets

from .config import BridgeConfig, backoff_delay
from .errors import PARSE_ERROR, BridgeError
from .tools.registry import reply_envelope

if TYPE_CHECKING:
    from .tab_mirror import TabStateMirror
    from .tools.registry import PeerDispatcher

logger = logging.getLogger("mcp.chrome_bridge.peer")

HEARTBEAT_METHOD = "heartbeat"
TAB_UPDATE_METHOD = "tab_update"


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STALE = "stale"
    HALTED = "halted"


StateCallback = Callable[[ConnectionState, dict[str, Any]], None]


def heartbeat_request() -> dict[str, Any]:
    return {"jsonrpc": "2.0", "method": HEARTBEAT_METHOD, "params": {}}


def heartbeat_ack() -> dict[str, Any]:
    return {"jsonrpc": "2.0", "method": HEARTBEAT_METHOD, "result": {"type": "heartbeat_response"}}


def is_heartbeat_ack(msg: dict[str, Any]) -> bool:
    result = msg.get("result")
    return isinstance(result, dict) and result.get("type") == "heartbeat_response"


def _socket_is_open(ws: Any) -> bool:
    if ws is None:
        return False
    state = getattr(ws, "state", None)
    return getattr(state, "name", None) == "OPEN"


def _abort(ws: Any) -> None:
    transport = getattr(ws, "transport", None)
    if transport is not None:
        with contextlib.suppress(Exception):
            transport.abort()


class PeerConnectionManager:
    """Outbound socket from the browser side to the relay.

    One authoritative `state` drives connect, heartbeat, stale detection and
    bounded exponential reconnect. Every connect attempt gets a new generation;
    callbacks belonging to an older generation are ignored. Timers are always
    cancelled before being replaced.
    """

    def __init__(
        self,
        dispatcher: PeerDispatcher,
        *,
        config: BridgeConfig | None = None,
        mirror: TabStateMirror | None = None,
        connector: Callable[..., Any] | None = None,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self.dispatcher = dispatcher
        self._connector = connector or websockets.connect
        self._on_state_change = on_state_change

        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._generation = 0
        self._stopped = True
        self._last_error: str | None = None
        self._connected_at_ms = 0

        self._loop: asyncio.AbstractEventLoop | None = None
        self._ws: Any | None = None
        self._reader: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._liveness_task: asyncio.Task | None = None
        self._heartbeat_deadline: asyncio.TimerHandle | None = None
        self._reconnect_timer: asyncio.TimerHandle | None = None
        self._heartbeat_pending = False
        self._tasks: set[asyncio.Task] = set()

        self._unsubscribe: Callable[[], None] | None = None
        if mirror is not None:
            self._unsubscribe = mirror.subscribe(self._on_tab_event)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def heartbeat_pending(self) -> bool:
        return self._heartbeat_pending

    async def start(self) -> None:
        if not self._stopped:
            return
        self._loop = asyncio.get_running_loop()
        self._stopped = False
        self._liveness_task = asyncio.create_task(self._liveness_loop())
        await self._connect()

    async def stop(self) -> None:
        """Release every timer and task, then close the socket."""
        self._stopped = True
        self._generation += 1
        self._cancel_reconnect()
        self._cancel_heartbeat()
        for task in (self._liveness_task, self._reader, *self._tasks):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self._liveness_task = None
        self._reader = None
        self._tasks.clear()

        ws = self._ws
        self._ws = None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._set_state(ConnectionState.DISCONNECTED, reason="stopped")

    async def restart(self) -> None:
        """Leave HALTED (or any state) and start over with a fresh attempt counter."""
        self._cancel_reconnect()
        self._attempts = 0
        if self._state is ConnectionState.CONNECTED:
            return
        self._state = ConnectionState.DISCONNECTED
        if self._stopped:
            await self.start()
            return
        await self._connect()

    async def wait_connected(self, *, timeout: float = 5.0) -> bool:
        deadline = time.time() + max(0.0, float(timeout))
        while time.time() < deadline:
            if self._state is ConnectionState.CONNECTED:
                return True
            await asyncio.sleep(0.01)
        return self._state is ConnectionState.CONNECTED

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "url": self.config.url,
            "attempts": self._attempts,
            "heartbeatPending": self._heartbeat_pending,
            **({"connectedAtMs": self._connected_at_ms} if self._connected_at_ms else {}),
            **({"lastError": self._last_error} if self._last_error else {}),
        }

    def _set_state(self, state: ConnectionState, **info: Any) -> None:
        self._state = state
        logger.info("peer_state state=%s %s", state.value, " ".join(f"{k}={v}" for k, v in info.items()))
        cb = self._on_state_change
        if cb is not None:
            try:
                cb(state, dict(info))
            except Exception:
                logger.exception("peer_state_callback_failed")

    def _spawn(self, coro: Any) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ─────────────────────────────────────────────────────────────────────────
    # Connect / lose / reconnect
    # ─────────────────────────────────────────────────────────────────────────

    async def _connect(self) -> None:
        if self._stopped or self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        self._generation += 1
        gen = self._generation
        self._set_state(ConnectionState.CONNECTING, attempt=self._attempts)

        try:
            ws = await self._connector(
                self.config.url,
                ping_interval=None,
                open_timeout=max(1.0, self.config.heartbeat_timeout),
                max_size=16 * 1024 * 1024,
            )
        except Exception as exc:
            if gen == self._generation and not self._stopped:
                self._last_error = str(exc) or type(exc).__name__
                logger.info("peer_connect_failed url=%s err=%s", self.config.url, self._last_error)
                self._lose(gen, self._last_error)
            return

        if gen != self._generation or self._stopped:
            with contextlib.suppress(Exception):
                await ws.close()
            return

        self._ws = ws
        self._attempts = 0
        self._last_error = None
        self._connected_at_ms = _now_ms()
        self._set_state(ConnectionState.CONNECTED, url=self.config.url)
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(gen))
        self._reader = asyncio.create_task(self._read_loop(ws, gen))

    def _lose(self, gen: int, reason: str, *, stale: bool = False) -> None:
        """Tear down the current socket (if any) and schedule the next attempt."""
        if gen != self._generation or self._stopped:
            return
        self._generation += 1
        self._cancel_heartbeat()

        reader = self._reader
        self._reader = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()

        ws = self._ws
        self._ws = None
        if ws is not None:
            _abort(ws)
        if stale:
            self._set_state(ConnectionState.STALE, reason=reason)
        self._schedule_reconnect(reason)

    def _schedule_reconnect(self, reason: str) -> None:
        self._cancel_reconnect()
        if self._stopped:
            return
        self._attempts += 1
        if self._attempts > self.config.max_reconnect_attempts:
            logger.error("peer_reconnect_halted attempts=%s reason=%s", self._attempts - 1, reason)
            self._set_state(ConnectionState.HALTED, reason=reason, attempts=self._attempts - 1)
            return

        delay = backoff_delay(
            self._attempts,
            base=self.config.reconnect_base_delay,
            cap=self.config.reconnect_max_delay,
        )
        self._set_state(ConnectionState.DISCONNECTED, reason=reason, attempt=self._attempts, delay=delay)
        loop = self._loop or asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(delay, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._reconnect_timer = None
        if self._stopped or self._state is not ConnectionState.DISCONNECTED:
            return
        self._spawn(self._connect())

    def _cancel_reconnect(self) -> None:
        timer = self._reconnect_timer
        self._reconnect_timer = None
        if timer is not None:
            timer.cancel()

    async def _liveness_loop(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.config.liveness_interval)
            if self._state is ConnectionState.CONNECTED and not _socket_is_open(self._ws):
                logger.warning("peer_liveness_mismatch state=connected socket=closed")
                self._lose(self._generation, "liveness check: socket not open")

    # ─────────────────────────────────────────────────────────────────────────
    # Heartbeat
    # ─────────────────────────────────────────────────────────────────────────

    async def _heartbeat_loop(self, gen: int) -> None:
        while gen == self._generation and self._state is ConnectionState.CONNECTED:
            await asyncio.sleep(self.config.heartbeat_interval)
            if gen != self._generation or self._state is not ConnectionState.CONNECTED:
                return
            await self._send_heartbeat(gen)

    async def _send_heartbeat(self, gen: int) -> None:
        ws = self._ws
        try:
            await self._send_json(ws, heartbeat_request())
        except Exception as exc:
            self._lose(gen, f"heartbeat send failed: {exc}")
            return
        # An unacknowledged heartbeat keeps its original deadline; only an ack disarms it.
        if self._heartbeat_pending and self._heartbeat_deadline is not None:
            return
        self._heartbeat_pending = True
        loop = self._loop or asyncio.get_running_loop()
        self._heartbeat_deadline = loop.call_later(self.config.heartbeat_timeout, self._on_heartbeat_timeout, gen)

    def _on_heartbeat_timeout(self, gen: int) -> None:
        self._heartbeat_deadline = None
        if gen != self._generation or self._state is not ConnectionState.CONNECTED:
            return
        logger.warning("peer_heartbeat_timeout timeout=%ss", self.config.heartbeat_timeout)
        self._heartbeat_pending = False
        self._lose(gen, "heartbeat timeout", stale=True)

    def _cancel_deadline(self) -> None:
        handle = self._heartbeat_deadline
        self._heartbeat_deadline = None
        if handle is not None:
            handle.cancel()

    def _cancel_heartbeat(self) -> None:
        self._cancel_deadline()
        self._heartbeat_pending = False
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    # ─────────────────────────────────────────────────────────────────────────
    # Inbound traffic
    # ─────────────────────────────────────────────────────────────────────────

    async def _read_loop(self, ws: Any, gen: int) -> None:
        reason = "socket closed"
        try:
            async for raw in ws:
                if gen != self._generation:
                    return
                await self._on_frame(ws, gen, raw)
        except Exception as exc:
            reason = f"socket error: {exc}"
        if gen == self._generation:
            self._lose(gen, reason)

    async def _on_frame(self, ws: Any, gen: int, raw: Any) -> None:
        try:
            msg = json.loads(raw)
        except Exception:
            logger.warning("peer_unparseable_frame size=%s", len(raw) if raw else 0)
            with contextlib.suppress(Exception):
                await self._send_json(
                    ws,
                    reply_envelope(None, None, error=BridgeError("Parse error", code=PARSE_ERROR)),
                )
            return
        if not isinstance(msg, dict):
            return

        if msg.get("method") == HEARTBEAT_METHOD:
            if is_heartbeat_ack(msg) or "result" in msg:
                self._cancel_deadline()
                self._heartbeat_pending = False
                return
            with contextlib.suppress(Exception):
                await self._send_json(ws, heartbeat_ack())
            return

        self._spawn(self._serve(ws, gen, msg))

    async def _serve(self, ws: Any, gen: int, msg: dict[str, Any]) -> None:
        reply = await self.dispatcher.handle_request(msg)
        if gen != self._generation:
            logger.info("peer_reply_dropped id=%s reason=connection replaced", msg.get("id"))
            return
        try:
            await self._send_json(ws, reply)
        except Exception as exc:
            logger.info("peer_reply_send_failed id=%s err=%s", msg.get("id"), exc)

    # ─────────────────────────────────────────────────────────────────────────
    # Outbound notifications
    # ─────────────────────────────────────────────────────────────────────────

    def _on_tab_event(self, event_type: str, tab: dict[str, Any], additional: dict[str, Any]) -> None:
        loop = self._loop
        ws = self._ws
        if loop is None or ws is None or self._state is not ConnectionState.CONNECTED:
            return
        payload = {
            "jsonrpc": "2.0",
            "method": TAB_UPDATE_METHOD,
            "params": {"eventType": event_type, "tab": tab, "additionalInfo": additional},
        }
        asyncio.run_coroutine_threadsafe(self._notify(ws, payload), loop)

    async def _notify(self, ws: Any, payload: dict[str, Any]) -> None:
        try:
            await self._send_json(ws, payload)
        except Exception as exc:
            logger.info("peer_tab_update_failed err=%s", exc)

    async def _send_json(self, ws: Any, payload: dict[str, Any]) -> None:
        if ws is None:
            raise BridgeError("No socket")
        await ws.send(json.dumps(payload, ensure_ascii=False))


__all__ = [
    "HEARTBEAT_METHOD",
    "TAB_UPDATE_METHOD",
    "ConnectionState",
    "PeerConnectionManager",
    "heartbeat_ack",
    "heartbeat_request",
    "is_heartbeat_ack",
]
