"""
MCP server relaying browser operations to a Chrome extension peer.

This module provides the stdio entry point and protocol handling. Tool calls
are forwarded through the RelayBroker (relay.py) to the single connected peer.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any

from .config import BridgeConfig
from .errors import INVALID_PARAMS, PARSE_ERROR, BridgeError, UnknownOperation
from .relay import RelayBroker
from .server.contract import (
    DEFAULT_PROTOCOL_VERSION,
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    initialize_result,
    select_protocol,
    tools_list,
)
from .server.definitions import TOOL_NAMES
from .server.redaction import redact_jsonrpc_for_log, redact_tool_arguments
from .server.types import ToolResult
from .tools.screenshot import decode_data_url

logger = logging.getLogger("mcp.chrome_bridge")

__all__ = [
    "SUPPORTED_PROTOCOL_VERSIONS",
    "LATEST_PROTOCOL_VERSION",
    "DEFAULT_PROTOCOL_VERSION",
    "McpServer",
    "main",
]


def _write_message(payload: dict[str, Any]) -> None:
    """Write JSON-RPC message to stdout."""
    data = json.dumps(payload, ensure_ascii=False)
    if os.environ.get("MCP_TRACE"):
        logger.info("send %s", redact_jsonrpc_for_log(payload))
    sys.stdout.buffer.write((data + "\n").encode())
    sys.stdout.buffer.flush()


def _read_message() -> dict[str, Any] | None:
    """Read one JSON-RPC message from stdin; None on EOF, {} for a blank line."""
    line = sys.stdin.buffer.readline()
    if not line:
        return None
    line = line.strip()
    if not line:
        return {}
    try:
        msg = json.loads(line.decode())
    except ValueError:
        logger.warning("mcp_parse_error size=%s", len(line))
        _write_message({"jsonrpc": "2.0", "id": None, "error": {"code": PARSE_ERROR, "message": "Parse error"}})
        return {}
    if os.environ.get("MCP_TRACE"):
        logger.info("recv %s", redact_jsonrpc_for_log(msg) if isinstance(msg, dict) else msg)
    return msg if isinstance(msg, dict) else {}


class McpServer:
    """MCP server whose tools are executed by the remote browser peer."""

    def __init__(self, config: BridgeConfig | None = None, *, broker: RelayBroker | None = None) -> None:
        self.config = config or BridgeConfig.from_env()
        self.broker_error: str | None = None
        if broker is None:
            broker = RelayBroker(self.config, on_notification=self._on_peer_notification)
            try:
                # Fail-soft: keep serving initialize/tools/list while the port is busy.
                broker.start(wait_timeout=2.0, require_listening=False)
            except Exception as exc:
                self.broker_error = str(exc)
                logger.error("relay_start_failed: %s", exc)
        self.broker = broker

    def _on_peer_notification(self, event: dict[str, Any]) -> None:
        params = event.get("params") or {}
        tab = params.get("tab") if isinstance(params, dict) else None
        logger.info(
            "peer_event method=%s type=%s tab=%s",
            event.get("method"),
            params.get("eventType") if isinstance(params, dict) else None,
            tab.get("id") if isinstance(tab, dict) else None,
        )

    def handle_initialize(self, request_id: Any, params: dict[str, Any] | None = None) -> None:
        """Handle initialize request."""
        requested = (params or {}).get("protocolVersion") if isinstance(params, dict) else None
        _write_message({"jsonrpc": "2.0", "id": request_id, "result": initialize_result(select_protocol(requested))})

    def handle_list_tools(self, request_id: Any) -> None:
        """Handle tools/list request."""
        _write_message({"jsonrpc": "2.0", "id": request_id, "result": {"tools": tools_list()}})

    def _log_call(self, name: str, arguments: Any) -> None:
        """Log tool call with sanitized arguments."""
        logger.info("tool=%s args=%s", name, redact_tool_arguments(name, arguments))

    def call_tool(self, name: str, arguments: dict[str, Any] | None) -> ToolResult:
        """Relay one tool call; every failure comes back as an error ToolResult."""
        self._log_call(name, arguments)
        try:
            if not name:
                raise BridgeError("Missing tool name", code=INVALID_PARAMS)
            if name not in TOOL_NAMES:
                raise UnknownOperation(name, kind="tool")
            if arguments is None:
                raise BridgeError("No arguments provided", code=INVALID_PARAMS)
            if not isinstance(arguments, dict):
                raise BridgeError("Tool arguments must be an object", code=INVALID_PARAMS)
            result = self.broker.dispatch(name, arguments)
        except BridgeError as exc:
            logger.info("tool_error tool=%s kind=%s code=%s reason=%s", name, exc.kind, exc.code, exc.message)
            return ToolResult.from_exception(exc, tool=name or None)
        except Exception as exc:
            logger.exception("tool_call_failed")
            return ToolResult.error(str(exc), tool=name or None)

        if name == "chrome_capture_screenshot" and isinstance(result, str):
            try:
                mime, raw = decode_data_url(result)
            except ValueError:
                return ToolResult.json(result)
            b64 = result.split(",", 1)[1]
            return ToolResult.with_image({"ok": True, "mimeType": mime, "bytes": len(raw)}, b64, mime)
        return ToolResult.json(result)

    def handle_call_tool(self, request_id: Any, name: str, arguments: dict[str, Any] | None) -> None:
        result = self.call_tool(name, arguments)
        _write_message(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {"content": result.to_content_list(), "isError": result.is_error},
            }
        )

    def dispatch(self, message: dict[str, Any]) -> None:
        """Dispatch incoming JSON-RPC message to appropriate handler."""
        if not message:
            return

        method = message.get("method")
        request_id = message.get("id")
        params = message.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            logger.warning("mcp_invalid_params method=%s type=%s", method, type(params).__name__)
            if "id" in message:
                _write_message(
                    {
                        "jsonrpc": "2.0",
                        "id": request_id,
                        "error": {"code": INVALID_PARAMS, "message": "params must be an object"},
                    }
                )
            return

        if method == "initialize":
            self.handle_initialize(request_id, params)
        elif method == "notifications/initialized":
            return
        elif method in ("tools/list", "list_tools"):
            self.handle_list_tools(request_id)
        elif method in ("tools/call", "call_tool"):
            name = params.get("name")
            arguments = params.get("arguments", params.get("args"))
            self.handle_call_tool(request_id, name or "", arguments)
        elif method == "ping":
            _write_message({"jsonrpc": "2.0", "id": request_id, "result": {}})
        else:
            _write_message(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "error": {"code": -32601, "message": f"Method {method} not found"},
                }
            )

    def close(self) -> None:
        self.broker.stop()


def main() -> None:
    """Main entry point for MCP server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    server = McpServer()
    try:
        while True:
            message = _read_message()
            if message is None:
                break
            server.dispatch(message)
    finally:
        server.close()


if __name__ == "__main__":
    main()
