"""
Error taxonomy shared by the relay and the peer.

Every error carries a JSON-RPC style integer code so it can be put on the wire
as ``{"code": ..., "message": ...}`` and rebuilt on the other side.
"""

from __future__ import annotations

from typing import Any

PARSE_ERROR = -32700
INVALID_PARAMS = -32602
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class BridgeError(Exception):
    """Base error with a wire code and optional structured details."""

    code: int = INTERNAL_ERROR

    def __init__(self, message: str, *, code: int | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = int(code)
        self.details: dict[str, Any] = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {"code": int(self.code), "message": self.message}

    @property
    def kind(self) -> str:
        return type(self).__name__


# Relay side


class NoPeerConnection(BridgeError):
    code = -32001

    def __init__(self, message: str = "No active Chrome extension connection") -> None:
        super().__init__(message)


class PeerTimeout(BridgeError):
    code = -32002

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(
            f"Timeout waiting for Chrome extension response: method={method} timeout={timeout:g}s",
            details={"method": method, "timeout": timeout},
        )


class PeerDisconnected(BridgeError):
    code = -32003

    def __init__(self, message: str = "Chrome extension disconnected before replying") -> None:
        super().__init__(message)


class MalformedPeerResponse(BridgeError):
    code = -32004


class SocketError(BridgeError):
    code = -32005


class PeerOperationError(BridgeError):
    """Error reply produced by the peer, re-raised on the relay side."""


class CorrelationIdCollision(BridgeError):
    code = -32099

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Correlation id already in flight: {request_id}", details={"id": request_id})


# Peer side


class MissingArgument(BridgeError):
    code = INVALID_PARAMS

    def __init__(self, field: str, action: str) -> None:
        super().__init__(
            f"Missing required argument '{field}' for {action}",
            details={"field": field, "action": action},
        )
        self.field = field
        self.action = action


class UnknownOperation(BridgeError):
    code = METHOD_NOT_FOUND

    def __init__(self, name: str, *, kind: str = "method") -> None:
        super().__init__(f"Unknown {kind}: {name}", details={"name": name})
        self.name = name


class ElementNotFound(BridgeError):
    code = -32010

    def __init__(self, selector: str) -> None:
        super().__init__(f"Element not found: {selector}", details={"selector": selector})
        self.selector = selector


class RestrictedTarget(BridgeError):
    code = -32011

    def __init__(self, url: str) -> None:
        super().__init__(f"Cannot execute script on restricted page: {url}", details={"url": url})
        self.url = url


class TabNotFound(BridgeError):
    code = -32012

    def __init__(self, tab_id: Any) -> None:
        super().__init__(f"Tab {tab_id} not found", details={"tabId": tab_id})
        self.tab_id = tab_id


def error_from_wire(payload: Any) -> BridgeError:
    """Rebuild an error from an ``error`` envelope member."""
    if not isinstance(payload, dict):
        return MalformedPeerResponse(f"Invalid error payload: {payload!r}")
    message = payload.get("message")
    try:
        code = int(payload.get("code"))
    except Exception:
        code = INTERNAL_ERROR
    return PeerOperationError(str(message) if message else "Peer operation failed", code=code)


__all__ = [
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "BridgeError",
    "CorrelationIdCollision",
    "ElementNotFound",
    "MalformedPeerResponse",
    "MissingArgument",
    "NoPeerConnection",
    "PeerDisconnected",
    "PeerOperationError",
    "PeerTimeout",
    "RestrictedTarget",
    "SocketError",
    "TabNotFound",
    "UnknownOperation",
    "error_from_wire",
]
