from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765


def _float_env(name: str, *, default: float, lo: float, hi: float) -> float:
    try:
        val = float(os.environ.get(name) or default)
    except Exception:
        val = default
    return max(lo, min(val, hi))


def _int_env(name: str, *, default: int, lo: int, hi: int) -> int:
    try:
        val = int(os.environ.get(name) or default)
    except Exception:
        val = default
    return max(lo, min(val, hi))


def _bool_env(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() not in {"0", "false", "no", ""}


@dataclass
class BridgeConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    call_timeout: float = 30.0
    heartbeat_interval: float = 30.0
    heartbeat_timeout: float = 10.0
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 32.0
    max_reconnect_attempts: int = 5
    liveness_interval: float = 60.0
    close_superseded: bool = False

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{int(self.port)}"

    @classmethod
    def from_env(cls) -> BridgeConfig:
        host = (os.environ.get("MCP_BRIDGE_HOST") or DEFAULT_HOST).strip() or DEFAULT_HOST
        return cls(
            host=host,
            port=_int_env("MCP_BRIDGE_PORT", default=DEFAULT_PORT, lo=1, hi=65535),
            call_timeout=_float_env("MCP_BRIDGE_CALL_TIMEOUT", default=30.0, lo=0.1, hi=600.0),
            heartbeat_interval=_float_env("MCP_BRIDGE_HEARTBEAT_INTERVAL", default=30.0, lo=0.05, hi=3600.0),
            heartbeat_timeout=_float_env("MCP_BRIDGE_HEARTBEAT_TIMEOUT", default=10.0, lo=0.05, hi=600.0),
            reconnect_base_delay=_float_env("MCP_BRIDGE_RECONNECT_BASE", default=1.0, lo=0.001, hi=60.0),
            reconnect_max_delay=_float_env("MCP_BRIDGE_RECONNECT_CAP", default=32.0, lo=0.001, hi=3600.0),
            max_reconnect_attempts=_int_env("MCP_BRIDGE_MAX_RECONNECT_ATTEMPTS", default=5, lo=0, hi=100),
            liveness_interval=_float_env("MCP_BRIDGE_LIVENESS_INTERVAL", default=60.0, lo=0.05, hi=3600.0),
            close_superseded=_bool_env("MCP_BRIDGE_CLOSE_SUPERSEDED", default=False),
        )


def backoff_delay(attempt: int, *, base: float = 1.0, cap: float = 32.0) -> float:
    """Reconnect delay for the given 1-based attempt: base * 2**(attempt-1), capped."""
    n = max(1, int(attempt))
    return float(min(base * (2 ** (n - 1)), cap))


__all__ = ["DEFAULT_HOST", "DEFAULT_PORT", "BridgeConfig", "backoff_delay"]
