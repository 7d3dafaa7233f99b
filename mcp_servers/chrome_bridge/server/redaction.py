"""Redaction utilities for logging.

Prefers safety over fidelity: cookie values, extension message payloads, CSS
bodies and URL secrets never reach the log verbatim.
"""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_SUBSTRINGS = (
    "token",
    "secret",
    "password",
    "passwd",
    "pwd",
    "authorization",
    "cookie",
    "session",
    "jwt",
    "bearer",
    "api-key",
    "api_key",
    "apikey",
)

# Exact only: "author" must stay readable.
_SENSITIVE_EXACT = {"auth", "pass", "sid"}


def is_sensitive_key(key: str) -> bool:
    k = (key or "").strip().lower()
    if not k:
        return False
    if k in _SENSITIVE_EXACT:
        return True
    return any(s in k for s in _SENSITIVE_SUBSTRINGS)


def _looks_like_query_string(value: str) -> bool:
    return isinstance(value, str) and "=" in value


def _redact_pairs(raw: str) -> tuple[str, bool]:
    pairs = parse_qsl(raw, keep_blank_values=True)
    redacted_any = False
    out_pairs: list[tuple[str, str]] = []
    for k, v in pairs:
        if is_sensitive_key(k) and v:
            out_pairs.append((k, "<redacted>"))
            redacted_any = True
        else:
            out_pairs.append((k, v))
    if not redacted_any:
        return raw, False
    return urlencode(out_pairs, doseq=True), True


def redact_url(url: str) -> str:
    """Redact suspicious URL parameters without destroying normal queries.

    - Keeps non-sensitive query params intact.
    - Redacts values for keys like token/auth/secret/api-key.
    - Sanitizes an OAuth-style fragment (``#access_token=...``).
    - Removes userinfo (``user:pass@host``) from netloc.

    Returns the original URL unchanged when nothing needed redaction.
    """
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    changed = False
    netloc = parts.netloc
    query = parts.query
    fragment = parts.fragment

    if "@" in netloc:
        netloc = netloc.split("@", 1)[1]
        changed = True
    if query:
        query, redacted = _redact_pairs(query)
        changed = changed or redacted
    if fragment and _looks_like_query_string(fragment):
        fragment, redacted = _redact_pairs(fragment)
        changed = changed or redacted

    if not changed:
        return url
    return urlunsplit((parts.scheme, netloc, parts.path, query, fragment))


def _redacted_summary(value: Any) -> str:
    if value is None:
        return "<redacted>"
    if isinstance(value, str):
        return f"<redacted str len={len(value)}>"
    if isinstance(value, (list, tuple, set)):
        return f"<redacted list len={len(value)}>"
    if isinstance(value, dict):
        return f"<redacted dict keys={len(value)}>"
    return "<redacted>"


def redact_tool_arguments(tool: str, args: dict[str, Any]) -> dict[str, Any]:
    """Redact tool arguments for safe logging."""
    if not isinstance(args, dict):
        return {}
    return _redact_any(args, tool=tool, key=None)


def _redact_any(value: Any, *, tool: str, key: str | None) -> Any:
    lk = (key or "").lower()
    if tool == "chrome_send_message" and lk == "message":
        return _redacted_summary(value)
    if tool == "chrome_inject_css" and lk == "css":
        return _redacted_summary(value)
    if tool == "chrome_execute_script" and lk in {"value", "innertext"} and isinstance(value, str) and len(value) > 200:
        return _redacted_summary(value)
    if is_sensitive_key(lk):
        return _redacted_summary(value)

    if isinstance(value, dict):
        return {k: _redact_any(v, tool=tool, key=str(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact_any(v, tool=tool, key=key) for v in value]
    if isinstance(value, str) and lk == "url":
        return redact_url(value)
    return value


def redact_result_text(text: str, *, max_chars: int = 512) -> str:
    """Redact a tool result body (JSON text) for trace logs."""
    try:
        obj = json.loads(text)
    except ValueError:
        return text[:max_chars] + (f"… <truncated len={len(text)}>" if len(text) > max_chars else "")
    out = json.dumps(_redact_output(obj), ensure_ascii=False)
    if len(out) > max_chars:
        out = out[:max_chars] + f"… <truncated len={len(out)}>"
    return out


def _redact_output(value: Any) -> Any:
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            lk = str(k).lower()
            if lk == "value" and "domain" in value:
                out[k] = _redacted_summary(v)
            elif lk == "url" and isinstance(v, str):
                out[k] = redact_url(v)
            elif is_sensitive_key(lk):
                out[k] = _redacted_summary(v)
            else:
                out[k] = _redact_output(v)
        return out
    if isinstance(value, list):
        return [_redact_output(v) for v in value]
    if isinstance(value, str) and value.startswith("data:image/"):
        return f"<omitted {value.split(';', 1)[0][5:]} len={len(value)}>"
    return value


def redact_jsonrpc_for_log(payload: dict[str, Any]) -> dict[str, Any]:
    """Redact an MCP frame for the trace log."""
    msg = dict(payload) if isinstance(payload, dict) else {}

    if msg.get("method") in {"tools/call", "call_tool"}:
        params = msg.get("params")
        if isinstance(params, dict):
            name = params.get("name")
            args = params.get("arguments") or params.get("args")
            if isinstance(name, str) and isinstance(args, dict):
                params = dict(params)
                params["arguments"] = redact_tool_arguments(name, args)
                params.pop("args", None)
                msg["params"] = params

    result = msg.get("result")
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        content = []
        for item in result["content"]:
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str):
                item = {**item, "text": redact_result_text(item["text"])}
            elif isinstance(item, dict) and item.get("type") == "image" and isinstance(item.get("data"), str):
                item = {**item, "data": f"<omitted base64 len={len(item['data'])}>"}
            content.append(item)
        msg["result"] = {**result, "content": content}

    return msg


__all__ = [
    "is_sensitive_key",
    "redact_jsonrpc_for_log",
    "redact_result_text",
    "redact_tool_arguments",
    "redact_url",
]
