"""
Type definitions for MCP tool results.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from ..errors import BridgeError


@dataclass(slots=True)
class ToolContent:
    """Single content item in tool response."""

    type: str  # "text" or "image"
    text: str | None = None
    data: str | None = None  # base64 for images
    mime_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP content format."""
        if self.type == "image":
            return {"type": "image", "data": self.data, "mimeType": self.mime_type}
        return {"type": "text", "text": self.text}


def _dumps(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2, default=str)


@dataclass(slots=True)
class ToolResult:
    """Result of a tool execution."""

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    # Raw payload kept for in-process callers and tests; not part of the wire format.
    data: Any | None = None

    @classmethod
    def text(cls, text: str) -> ToolResult:
        return cls(content=[ToolContent(type="text", text=text or "")])

    @classmethod
    def error(
        cls,
        message: str,
        *,
        code: int | None = None,
        tool: str | None = None,
        kind: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        """Create an error result with a JSON body: {ok:false, error, code, tool, ...}."""
        payload: dict[str, Any] = {"ok": False, "error": message}
        if code is not None:
            payload["code"] = int(code)
        if tool:
            payload["tool"] = tool
        if kind:
            payload["kind"] = kind
        if details:
            payload["details"] = details
        return cls(content=[ToolContent(type="text", text=_dumps(payload))], is_error=True, data=payload)

    @classmethod
    def from_exception(cls, exc: BridgeError, *, tool: str | None = None) -> ToolResult:
        return cls.error(exc.message, code=exc.code, tool=tool, kind=exc.kind, details=exc.details)

    @classmethod
    def json(cls, data: Any) -> ToolResult:
        """Create result with the JSON-encoded payload as text content."""
        return cls(content=[ToolContent(type="text", text=_dumps(data))], data=data)

    @classmethod
    def with_image(cls, data: Any, data_b64: str, mime_type: str = "image/png") -> ToolResult:
        """JSON text plus an image item. Omits the image if data is empty."""
        content = [ToolContent(type="text", text=_dumps(data))]
        if data_b64:
            content.append(ToolContent(type="image", data=data_b64, mime_type=mime_type))
        return cls(content=content, data=data)

    def to_content_list(self) -> list[dict[str, Any]]:
        """Convert to MCP content list format."""
        return [c.to_dict() for c in self.content]


__all__ = ["ToolContent", "ToolResult"]
