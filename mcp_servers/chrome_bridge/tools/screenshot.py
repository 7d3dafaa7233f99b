"""Encode captured frames the way captureVisibleTab returns them (data URL)."""

from __future__ import annotations

import base64
from io import BytesIO
from typing import Any

from PIL import Image

from ..errors import INVALID_PARAMS, BridgeError

SUPPORTED_FORMATS = {"png": "PNG", "jpeg": "JPEG"}


def _clip_box(area: dict[str, Any], size: tuple[int, int]) -> tuple[int, int, int, int]:
    try:
        x = int(round(float(area["x"])))
        y = int(round(float(area["y"])))
        w = int(round(float(area["width"])))
        h = int(round(float(area["height"])))
    except (KeyError, TypeError, ValueError) as exc:
        raise BridgeError("area requires numeric x, y, width and height", code=INVALID_PARAMS) from exc
    if w <= 0 or h <= 0:
        raise BridgeError("area width and height must be positive", code=INVALID_PARAMS)

    max_w, max_h = size
    left = max(0, min(x, max_w))
    top = max(0, min(y, max_h))
    right = max(left, min(x + w, max_w))
    bottom = max(top, min(y + h, max_h))
    if right == left or bottom == top:
        raise BridgeError("area lies outside the visible viewport", code=INVALID_PARAMS)
    return left, top, right, bottom


def encode_capture(
    frame: Image.Image,
    *,
    fmt: str = "png",
    quality: int | float | None = None,
    area: dict[str, Any] | None = None,
) -> str:
    fmt = (fmt or "png").strip().lower()
    pil_format = SUPPORTED_FORMATS.get(fmt)
    if pil_format is None:
        raise BridgeError(f"Unsupported image format: {fmt}", code=INVALID_PARAMS)

    img = frame
    if area is not None:
        if not isinstance(area, dict):
            raise BridgeError("area must be an object", code=INVALID_PARAMS)
        img = img.crop(_clip_box(area, img.size))

    buffer = BytesIO()
    if pil_format == "JPEG":
        q = 100 if quality is None else max(0, min(int(quality), 100))
        img.convert("RGB").save(buffer, format="JPEG", quality=q)
    else:
        img.save(buffer, format="PNG")
    return f"data:image/{fmt};base64," + base64.b64encode(buffer.getvalue()).decode()


def decode_data_url(url: str) -> tuple[str, bytes]:
    """Split a ``data:image/...;base64,`` URL into (mime type, raw bytes)."""
    head, _, data = (url or "").partition(",")
    if not head.startswith("data:") or not head.endswith(";base64"):
        raise ValueError("not a base64 data URL")
    return head[len("data:") : -len(";base64")], base64.b64decode(data)


__all__ = ["SUPPORTED_FORMATS", "decode_data_url", "encode_capture"]
