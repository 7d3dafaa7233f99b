"""Tool schema definitions (the nine relayed browser operations)."""

from __future__ import annotations

from typing import Any

from ..tools.operations import DOM_ACTIONS, REQUIRED_FIELDS

_SCALAR = ["string", "number", "boolean"]

TAB_ID_PROPERTY: dict[str, Any] = {"type": "number", "description": "The ID of the target tab"}


def _dom_required_rules() -> list[dict[str, Any]]:
    return [
        {
            "if": {"properties": {"action": {"const": action}}},
            "then": {"required": list(required)},
        }
        for action, required in REQUIRED_FIELDS.items()
        if required
    ]


GET_ACTIVE_TAB_TOOL: dict[str, Any] = {
    "name": "chrome_get_active_tab",
    "description": "Get information about the currently active tab",
    "inputSchema": {"type": "object", "properties": {}},
}

GET_ALL_TABS_TOOL: dict[str, Any] = {
    "name": "chrome_get_all_tabs",
    "description": "Get information about all open tabs",
    "inputSchema": {"type": "object", "properties": {}},
}

EXECUTE_SCRIPT_TOOL: dict[str, Any] = {
    "name": "chrome_execute_script",
    "description": """Execute DOM operations in the context of a web page.
USAGE:
- Read: operation={"action": "querySelector", "selector": "h1"}
- Write: operation={"action": "setText", "selector": "#status", "value": "done"}
- Create + attach: operation={"action": "createElement", "tagName": "div", "innerText": "hi"}
  then operation={"action": "appendChild", "selector": "body", "elementId": "<returned elementId>"}

Single-node actions fail with "Element not found: <selector>" when nothing matches;
querySelectorAll/getElementsInfo return [] instead.""",
    "inputSchema": {
        "type": "object",
        "properties": {
            "tab_id": TAB_ID_PROPERTY,
            "operation": {
                "type": "object",
                "description": "DOM operation details",
                "required": ["action"],
                "properties": {
                    "action": {
                        "type": "string",
                        "enum": list(DOM_ACTIONS),
                        "description": "The type of DOM operation to perform",
                    },
                    "selector": {"type": "string", "description": "CSS selector for targeting elements"},
                    "value": {
                        "type": _SCALAR,
                        "description": "Value to set (for setText, setHTML, setAttribute, etc.)",
                    },
                    "attribute": {
                        "type": "string",
                        "description": "Attribute name for setAttribute/removeAttribute operations",
                    },
                    "tagName": {"type": "string", "description": "Tag name for createElement operation"},
                    "attributes": {
                        "type": "object",
                        "description": "Attributes for createElement operation",
                        "additionalProperties": {"type": _SCALAR},
                    },
                    "innerText": {"type": "string", "description": "Inner text for createElement operation"},
                    "elementId": {"type": "string", "description": "Element ID for appendChild operation"},
                    "message": {"type": "string", "description": "Message for log operation"},
                },
                "allOf": _dom_required_rules(),
            },
        },
        "required": ["tab_id", "operation"],
    },
}

INJECT_CSS_TOOL: dict[str, Any] = {
    "name": "chrome_inject_css",
    "description": "Inject CSS into a web page",
    "inputSchema": {
        "type": "object",
        "properties": {
            "tab_id": TAB_ID_PROPERTY,
            "css": {"type": "string", "description": "CSS code to inject"},
        },
        "required": ["tab_id", "css"],
    },
}

GET_EXTENSION_INFO_TOOL: dict[str, Any] = {
    "name": "chrome_get_extension_info",
    "description": "Get information about installed extensions",
    "inputSchema": {
        "type": "object",
        "properties": {
            "extension_id": {"type": "string", "description": "Specific extension ID to query"},
        },
    },
}

SEND_MESSAGE_TOOL: dict[str, Any] = {
    "name": "chrome_send_message",
    "description": "Send a message to an extension's background script",
    "inputSchema": {
        "type": "object",
        "properties": {
            "extension_id": {"type": "string", "description": "Target extension ID"},
            "message": {"type": "object", "description": "Message payload to send"},
        },
        "required": ["extension_id", "message"],
    },
}

GET_COOKIES_TOOL: dict[str, Any] = {
    "name": "chrome_get_cookies",
    "description": "Get cookies for a specific domain",
    "inputSchema": {
        "type": "object",
        "properties": {
            "domain": {"type": "string", "description": "Domain to get cookies for"},
        },
        "required": ["domain"],
    },
}

CAPTURE_SCREENSHOT_TOOL: dict[str, Any] = {
    "name": "chrome_capture_screenshot",
    "description": "Take a screenshot of the current tab",
    "inputSchema": {
        "type": "object",
        "properties": {
            "tab_id": {"type": "number", "description": "The ID of the target tab (defaults to active tab)"},
            "format": {
                "type": "string",
                "description": "Image format ('png' or 'jpeg', defaults to 'png')",
                "enum": ["png", "jpeg"],
                "default": "png",
            },
            "quality": {
                "type": "number",
                "description": "Image quality for jpeg format (0-100)",
                "minimum": 0,
                "maximum": 100,
            },
            "area": {
                "type": "object",
                "description": "Capture specific area",
                "properties": {
                    "x": {"type": "number"},
                    "y": {"type": "number"},
                    "width": {"type": "number"},
                    "height": {"type": "number"},
                },
                "required": ["x", "y", "width", "height"],
            },
        },
    },
}

CREATE_TAB_TOOL: dict[str, Any] = {
    "name": "chrome_create_tab",
    "description": "Create a new tab with specified URL and options",
    "inputSchema": {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "URL to open in the new tab"},
            "active": {"type": "boolean", "description": "Whether the new tab should be active", "default": True},
            "index": {"type": "number", "description": "The position the tab should take in the window"},
            "windowId": {"type": "number", "description": "The window to create the new tab in"},
        },
    },
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    GET_ACTIVE_TAB_TOOL,
    GET_ALL_TABS_TOOL,
    EXECUTE_SCRIPT_TOOL,
    INJECT_CSS_TOOL,
    GET_EXTENSION_INFO_TOOL,
    SEND_MESSAGE_TOOL,
    GET_COOKIES_TOOL,
    CAPTURE_SCREENSHOT_TOOL,
    CREATE_TAB_TOOL,
]

TOOL_NAMES: frozenset[str] = frozenset(t["name"] for t in TOOL_DEFINITIONS)

__all__ = [
    "CAPTURE_SCREENSHOT_TOOL",
    "CREATE_TAB_TOOL",
    "EXECUTE_SCRIPT_TOOL",
    "GET_ACTIVE_TAB_TOOL",
    "GET_ALL_TABS_TOOL",
    "GET_COOKIES_TOOL",
    "GET_EXTENSION_INFO_TOOL",
    "INJECT_CSS_TOOL",
    "SEND_MESSAGE_TOOL",
    "TOOL_DEFINITIONS",
    "TOOL_NAMES",
]
