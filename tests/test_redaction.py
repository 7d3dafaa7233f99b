from __future__ import annotations

import json


def test_redact_url_keeps_normal_query() -> None:
    from mcp_servers.chrome_bridge.server.redaction import redact_url

    url = "https://example.com/search?q=hello&sort=asc"
    assert redact_url(url) == url


def test_redact_url_redacts_sensitive_query_param_but_keeps_others() -> None:
    from mcp_servers.chrome_bridge.server.redaction import redact_url

    out = redact_url("https://example.com/?token=abc&q=hello")
    assert "q=hello" in out
    assert "token=abc" not in out
    assert "token=" in out and "redacted" in out


def test_redact_url_handles_oauth_fragment_and_userinfo() -> None:
    from mcp_servers.chrome_bridge.server.redaction import redact_url

    out = redact_url("https://user:pw@example.com/callback#access_token=abc&state=1")
    assert "state=1" in out
    assert "access_token=abc" not in out
    assert "user:pw" not in out
    assert out.startswith("https://example.com/callback#")


def test_author_is_not_a_secret_but_auth_is() -> None:
    from mcp_servers.chrome_bridge.server.redaction import redact_url

    out = redact_url("https://example.com/?author=John&auth=abc&q=hello")
    assert "author=John" in out
    assert "auth=abc" not in out


def test_tool_arguments_hide_payloads() -> None:
    from mcp_servers.chrome_bridge.server.redaction import redact_tool_arguments

    msg = redact_tool_arguments("chrome_send_message", {"extension_id": "ext1", "message": {"secret": "x"}})
    assert msg == {"extension_id": "ext1", "message": "<redacted dict keys=1>"}

    css = redact_tool_arguments("chrome_inject_css", {"tab_id": 1, "css": "body{}"})
    assert css["css"] == "<redacted str len=6>"

    tab = redact_tool_arguments("chrome_create_tab", {"url": "https://a.test/?session=1&x=2"})
    assert "session=1" not in tab["url"] and "x=2" in tab["url"]

    script = redact_tool_arguments(
        "chrome_execute_script",
        {"tab_id": 1, "operation": {"action": "setText", "selector": "p", "value": "short"}},
    )
    assert script["operation"]["value"] == "short"


def test_result_text_hides_cookie_values_and_images() -> None:
    from mcp_servers.chrome_bridge.server.redaction import redact_result_text

    cookies = json.dumps([{"name": "sid", "value": "abc123", "domain": ".example.com"}])
    out = redact_result_text(cookies)
    assert "abc123" not in out
    assert "example.com" in out

    shot = redact_result_text(json.dumps({"image": "data:image/png;base64," + "A" * 4000}))
    assert "AAAA" not in shot
    assert "image/png" in shot


def test_jsonrpc_frames_are_redacted_for_trace() -> None:
    from mcp_servers.chrome_bridge.server.redaction import redact_jsonrpc_for_log

    call = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "tools/call",
        "params": {"name": "chrome_inject_css", "args": {"tab_id": 1, "css": "x"}},
    }
    out = redact_jsonrpc_for_log(call)
    assert out["params"]["arguments"]["css"].startswith("<redacted")
    assert "args" not in out["params"]
    assert call["params"]["args"]["css"] == "x"

    reply = {
        "jsonrpc": "2.0",
        "id": 2,
        "result": {"content": [{"type": "image", "data": "QUJD" * 100, "mimeType": "image/png"}], "isError": False},
    }
    red = redact_jsonrpc_for_log(reply)
    assert red["result"]["content"][0]["data"] == "<omitted base64 len=400>"
