from __future__ import annotations

import asyncio
import base64
from io import BytesIO
from typing import Any

PAGE = "<html><head><title>Home</title></head><body><a id='go' href='/about'>about</a></body></html>"


def _setup(**pages: str):
    from mcp_servers.chrome_bridge.browser_platform import InMemoryBrowser
    from mcp_servers.chrome_bridge.tab_mirror import TabStateMirror
    from mcp_servers.chrome_bridge.tools.registry import PeerDispatcher

    browser = InMemoryBrowser(viewport=(200, 100))
    browser.add_page("https://site.test/", PAGE)
    browser.add_page("https://site.test/about", "<html><head><title>About</title></head><body></body></html>")
    for url, html in pages.items():
        browser.add_page(url, html)
    mirror = TabStateMirror()
    browser.add_listener(mirror)
    return browser, mirror, PeerDispatcher(browser, mirror)


def _request(dispatcher, method: str, params: dict[str, Any] | None = None, req_id: str = "r1") -> dict[str, Any]:
    return asyncio.run(
        dispatcher.handle_request({"jsonrpc": "2.0", "id": req_id, "method": method, "params": params or {}})
    )


def test_reply_carries_same_id_and_method() -> None:
    _browser, _mirror, dispatcher = _setup()
    reply = _request(dispatcher, "chrome_get_all_tabs", req_id="chrome_get_all_tabs_1")
    assert reply == {"jsonrpc": "2.0", "id": "chrome_get_all_tabs_1", "method": "chrome_get_all_tabs", "result": []}


def test_unknown_method_is_error_envelope() -> None:
    _browser, _mirror, dispatcher = _setup()
    reply = _request(dispatcher, "chrome_reload_everything")
    assert reply["id"] == "r1"
    assert reply["error"]["code"] == -32601
    assert "chrome_reload_everything" in reply["error"]["message"]
    assert "result" not in reply


def test_create_tab_then_active_and_all_tabs() -> None:
    browser, mirror, dispatcher = _setup()

    async def _main() -> None:
        created = await dispatcher.dispatch("chrome_create_tab", {"url": "https://site.test/"})
        assert created["url"] == "https://site.test/"
        assert created["title"] == "Home"
        assert created["active"] is True
        assert created["windowId"] == 1

        await dispatcher.dispatch("chrome_create_tab", {"url": "https://other.test/", "active": False, "index": 0})
        active = await dispatcher.dispatch("chrome_get_active_tab", {})
        assert active["id"] == created["id"]

        tabs = await dispatcher.dispatch("chrome_get_all_tabs", {})
        assert sorted(t["url"] for t in tabs) == ["https://other.test/", "https://site.test/"]
        assert sum(1 for t in tabs if t["active"]) == 1

    asyncio.run(_main())


def test_execute_script_round_trip_and_click_follows_link() -> None:
    browser, mirror, dispatcher = _setup()

    async def _main() -> None:
        tab = await browser.create_tab("https://site.test/")
        info = await dispatcher.dispatch(
            "chrome_execute_script", {"tab_id": tab.id, "operation": {"action": "getPageInfo"}}
        )
        assert info["title"] == "Home"
        assert mirror.is_content_ready(tab.id)

        await dispatcher.dispatch(
            "chrome_execute_script", {"tab_id": tab.id, "operation": {"action": "click", "selector": "#go"}}
        )
        current = await browser.get_tab(tab.id)
        assert current.url == "https://site.test/about"
        assert mirror.tab(tab.id).title == "About"
        assert not mirror.is_content_ready(tab.id)

    asyncio.run(_main())


def test_execute_script_errors_become_envelopes() -> None:
    browser, _mirror, dispatcher = _setup()
    tab = asyncio.run(browser.create_tab("https://site.test/"))

    missing_tab = _request(dispatcher, "chrome_execute_script", {"operation": {"action": "getPageInfo"}})
    assert missing_tab["error"]["code"] == -32602
    assert "tab_id" in missing_tab["error"]["message"]

    not_found = _request(
        dispatcher,
        "chrome_execute_script",
        {"tab_id": tab.id, "operation": {"action": "setAttribute", "selector": "#nope", "attribute": "a", "value": 1}},
    )
    assert not_found["error"] == {"code": -32010, "message": "Element not found: #nope"}

    unknown_tab = _request(dispatcher, "chrome_execute_script", {"tab_id": 999, "operation": {"action": "log"}})
    assert unknown_tab["error"]["code"] == -32012


def test_execute_script_on_restricted_tab() -> None:
    browser, _mirror, dispatcher = _setup()
    tab = asyncio.run(browser.create_tab("chrome://extensions/"))
    reply = _request(
        dispatcher, "chrome_execute_script", {"tab_id": tab.id, "operation": {"action": "querySelector", "selector": "a"}}
    )
    assert reply["error"]["code"] == -32011
    assert "chrome://extensions/" in reply["error"]["message"]


def test_inject_css_appends_style() -> None:
    from mcp_servers.chrome_bridge.tools.dom import text_content

    browser, _mirror, dispatcher = _setup()

    async def _main() -> None:
        tab = await browser.create_tab("https://site.test/")
        assert await dispatcher.dispatch("chrome_inject_css", {"tab_id": tab.id, "css": "body{color:red}"}) is True
        page = await browser.get_document(tab.id)
        assert text_content(page.soup.head.find("style")) == "body{color:red}"

        found = await dispatcher.dispatch(
            "chrome_execute_script", {"tab_id": tab.id, "operation": {"action": "querySelector", "selector": "head > style"}}
        )
        assert found["text"] == "body{color:red}"

    asyncio.run(_main())


def test_cookies_filter_by_domain_including_subdomains() -> None:
    browser, _mirror, dispatcher = _setup()
    browser.add_cookie(name="sid", value="1", domain=".example.com")
    browser.add_cookie(name="pref", value="2", domain="www.example.com")
    browser.add_cookie(name="other", value="3", domain="example.org")

    cookies = asyncio.run(dispatcher.dispatch("chrome_get_cookies", {"domain": "example.com"}))
    assert sorted(c["name"] for c in cookies) == ["pref", "sid"]

    missing = _request(dispatcher, "chrome_get_cookies", {})
    assert missing["error"]["code"] == -32602


def test_extension_info_and_send_message() -> None:
    browser, _mirror, dispatcher = _setup()
    browser.add_extension({"id": "ext1", "name": "Helper", "enabled": True}, on_message=lambda m: {"echo": m})
    browser.add_extension({"id": "ext2", "name": "Quiet", "enabled": False})

    everything = asyncio.run(dispatcher.dispatch("chrome_get_extension_info", {}))
    assert [e["id"] for e in everything] == ["ext1", "ext2"]
    one = asyncio.run(dispatcher.dispatch("chrome_get_extension_info", {"extension_id": "ext2"}))
    assert one["name"] == "Quiet"

    reply = asyncio.run(dispatcher.dispatch("chrome_send_message", {"extension_id": "ext1", "message": {"ping": 1}}))
    assert reply == {"echo": {"ping": 1}}

    no_receiver = _request(dispatcher, "chrome_send_message", {"extension_id": "ext2", "message": {"x": 1}})
    assert "Receiving end does not exist" in no_receiver["error"]["message"]


def test_capture_screenshot_png_jpeg_and_area() -> None:
    from PIL import Image

    browser, _mirror, dispatcher = _setup()
    asyncio.run(browser.create_tab("https://site.test/"))

    png = asyncio.run(dispatcher.dispatch("chrome_capture_screenshot", {}))
    assert png.startswith("data:image/png;base64,")
    img = Image.open(BytesIO(base64.b64decode(png.split(",", 1)[1])))
    assert img.size == (200, 100)

    jpeg = asyncio.run(
        dispatcher.dispatch(
            "chrome_capture_screenshot",
            {"format": "jpeg", "quality": 50, "area": {"x": 10, "y": 10, "width": 50, "height": 20}},
        )
    )
    assert jpeg.startswith("data:image/jpeg;base64,")
    img2 = Image.open(BytesIO(base64.b64decode(jpeg.split(",", 1)[1])))
    assert img2.size == (50, 20)

    bad = _request(dispatcher, "chrome_capture_screenshot", {"format": "gif"})
    assert bad["error"]["code"] == -32602


def test_peer_cli_preloads_pages(tmp_path) -> None:
    from mcp_servers.chrome_bridge.peer_main import build_browser, parse_page_spec

    page = tmp_path / "home.html"
    page.write_text(PAGE, encoding="utf-8")

    assert parse_page_spec(f"https://site.test/={page}") == ("https://site.test/", PAGE)
    assert parse_page_spec("https://q.test/?a=b") == ("https://q.test/?a=b", "")

    async def _main() -> None:
        browser, mirror = await build_browser([parse_page_spec(f"https://site.test/={page}"), ("https://q.test/", "")])
        tabs = mirror.all_tabs()
        assert [t.url for t in tabs] == ["https://site.test/", "https://q.test/"]
        assert tabs[0].title == "Home"
        assert mirror.active_tab().url == "https://q.test/"

        await browser.create_tab("https://late.test/", active=False)
        assert mirror.tab(3) is not None

    asyncio.run(_main())
