from __future__ import annotations

import asyncio


def test_mirror_tracks_lifecycle_events_from_platform() -> None:
    from mcp_servers.chrome_bridge.browser_platform import InMemoryBrowser
    from mcp_servers.chrome_bridge.tab_mirror import TabStateMirror

    events: list[tuple[str, int, dict]] = []

    async def _main() -> None:
        browser = InMemoryBrowser()
        browser.add_page("https://a.test/", "<html><head><title>A</title></head><body></body></html>")
        mirror = TabStateMirror()
        mirror.subscribe(lambda kind, tab, extra: events.append((kind, tab["id"], extra)))
        browser.add_listener(mirror)

        a = await browser.create_tab("https://a.test/")
        b = await browser.create_tab("https://b.test/", active=False)

        assert [t.id for t in mirror.all_tabs()] == [a.id, b.id]
        assert mirror.tab(a.id).title == "A"
        assert mirror.active_tab().id == a.id

        await browser.activate_tab(b.id)
        assert mirror.active_tab().id == b.id
        assert mirror.tab(a.id).active is False

        await browser.close_tab(a.id)
        assert mirror.tab(a.id) is None
        assert [t.id for t in mirror.all_tabs()] == [b.id]

    asyncio.run(_main())

    kinds = [k for k, _tid, _extra in events]
    assert kinds[0] == "created"
    assert "activated" in kinds
    assert kinds[-1] == "removed"
    assert ("updated", 1, {"status": "complete"}) in events


def test_loading_clears_content_readiness() -> None:
    from mcp_servers.chrome_bridge.browser_platform import TabInfo
    from mcp_servers.chrome_bridge.tab_mirror import TabStateMirror

    mirror = TabStateMirror()
    tab = TabInfo(id=7, url="https://x.test/")
    mirror.on_created(tab)
    mirror.mark_content_ready(7)
    assert mirror.is_content_ready(7)

    mirror.on_updated(TabInfo(id=7, url="https://x.test/next", status="loading"), {"status": "loading"})
    assert not mirror.is_content_ready(7)
    assert mirror.tab(7).url == "https://x.test/next"

    mirror.mark_content_ready(7)
    mirror.on_removed(7, {"windowId": 1})
    assert not mirror.is_content_ready(7)
    assert mirror.tab(7) is None


def test_seed_loads_inventory_once() -> None:
    from mcp_servers.chrome_bridge.browser_platform import InMemoryBrowser
    from mcp_servers.chrome_bridge.tab_mirror import TabStateMirror

    async def _main() -> int:
        browser = InMemoryBrowser()
        await browser.create_tab("https://one.test/")
        await browser.create_tab("https://two.test/")
        mirror = TabStateMirror()
        count = await mirror.seed(browser)
        assert [t.url for t in mirror.all_tabs()] == ["https://one.test/", "https://two.test/"]
        assert mirror.active_tab().url == "https://two.test/"
        return count

    assert asyncio.run(_main()) == 2


def test_failing_subscriber_does_not_break_others() -> None:
    from mcp_servers.chrome_bridge.browser_platform import TabInfo
    from mcp_servers.chrome_bridge.tab_mirror import TabStateMirror

    seen: list[str] = []

    def _boom(kind: str, tab: dict, extra: dict) -> None:
        raise RuntimeError("subscriber failed")

    mirror = TabStateMirror()
    mirror.subscribe(_boom)
    unsubscribe = mirror.subscribe(lambda kind, tab, extra: seen.append(kind))
    mirror.on_created(TabInfo(id=1))
    unsubscribe()
    mirror.on_created(TabInfo(id=2))
    assert seen == ["created"]
