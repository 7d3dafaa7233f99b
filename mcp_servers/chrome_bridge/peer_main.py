"""Headless browser peer: serves relay calls from an in-memory browser.

Stdout stays free; logs go to stderr like the MCP server.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from .browser_platform import InMemoryBrowser
from .config import BridgeConfig
from .peer import ConnectionState, PeerConnectionManager
from .tab_mirror import TabStateMirror
from .tools.registry import PeerDispatcher

logger = logging.getLogger("mcp.chrome_bridge.peer_main")


def parse_page_spec(spec: str) -> tuple[str, str]:
    """`URL` (blank page) or `URL=FILE` (HTML loaded from FILE)."""
    url, sep, file_name = spec.partition("=")
    # Query strings contain "=" too; only treat the tail as a file when it exists.
    if sep and Path(file_name).is_file():
        return url, Path(file_name).read_text(encoding="utf-8")
    return spec, ""


async def build_browser(pages: list[tuple[str, str]]) -> tuple[InMemoryBrowser, TabStateMirror]:
    browser = InMemoryBrowser()
    for url, html in pages:
        if html:
            browser.add_page(url, html)
        await browser.create_tab(url)

    mirror = TabStateMirror()
    await mirror.seed(browser)
    browser.add_listener(mirror)
    return browser, mirror


async def run_peer(config: BridgeConfig, pages: list[tuple[str, str]]) -> int:
    browser, mirror = await build_browser(pages)
    halted = asyncio.Event()

    def _on_state(state: ConnectionState, info: dict[str, Any]) -> None:
        if state is ConnectionState.HALTED:
            halted.set()

    manager = PeerConnectionManager(
        PeerDispatcher(browser, mirror),
        config=config,
        mirror=mirror,
        on_state_change=_on_state,
    )
    await manager.start()
    try:
        await halted.wait()
    finally:
        await manager.stop()
    logger.error("peer_halted: reconnect attempts exhausted; restart required")
    return 1


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Headless peer for the Chrome MCP bridge")
    parser.add_argument(
        "--page",
        action="append",
        default=[],
        metavar="URL[=FILE]",
        help="Open a tab at URL, optionally with HTML loaded from FILE (repeatable)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    pages = [parse_page_spec(p) for p in args.page]
    try:
        raise SystemExit(asyncio.run(run_peer(BridgeConfig.from_env(), pages)))
    except KeyboardInterrupt:
        raise SystemExit(0) from None


if __name__ == "__main__":
    main()
