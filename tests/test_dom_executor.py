from __future__ import annotations

import pytest

PAGE = """
<html>
  <head>
    <title>Fixture</title>
    <meta name="description" content="test page">
  </head>
  <body>
    <h1 id="title" class="big big headline">Hello</h1>
    <ul><li class="item">one</li><li class="item">two</li></ul>
    <input type="checkbox" id="agree">
    <input type="radio" name="size" id="s" checked>
    <input type="radio" name="size" id="m">
    <a id="next" href="/next">next</a>
  </body>
</html>
"""


def _executor(url: str = "https://example.com/", html: str = PAGE, **kwargs):
    from mcp_servers.chrome_bridge.tools.dom import DomExecutor, PageDocument

    return DomExecutor(PageDocument.parse(url, html), **kwargs)


def _run(executor, payload: dict):
    from mcp_servers.chrome_bridge.tools.operations import parse_operation

    return executor.execute(parse_operation(payload))


def test_create_then_append_then_query_round_trip() -> None:
    ex = _executor(html="<html><body></body></html>")

    created = _run(ex, {"action": "createElement", "tagName": "div", "innerText": "hi"})
    element_id = created["elementId"]
    assert element_id.startswith("mcp-")
    assert element_id in ex.page.detached

    assert _run(ex, {"action": "appendChild", "selector": "body", "elementId": element_id}) is True
    assert element_id not in ex.page.detached

    found = _run(ex, {"action": "querySelector", "selector": "body > div"})
    assert found["text"] == "hi"
    assert found["attributes"]["data-mcp-id"] == element_id


def test_marker_ids_are_unique() -> None:
    ex = _executor()
    a = _run(ex, {"action": "createElement", "tagName": "span"})["elementId"]
    b = _run(ex, {"action": "createElement", "tagName": "span"})["elementId"]
    assert a != b


def test_single_node_miss_raises_element_not_found_naming_selector() -> None:
    from mcp_servers.chrome_bridge.errors import ElementNotFound

    ex = _executor()
    with pytest.raises(ElementNotFound) as ei:
        _run(ex, {"action": "setAttribute", "selector": "#missing", "attribute": "x", "value": "1"})
    assert ei.value.selector == "#missing"
    assert "#missing" in ei.value.message

    with pytest.raises(ElementNotFound):
        _run(ex, {"action": "querySelector", "selector": ".nope"})


def test_collection_lookups_return_empty_lists() -> None:
    ex = _executor()
    assert _run(ex, {"action": "querySelectorAll", "selector": ".nope"}) == []
    assert _run(ex, {"action": "getElementsInfo", "selector": ".nope"}) == []


def test_reads_return_text_html_and_attributes() -> None:
    ex = _executor()
    items = _run(ex, {"action": "querySelectorAll", "selector": "li.item"})
    assert [i["text"] for i in items] == ["one", "two"]
    assert items[0]["attributes"] == {"class": "item"}
    assert items[0]["html"] == "one"

    info = _run(ex, {"action": "getElementsInfo", "selector": "h1"})
    assert info == [
        {
            "tagName": "H1",
            "text": "Hello",
            "attributes": {"id": "title", "class": "big big headline"},
            "classes": ["big", "headline"],
        }
    ]


def test_mutators_return_true_and_change_document() -> None:
    ex = _executor()
    assert _run(ex, {"action": "setText", "selector": "#title", "value": 42}) is True
    assert ex.soup.select_one("#title").get_text() == "42"

    assert _run(ex, {"action": "setHTML", "selector": "#title", "value": "<b>bold</b>"}) is True
    assert ex.soup.select_one("#title > b").get_text() == "bold"

    assert _run(ex, {"action": "setAttribute", "selector": "#title", "attribute": "data-x", "value": True}) is True
    assert ex.soup.select_one("#title")["data-x"] == "true"
    assert _run(ex, {"action": "removeAttribute", "selector": "#title", "attribute": "data-x"}) is True
    assert not ex.soup.select_one("#title").has_attr("data-x")

    assert _run(ex, {"action": "addClass", "selector": "#title", "value": "new"}) is True
    assert _run(ex, {"action": "removeClass", "selector": "#title", "value": "big"}) is True
    assert _run(ex, {"action": "toggleClass", "selector": "#title", "value": "headline"}) is True
    assert ex.soup.select_one("#title")["class"] == ["new"]
    _run(ex, {"action": "toggleClass", "selector": "#title", "value": "headline"})
    assert ex.soup.select_one("#title")["class"] == ["new", "headline"]

    assert _run(ex, {"action": "removeElement", "selector": "ul"}) is True
    assert ex.soup.select("li") == []


def test_get_page_info() -> None:
    ex = _executor(url="https://example.com/page")
    info = _run(ex, {"action": "getPageInfo"})
    assert info == {
        "title": "Fixture",
        "url": "https://example.com/page",
        "metaTags": [{"name": "description", "content": "test page"}],
    }


def test_click_toggles_checkbox_and_radio_and_calls_hook() -> None:
    clicked: list[str] = []
    ex = _executor(on_click=lambda el: clicked.append(el.get("id")))

    _run(ex, {"action": "click", "selector": "#agree"})
    assert ex.soup.select_one("#agree").has_attr("checked")
    _run(ex, {"action": "click", "selector": "#agree"})
    assert not ex.soup.select_one("#agree").has_attr("checked")

    _run(ex, {"action": "click", "selector": "#m"})
    assert ex.soup.select_one("#m").has_attr("checked")
    assert not ex.soup.select_one("#s").has_attr("checked")

    _run(ex, {"action": "click", "selector": "#next"})
    assert clicked == ["agree", "agree", "m", "next"]


def test_log_goes_to_hook() -> None:
    seen: list[str] = []
    ex = _executor(on_log=seen.append)
    assert _run(ex, {"action": "log", "message": "hello"}) is True
    assert seen == ["hello"]


@pytest.mark.parametrize(
    "url",
    [
        "chrome://settings",
        "chrome-extension://abcdefghijklmnopabcdefghijklmnop/popup.html",
        "https://chrome.google.com/webstore/detail/x",
    ],
)
def test_restricted_origins_rejected_before_dom_access(url: str) -> None:
    from mcp_servers.chrome_bridge.errors import RestrictedTarget

    class _ExplodingSoup:
        def __getattr__(self, name: str):
            raise AssertionError("document must not be touched")

    from mcp_servers.chrome_bridge.tools.dom import DomExecutor, PageDocument

    ex = DomExecutor(PageDocument(url=url, soup=_ExplodingSoup()))  # type: ignore[arg-type]
    with pytest.raises(RestrictedTarget) as ei:
        _run(ex, {"action": "querySelector", "selector": "body"})
    assert ei.value.url == url


def test_invalid_selector_is_invalid_params() -> None:
    from mcp_servers.chrome_bridge.errors import BridgeError

    ex = _executor()
    with pytest.raises(BridgeError) as ei:
        _run(ex, {"action": "querySelector", "selector": "div[["})
    assert ei.value.code == -32602


def test_append_unknown_element_id() -> None:
    from mcp_servers.chrome_bridge.errors import ElementNotFound

    ex = _executor()
    with pytest.raises(ElementNotFound) as ei:
        _run(ex, {"action": "appendChild", "selector": "body", "elementId": "mcp-0-0"})
    assert "mcp-0-0" in ei.value.selector


def test_text_includes_script_and_style_bodies() -> None:
    ex = _executor(html="<html><body><div id='d'>hi<script>var a=1;</script><style>p{}</style><!-- note --></div></body></html>")

    found = _run(ex, {"action": "querySelector", "selector": "#d"})
    assert found["text"] == "hivar a=1;p{}"

    info = _run(ex, {"action": "getElementsInfo", "selector": "#d"})
    assert info[0]["text"] == "hivar a=1;p{}"


def test_remove_class_on_element_without_class_leaves_attribute_absent() -> None:
    ex = _executor(html="<html><body><span id='x'>s</span></body></html>")

    assert _run(ex, {"action": "removeClass", "selector": "#x", "value": "gone"}) is True
    assert _run(ex, {"action": "querySelector", "selector": "#x"})["attributes"] == {"id": "x"}
