"""
DOM operation executor.

Runs one typed DOM operation against a parsed page (BeautifulSoup tree) and
returns a JSON-serializable value. The executor knows nothing about sockets or
correlation ids; it raises BridgeError subclasses and lets the caller turn them
into error envelopes.
"""

from __future__ import annotations

import itertools
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup, Tag
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction
from soupsieve import SelectorSyntaxError

from ..errors import INVALID_PARAMS, BridgeError, ElementNotFound, RestrictedTarget
from .operations import (
    AddClass,
    AppendChild,
    Click,
    CreateElement,
    DomOperation,
    GetElementsInfo,
    GetPageInfo,
    Log,
    QuerySelector,
    QuerySelectorAll,
    RemoveAttribute,
    RemoveClass,
    RemoveElement,
    SetAttribute,
    SetHTML,
    SetText,
    ToggleClass,
)

_PAGE_LOGGER = logging.getLogger("mcp.chrome_bridge.page")

MARKER_ATTRIBUTE = "data-mcp-id"

RESTRICTED_PREFIXES: tuple[str, ...] = (
    "chrome://",
    "chrome-extension://",
    "https://chrome.google.com/webstore/",
    "https://chromewebstore.google.com/",
)

_marker_seq = itertools.count(1)


def new_marker_id() -> str:
    return f"mcp-{os.getpid()}-{next(_marker_seq)}"


def is_restricted_url(url: str) -> bool:
    u = (url or "").strip().lower()
    return any(u.startswith(prefix) for prefix in RESTRICTED_PREFIXES)


def ensure_scriptable(url: str) -> None:
    """Refuse browser-internal pages, extension pages and the extension store."""
    if is_restricted_url(url):
        raise RestrictedTarget(url)


@dataclass
class PageDocument:
    """A loaded page: its URL, parsed tree and the nodes created but not yet attached."""

    url: str
    soup: BeautifulSoup
    detached: dict[str, Tag] = field(default_factory=dict)

    @classmethod
    def parse(cls, url: str, html: str) -> PageDocument:
        return cls(url=url, soup=BeautifulSoup(html or "", "html.parser"))


def dom_string(value: Any) -> str:
    """Coerce a scalar the way the DOM stringifies attribute/text values."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return "" if value is None else str(value)


def attribute_map(el: Tag) -> dict[str, str]:
    out: dict[str, str] = {}
    for name, value in el.attrs.items():
        out[name] = " ".join(value) if isinstance(value, list) else str(value)
    return out


_NON_TEXT_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)


def text_content(el: Tag) -> str:
    """DOM ``textContent``: every descendant text node, script and style bodies included."""
    return "".join(
        str(s)
        for s in el.descendants
        if isinstance(s, NavigableString) and not isinstance(s, _NON_TEXT_STRINGS)
    )


def class_list(el: Tag) -> list[str]:
    raw = el.get("class")
    if raw is None:
        return []
    if isinstance(raw, str):
        return raw.split()
    return [str(c) for c in raw]


def _describe(el: Tag) -> dict[str, Any]:
    return {"text": text_content(el), "html": el.decode_contents(), "attributes": attribute_map(el)}


class DomExecutor:
    """Execute DOM operations against a single page."""

    def __init__(
        self,
        page: PageDocument,
        *,
        on_log: Callable[[str], None] | None = None,
        on_click: Callable[[Tag], None] | None = None,
    ) -> None:
        self.page = page
        self._on_log = on_log
        self._on_click = on_click
        self._handlers: dict[type[DomOperation], Callable[[Any], Any]] = {
            QuerySelector: self._query_selector,
            QuerySelectorAll: self._query_selector_all,
            SetText: self._set_text,
            SetHTML: self._set_html,
            SetAttribute: self._set_attribute,
            RemoveAttribute: self._remove_attribute,
            AddClass: self._add_class,
            RemoveClass: self._remove_class,
            ToggleClass: self._toggle_class,
            CreateElement: self._create_element,
            AppendChild: self._append_child,
            RemoveElement: self._remove_element,
            GetPageInfo: self._get_page_info,
            GetElementsInfo: self._get_elements_info,
            Log: self._log,
            Click: self._click,
        }

    @property
    def soup(self) -> BeautifulSoup:
        return self.page.soup

    def execute(self, op: DomOperation) -> Any:
        ensure_scriptable(self.page.url)
        handler = self._handlers.get(type(op))
        if handler is None:
            raise BridgeError(f"Unsupported DOM operation: {op.action}", code=INVALID_PARAMS)
        return handler(op)

    # ─────────────────────────────────────────────────────────────────────────
    # Lookups
    # ─────────────────────────────────────────────────────────────────────────

    def _select_one(self, selector: str) -> Tag:
        try:
            el = self.soup.select_one(selector)
        except SelectorSyntaxError as exc:
            raise BridgeError(f"Invalid selector '{selector}': {exc}", code=INVALID_PARAMS) from exc
        if el is None:
            raise ElementNotFound(selector)
        return el

    def _select_all(self, selector: str) -> list[Tag]:
        try:
            return list(self.soup.select(selector))
        except SelectorSyntaxError as exc:
            raise BridgeError(f"Invalid selector '{selector}': {exc}", code=INVALID_PARAMS) from exc

    # ─────────────────────────────────────────────────────────────────────────
    # Handlers
    # ─────────────────────────────────────────────────────────────────────────

    def _query_selector(self, op: QuerySelector) -> dict[str, Any]:
        return _describe(self._select_one(op.selector))

    def _query_selector_all(self, op: QuerySelectorAll) -> list[dict[str, Any]]:
        return [_describe(el) for el in self._select_all(op.selector)]

    def _set_text(self, op: SetText) -> bool:
        self._select_one(op.selector).string = dom_string(op.value)
        return True

    def _set_html(self, op: SetHTML) -> bool:
        el = self._select_one(op.selector)
        el.clear()
        fragment = BeautifulSoup(dom_string(op.value), "html.parser")
        for child in list(fragment.contents):
            el.append(child.extract())
        return True

    def _set_attribute(self, op: SetAttribute) -> bool:
        self._select_one(op.selector)[op.attribute] = dom_string(op.value)
        return True

    def _remove_attribute(self, op: RemoveAttribute) -> bool:
        el = self._select_one(op.selector)
        if el.has_attr(op.attribute):
            del el[op.attribute]
        return True

    def _add_class(self, op: AddClass) -> bool:
        el = self._select_one(op.selector)
        classes = class_list(el)
        if op.value not in classes:
            classes.append(op.value)
        el["class"] = classes
        return True

    def _remove_class(self, op: RemoveClass) -> bool:
        el = self._select_one(op.selector)
        if el.has_attr("class"):
            el["class"] = [c for c in class_list(el) if c != op.value]
        return True

    def _toggle_class(self, op: ToggleClass) -> bool:
        el = self._select_one(op.selector)
        classes = class_list(el)
        if op.value in classes:
            classes = [c for c in classes if c != op.value]
        else:
            classes.append(op.value)
        el["class"] = classes
        return True

    def _create_element(self, op: CreateElement) -> dict[str, str]:
        el = self.soup.new_tag(op.tag_name)
        for name, value in (op.attributes or {}).items():
            el[str(name)] = dom_string(value)
        if op.inner_text:
            el.string = op.inner_text
        element_id = new_marker_id()
        el[MARKER_ATTRIBUTE] = element_id
        self.page.detached[element_id] = el
        return {"elementId": element_id}

    def _append_child(self, op: AppendChild) -> bool:
        parent = self._select_one(op.selector)
        child = self.page.detached.pop(op.element_id, None)
        if child is None:
            child = self.soup.find(attrs={MARKER_ATTRIBUTE: op.element_id})
        if not isinstance(child, Tag):
            raise ElementNotFound(f'[{MARKER_ATTRIBUTE}="{op.element_id}"]')
        parent.append(child)
        return True

    def _remove_element(self, op: RemoveElement) -> bool:
        self._select_one(op.selector).decompose()
        return True

    def _get_page_info(self, _op: GetPageInfo) -> dict[str, Any]:
        title = text_content(self.soup.title) if self.soup.title is not None else ""
        return {
            "title": title,
            "url": self.page.url,
            "metaTags": [{"name": m.get("name"), "content": m.get("content")} for m in self.soup.find_all("meta")],
        }

    def _get_elements_info(self, op: GetElementsInfo) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for el in self._select_all(op.selector):
            out.append(
                {
                    "tagName": str(el.name).upper(),
                    "text": text_content(el),
                    "attributes": attribute_map(el),
                    "classes": list(dict.fromkeys(class_list(el))),
                }
            )
        return out

    def _log(self, op: Log) -> bool:
        if self._on_log is not None:
            self._on_log(op.message)
        else:
            _PAGE_LOGGER.info("page_log url=%s message=%s", self.page.url, op.message)
        return True

    def _click(self, op: Click) -> bool:
        el = self._select_one(op.selector)
        input_type = str(el.get("type") or "").lower()
        if el.name == "input" and input_type == "checkbox":
            if el.has_attr("checked"):
                del el["checked"]
            else:
                el["checked"] = ""
        elif el.name == "input" and input_type == "radio":
            group = el.get("name")
            if group:
                for other in self.soup.find_all("input", attrs={"type": "radio", "name": group}):
                    if other is not el and other.has_attr("checked"):
                        del other["checked"]
            el["checked"] = ""
        if self._on_click is not None:
            self._on_click(el)
        return True


__all__ = [
    "MARKER_ATTRIBUTE",
    "RESTRICTED_PREFIXES",
    "DomExecutor",
    "PageDocument",
    "attribute_map",
    "class_list",
    "dom_string",
    "ensure_scriptable",
    "is_restricted_url",
    "new_marker_id",
    "text_content",
]
