"""
DOM operation variants.

One frozen dataclass per action. Fields without a default are mandatory;
``wire`` metadata maps a field to its camelCase key in the JSON payload.
"""

from __future__ import annotations

from dataclasses import MISSING, dataclass, field, fields
from typing import Any, ClassVar

from ..errors import INVALID_PARAMS, BridgeError, MissingArgument, UnknownOperation

Scalar = str | int | float | bool


def _wire(name: str) -> Any:
    return field(metadata={"wire": name})


@dataclass(frozen=True, slots=True)
class DomOperation:
    action: ClassVar[str] = ""

    def to_payload(self) -> dict[str, Any]:
        out: dict[str, Any] = {"action": self.action}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[f.metadata.get("wire", f.name)] = value
        return out


@dataclass(frozen=True, slots=True)
class QuerySelector(DomOperation):
    action: ClassVar[str] = "querySelector"
    selector: str


@dataclass(frozen=True, slots=True)
class QuerySelectorAll(DomOperation):
    action: ClassVar[str] = "querySelectorAll"
    selector: str


@dataclass(frozen=True, slots=True)
class SetText(DomOperation):
    action: ClassVar[str] = "setText"
    selector: str
    value: Scalar


@dataclass(frozen=True, slots=True)
class SetHTML(DomOperation):
    action: ClassVar[str] = "setHTML"
    selector: str
    value: Scalar


@dataclass(frozen=True, slots=True)
class SetAttribute(DomOperation):
    action: ClassVar[str] = "setAttribute"
    selector: str
    attribute: str
    value: Scalar


@dataclass(frozen=True, slots=True)
class RemoveAttribute(DomOperation):
    action: ClassVar[str] = "removeAttribute"
    selector: str
    attribute: str


@dataclass(frozen=True, slots=True)
class AddClass(DomOperation):
    action: ClassVar[str] = "addClass"
    selector: str
    value: str


@dataclass(frozen=True, slots=True)
class RemoveClass(DomOperation):
    action: ClassVar[str] = "removeClass"
    selector: str
    value: str


@dataclass(frozen=True, slots=True)
class ToggleClass(DomOperation):
    action: ClassVar[str] = "toggleClass"
    selector: str
    value: str


@dataclass(frozen=True, slots=True)
class CreateElement(DomOperation):
    action: ClassVar[str] = "createElement"
    tag_name: str = _wire("tagName")
    attributes: dict[str, Scalar] | None = None
    inner_text: str | None = field(default=None, metadata={"wire": "innerText"})


@dataclass(frozen=True, slots=True)
class AppendChild(DomOperation):
    action: ClassVar[str] = "appendChild"
    selector: str
    element_id: str = _wire("elementId")


@dataclass(frozen=True, slots=True)
class RemoveElement(DomOperation):
    action: ClassVar[str] = "removeElement"
    selector: str


@dataclass(frozen=True, slots=True)
class GetPageInfo(DomOperation):
    action: ClassVar[str] = "getPageInfo"


@dataclass(frozen=True, slots=True)
class GetElementsInfo(DomOperation):
    action: ClassVar[str] = "getElementsInfo"
    selector: str


@dataclass(frozen=True, slots=True)
class Log(DomOperation):
    action: ClassVar[str] = "log"
    message: str


@dataclass(frozen=True, slots=True)
class Click(DomOperation):
    action: ClassVar[str] = "click"
    selector: str


DOM_OPERATIONS: dict[str, type[DomOperation]] = {
    cls.action: cls
    for cls in (
        QuerySelector,
        QuerySelectorAll,
        SetText,
        SetHTML,
        SetAttribute,
        RemoveAttribute,
        AddClass,
        RemoveClass,
        ToggleClass,
        CreateElement,
        AppendChild,
        RemoveElement,
        GetPageInfo,
        GetElementsInfo,
        Log,
        Click,
    )
}

DOM_ACTIONS: tuple[str, ...] = tuple(DOM_OPERATIONS)


def _is_required(f: Any) -> bool:
    return f.default is MISSING and f.default_factory is MISSING


def required_fields(action: str) -> tuple[str, ...]:
    """Wire names of the mandatory fields for an action."""
    cls = DOM_OPERATIONS.get(action)
    if cls is None:
        raise UnknownOperation(action, kind="DOM action")
    return tuple(f.metadata.get("wire", f.name) for f in fields(cls) if _is_required(f))


REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {name: required_fields(name) for name in DOM_ACTIONS}


def parse_operation(payload: Any) -> DomOperation:
    """Build the typed operation for a raw ``operation`` object."""
    if not isinstance(payload, dict):
        raise MissingArgument("operation", "chrome_execute_script")
    action = payload.get("action")
    if not isinstance(action, str) or not action.strip():
        raise MissingArgument("action", "operation")
    cls = DOM_OPERATIONS.get(action)
    if cls is None:
        raise UnknownOperation(action, kind="DOM action")

    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        wire = f.metadata.get("wire", f.name)
        value = payload.get(wire)
        if value is None:
            if _is_required(f):
                raise MissingArgument(wire, action)
            continue
        kwargs[f.name] = value

    attrs = kwargs.get("attributes")
    if attrs is not None and not isinstance(attrs, dict):
        raise BridgeError(f"'attributes' must be an object for {action}", code=INVALID_PARAMS)
    return cls(**kwargs)


__all__ = [
    "DOM_ACTIONS",
    "DOM_OPERATIONS",
    "REQUIRED_FIELDS",
    "AddClass",
    "AppendChild",
    "Click",
    "CreateElement",
    "DomOperation",
    "GetElementsInfo",
    "GetPageInfo",
    "Log",
    "QuerySelector",
    "QuerySelectorAll",
    "RemoveAttribute",
    "RemoveClass",
    "RemoveElement",
    "SetAttribute",
    "SetHTML",
    "SetText",
    "ToggleClass",
    "parse_operation",
    "required_fields",
]
