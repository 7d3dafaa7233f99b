"""Peer-side operations: DOM sub-protocol, executor, dispatcher and screenshot encoding."""

from __future__ import annotations

from .dom import DomExecutor, PageDocument
from .operations import DOM_ACTIONS, REQUIRED_FIELDS, DomOperation, parse_operation
from .registry import PEER_METHODS, PeerDispatcher

__all__ = [
    "DOM_ACTIONS",
    "PEER_METHODS",
    "REQUIRED_FIELDS",
    "DomExecutor",
    "DomOperation",
    "PageDocument",
    "PeerDispatcher",
    "parse_operation",
]
