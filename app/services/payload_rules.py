"""
First-match-wins field lookup over loosely shaped provider payloads.

A rule is a named list of dotted paths. New provider shapes are added by
appending a path, not by writing another branch.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class PayloadRule:
    name: str
    paths: tuple[str, ...]


def dig(tree: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts; None when any step is missing."""
    node = tree
    for part in path.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
        if node is None:
            return None
    return node


def _non_empty_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def first_match(
    tree: Any,
    rule: PayloadRule,
    accept: Callable[[Any], Optional[Any]] = _non_empty_string,
) -> Optional[Any]:
    for path in rule.paths:
        value = accept(dig(tree, path))
        if value is not None:
            return value
    return None


MESSAGE_TEXT = PayloadRule(
    "message_text",
    (
        "text",
        "conversation",
        "extendedTextMessage.text",
        "imageMessage.caption",
        "videoMessage.caption",
        "documentMessage.caption",
        "buttonsResponseMessage.selectedDisplayText",
        "listResponseMessage.title",
    ),
)

QR_CODE = PayloadRule(
    "qr_code",
    (
        "qrcode.base64",
        "qrcode",
        "qrCode",
        "qr",
        "base64",
        "data.qrcode",
        "data.base64",
        "data.qr",
    ),
)

CONNECTION_STATE = PayloadRule(
    "connection_state",
    (
        "state",
        "status",
        "connectionState",
        "instance.state",
        "instance.status",
        "data.state",
        "data.status",
    ),
)
