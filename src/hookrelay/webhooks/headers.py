"""Delivery request headers and the custom-header merge contract.

Protocol headers come in two classes:

- PROTECTED: carry delivery integrity (signature, delivery id, event type).
- OVERRIDABLE: transport details (content type, user agent).

Subscription custom headers are merged last and compared case-insensitively.
When ``allow_protected_override`` is True (the default), a custom header
replaces any protocol header of the same name, including protected ones; a
custom header that masks the signature leaves receivers unable to verify the
payload, so every protected override is logged. When it is False, custom
headers that collide with protected names are dropped.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum

from hookrelay.logging import get_logger

logger = get_logger(__name__)

CONTENT_TYPE_HEADER = "Content-Type"
USER_AGENT_HEADER = "User-Agent"
EVENT_HEADER = "X-Webhook-Event"
SIGNATURE_HEADER = "X-Webhook-Signature"
DELIVERY_HEADER = "X-Webhook-Delivery"

JSON_CONTENT_TYPE = "application/json"


class HeaderClass(str, Enum):
    PROTECTED = "protected"
    OVERRIDABLE = "overridable"


PROTOCOL_HEADERS: dict[str, HeaderClass] = {
    CONTENT_TYPE_HEADER: HeaderClass.OVERRIDABLE,
    USER_AGENT_HEADER: HeaderClass.OVERRIDABLE,
    EVENT_HEADER: HeaderClass.PROTECTED,
    SIGNATURE_HEADER: HeaderClass.PROTECTED,
    DELIVERY_HEADER: HeaderClass.PROTECTED,
}

_CLASS_BY_LOWER = {name.lower(): cls for name, cls in PROTOCOL_HEADERS.items()}


def header_class(name: str) -> HeaderClass | None:
    """Return the protocol class of a header name, or None for non-protocol headers."""
    return _CLASS_BY_LOWER.get(name.lower())


def protected_collisions(custom: Mapping[str, str]) -> list[str]:
    """Names in ``custom`` that would mask a protected protocol header."""
    return [name for name in custom if header_class(name) is HeaderClass.PROTECTED]


def build_delivery_headers(
    *,
    event_type: str,
    signature: str,
    delivery_id: str,
    user_agent: str,
    custom: Mapping[str, str] | None = None,
    allow_protected_override: bool = True,
) -> dict[str, str]:
    """Build the headers for one delivery attempt.

    Args:
        event_type: Event name for the event header.
        signature: Hex HMAC digest of the body.
        delivery_id: Delivery sequence id.
        user_agent: Client identifier.
        custom: Subscription custom headers.
        allow_protected_override: Whether custom headers may replace protected ones.

    Returns:
        Merged header mapping.
    """
    merged: dict[str, str] = {
        CONTENT_TYPE_HEADER: JSON_CONTENT_TYPE,
        EVENT_HEADER: event_type,
        SIGNATURE_HEADER: signature,
        DELIVERY_HEADER: delivery_id,
        USER_AGENT_HEADER: user_agent,
    }
    if not custom:
        return merged

    by_lower = {name.lower(): name for name in merged}
    for name, value in custom.items():
        cls = header_class(name)
        if cls is HeaderClass.PROTECTED:
            if not allow_protected_override:
                logger.warning(
                    "Dropped custom header colliding with protected header",
                    header=name,
                    delivery_id=delivery_id,
                )
                continue
            logger.warning(
                "Custom header overrides protected header",
                header=name,
                delivery_id=delivery_id,
            )
        existing = by_lower.pop(name.lower(), None)
        if existing is not None:
            merged.pop(existing)
        merged[name] = value
        by_lower[name.lower()] = name

    return merged


__all__ = [
    "CONTENT_TYPE_HEADER",
    "DELIVERY_HEADER",
    "EVENT_HEADER",
    "JSON_CONTENT_TYPE",
    "PROTOCOL_HEADERS",
    "SIGNATURE_HEADER",
    "USER_AGENT_HEADER",
    "HeaderClass",
    "build_delivery_headers",
    "header_class",
    "protected_collisions",
]
