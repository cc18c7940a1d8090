"""Data models for HookRelay.

Registry:
    - Subscription: Registered endpoint, secret, event set and retry policy
    - EventType / SUBSCRIBABLE_EVENTS: Closed event vocabulary

Ledger:
    - DeliveryAttemptRecord: One record per delivery sequence
    - DeliveryState: Per-sequence state machine
    - DeliveryResult / TriggerSummary: Dispatcher and fan-out outcomes
"""

from .base import generate_id, utc_now
from .delivery import (
    DEFAULT_RESPONSE_BODY_MAX_CHARS,
    DeliveryAttemptRecord,
    DeliveryResult,
    DeliveryState,
    TriggerSummary,
    truncate_body,
)
from .events import SUBSCRIBABLE_EVENTS, EventType, parse_event_type
from .subscription import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_MS,
    MAX_RETRIES,
    MAX_TIMEOUT_MS,
    MIN_RETRIES,
    MIN_TIMEOUT_MS,
    Subscription,
)

__all__ = [
    # Helpers
    "generate_id",
    "utc_now",
    # Events
    "EventType",
    "SUBSCRIBABLE_EVENTS",
    "parse_event_type",
    # Registry
    "Subscription",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_TIMEOUT_MS",
    "MAX_RETRIES",
    "MAX_TIMEOUT_MS",
    "MIN_RETRIES",
    "MIN_TIMEOUT_MS",
    # Ledger
    "DeliveryAttemptRecord",
    "DeliveryResult",
    "DeliveryState",
    "TriggerSummary",
    "DEFAULT_RESPONSE_BODY_MAX_CHARS",
    "truncate_body",
]
