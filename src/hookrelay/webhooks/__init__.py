"""Webhook delivery system for HookRelay.

Provides HMAC-signed delivery with exponential backoff retry, fan-out to
every subscription of an event, and a durable retry worker.

Example:
    ```python
    from hookrelay.webhooks import DeliveryDispatcher, FanOutTrigger, RetryWorker

    dispatcher = DeliveryDispatcher(storage)
    trigger = FanOutTrigger(registry, dispatcher)
    summary = await trigger.trigger("acct_1", "post.created", {"post_id": "p1"})

    worker = RetryWorker(storage, dispatcher)
    worker.start()
    ```
"""

from .backoff import backoff_seconds, next_retry_at, total_backoff_seconds
from .dispatcher import DeliveryDispatcher
from .headers import (
    DELIVERY_HEADER,
    EVENT_HEADER,
    SIGNATURE_HEADER,
    HeaderClass,
    build_delivery_headers,
)
from .signing import generate_secret, serialize_payload, sign, verify_signature
from .trigger import FanOutTrigger
from .worker import RetryWorker

__all__ = [
    "DELIVERY_HEADER",
    "DeliveryDispatcher",
    "EVENT_HEADER",
    "FanOutTrigger",
    "HeaderClass",
    "RetryWorker",
    "SIGNATURE_HEADER",
    "backoff_seconds",
    "build_delivery_headers",
    "generate_secret",
    "next_retry_at",
    "serialize_payload",
    "sign",
    "total_backoff_seconds",
    "verify_signature",
]
