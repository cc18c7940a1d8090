"""HookRelay: signed webhook delivery with retries.

Delivers platform events to subscriber-registered HTTP endpoints, signs
every payload with HMAC-SHA256, retries transport failures with
exponential backoff and keeps an auditable ledger of every delivery.

Quick Start:
    from hookrelay.service import HookRelayService

    async with HookRelayService.create() as relay:
        subscription, secret = await relay.registry.create(
            owner_id="acct_1",
            name="Post sync",
            url="https://example.com/hooks",
            events=["post.created"],
        )
        summary = await relay.trigger.trigger(
            "acct_1", "post.created", {"post_id": "p1"}
        )

Receivers verify the X-Webhook-Signature header with
hookrelay.webhooks.verify_signature(raw_body, secret, signature).
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    HookRelayError,
    NotFoundError,
    RegistryUnavailable,
    StorageError,
    TerminalFailure,
    TransportError,
    ValidationError,
)

# Logging
from .logging import configure_logging, get_logger, log_context

# Models
from .models import (
    DeliveryAttemptRecord,
    DeliveryResult,
    DeliveryState,
    EventType,
    Subscription,
    TriggerSummary,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "HookRelayError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "RegistryUnavailable",
    "TransportError",
    "TerminalFailure",
    "ConfigurationError",
    "AuthenticationError",
    # Logging
    "configure_logging",
    "get_logger",
    "log_context",
    # Models
    "EventType",
    "Subscription",
    "DeliveryAttemptRecord",
    "DeliveryResult",
    "DeliveryState",
    "TriggerSummary",
]
