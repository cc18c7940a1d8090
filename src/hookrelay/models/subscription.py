"""Subscription model: a registered delivery target and its configuration."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, SecretStr, field_validator

from .base import generate_id, utc_now
from .events import EventType

MIN_RETRIES = 0
MAX_RETRIES = 5
MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 30000

DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_MS = 10000


class Subscription(BaseModel):
    """A registered webhook endpoint plus its delivery configuration.

    The dispatcher treats a subscription as read-only input apart from the
    aggregate fields (``last_triggered_at``, ``success_count``,
    ``failure_count``), which are only changed through
    ``HookStorage.record_outcome``.

    Attributes:
        id: Unique identifier (``sub_`` prefix).
        owner_id: Account that owns this subscription.
        name: Human-readable name.
        description: Optional description.
        url: Endpoint that receives POSTed events.
        secret: HMAC key shared with the receiver. Encrypted at rest.
        events: Subscribed event types (non-empty, subscribable only).
        active: Inactive subscriptions never receive deliveries.
        headers: Custom headers merged into every delivery request.
        max_retries: Retries after the first attempt (0-5).
        timeout_ms: Per-attempt request timeout (1000-30000 ms).
        last_triggered_at: When the last delivery sequence finished.
        success_count: Sequences that ended in success.
        failure_count: Sequences that exhausted their attempts.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("sub"))
    owner_id: str = Field(min_length=1, description="Owning account")
    name: str = Field(min_length=1, max_length=100, description="Display name")
    description: str | None = Field(default=None, description="Human-readable description")
    url: HttpUrl = Field(description="Endpoint that receives events")
    secret: SecretStr = Field(description="Shared secret for HMAC-SHA256 signatures")
    events: list[EventType] = Field(min_length=1, description="Subscribed event types")
    active: bool = Field(default=True, description="Whether deliveries are sent")
    headers: dict[str, str] = Field(default_factory=dict, description="Custom request headers")
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=MIN_RETRIES,
        le=MAX_RETRIES,
        description="Retries after the first attempt",
    )
    timeout_ms: int = Field(
        default=DEFAULT_TIMEOUT_MS,
        ge=MIN_TIMEOUT_MS,
        le=MAX_TIMEOUT_MS,
        description="Per-attempt request timeout in milliseconds",
    )
    last_triggered_at: datetime | None = Field(default=None)
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("events")
    @classmethod
    def _check_events(cls, value: list[EventType]) -> list[EventType]:
        if EventType.WEBHOOK_TEST in value:
            raise ValueError(f"{EventType.WEBHOOK_TEST.value} cannot be subscribed to")
        # Keep first-seen order, drop duplicates
        return list(dict.fromkeys(value))

    @property
    def max_attempts(self) -> int:
        """Total attempts allowed per delivery sequence."""
        return self.max_retries + 1

    @property
    def timeout_seconds(self) -> float:
        """Per-attempt timeout in seconds."""
        return self.timeout_ms / 1000

    def subscribes_to(self, event_type: EventType | str) -> bool:
        """Check if this subscription is active and listens for ``event_type``."""
        return self.active and event_type in self.events


__all__ = [
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_TIMEOUT_MS",
    "MAX_RETRIES",
    "MAX_TIMEOUT_MS",
    "MIN_RETRIES",
    "MIN_TIMEOUT_MS",
    "Subscription",
]
