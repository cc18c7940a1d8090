"""Delivery ledger models.

One DeliveryAttemptRecord exists per delivery sequence: a single event
notification to a single subscription, which may span several HTTP attempts.
The record is created when the sequence starts and is narrowed in place
after every attempt until it reaches a terminal state.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now

DEFAULT_RESPONSE_BODY_MAX_CHARS = 5000


class DeliveryState(str, Enum):
    """Per-sequence delivery state machine.

    INITIATED -> ATTEMPTING -> SUCCEEDED
                            -> RETRY_SCHEDULED -> ATTEMPTING
                            -> EXHAUSTED
    """

    INITIATED = "initiated"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryState.SUCCEEDED, DeliveryState.EXHAUSTED)


def truncate_body(body: str | None, max_chars: int = DEFAULT_RESPONSE_BODY_MAX_CHARS) -> str | None:
    """Cap a response body excerpt at ``max_chars`` characters."""
    if body is None:
        return None
    return body[:max_chars]


class DeliveryAttemptRecord(BaseModel):
    """Audit record for one delivery sequence.

    Attributes:
        id: Unique identifier (``dlv_`` prefix), sent as the delivery header.
        subscription_id: Owning subscription.
        owner_id: Account that owns the subscription.
        event_type: Event name that was delivered.
        payload: The exact payload that was sent.
        attempts: Attempts made so far (1-indexed).
        max_attempts: Attempt budget captured when the sequence started.
        success: True once any attempt completed.
        state: Current state machine position.
        response_status: Last HTTP status received, if any.
        response_body: Length-capped excerpt of the last response body.
        response_time_ms: Elapsed time of the last attempt.
        error: Last error message, if any.
        next_retry_at: When the next attempt is due (authoritative in queued mode).
        locked_at: Lease taken when an attempt starts; stale leases are reclaimed.
        completed_at: When the sequence reached a terminal state.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    subscription_id: str = Field(description="Owning subscription")
    owner_id: str = Field(description="Account that owns the subscription")
    event_type: str = Field(description="Delivered event name")
    payload: dict[str, Any] = Field(default_factory=dict, description="Payload sent")
    attempts: int = Field(default=1, ge=1, description="Attempts made so far")
    max_attempts: int = Field(default=1, ge=1, description="Attempt budget")
    success: bool = Field(default=False)
    state: DeliveryState = Field(default=DeliveryState.INITIATED)
    response_status: int | None = Field(default=None)
    response_body: str | None = Field(default=None)
    response_time_ms: int | None = Field(default=None, ge=0)
    error: str | None = Field(default=None)
    next_retry_at: datetime | None = Field(default=None)
    locked_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = Field(default=None)

    @property
    def attempts_remaining(self) -> int:
        return self.max_attempts - self.attempts

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts >= self.max_attempts

    def _touch(self) -> None:
        self.updated_at = utc_now()

    def mark_attempting(self, attempt: int) -> DeliveryAttemptRecord:
        """Enter ATTEMPTING for the given 1-based attempt number."""
        if self.success:
            raise ValueError(f"Delivery {self.id} already succeeded")
        if attempt > self.max_attempts:
            raise ValueError(
                f"Delivery {self.id} attempt {attempt} exceeds budget of {self.max_attempts}"
            )
        self.attempts = attempt
        self.state = DeliveryState.ATTEMPTING
        self.next_retry_at = None
        self.locked_at = utc_now()
        self._touch()
        return self

    def mark_success(
        self,
        response_status: int,
        response_body: str | None,
        response_time_ms: int,
        max_body_chars: int = DEFAULT_RESPONSE_BODY_MAX_CHARS,
    ) -> DeliveryAttemptRecord:
        """Record a completed attempt and close the sequence."""
        self.success = True
        self.state = DeliveryState.SUCCEEDED
        self.response_status = response_status
        self.response_body = truncate_body(response_body, max_body_chars)
        self.response_time_ms = response_time_ms
        self.error = None
        self.next_retry_at = None
        self.locked_at = None
        self.completed_at = utc_now()
        self._touch()
        return self

    def mark_retry_scheduled(
        self,
        error: str,
        next_retry_at: datetime,
        response_status: int | None = None,
        response_body: str | None = None,
        response_time_ms: int | None = None,
        max_body_chars: int = DEFAULT_RESPONSE_BODY_MAX_CHARS,
    ) -> DeliveryAttemptRecord:
        """Record a failed attempt that will be retried at ``next_retry_at``."""
        self.state = DeliveryState.RETRY_SCHEDULED
        self.error = error
        self.response_status = response_status
        self.response_body = truncate_body(response_body, max_body_chars)
        self.response_time_ms = response_time_ms
        self.next_retry_at = next_retry_at
        self.locked_at = None
        self._touch()
        return self

    def mark_exhausted(
        self,
        error: str,
        response_status: int | None = None,
        response_body: str | None = None,
        response_time_ms: int | None = None,
        max_body_chars: int = DEFAULT_RESPONSE_BODY_MAX_CHARS,
    ) -> DeliveryAttemptRecord:
        """Record the final failure of the sequence."""
        self.success = False
        self.state = DeliveryState.EXHAUSTED
        self.error = error
        self.response_status = response_status
        self.response_body = truncate_body(response_body, max_body_chars)
        self.response_time_ms = response_time_ms
        self.next_retry_at = None
        self.locked_at = None
        self.completed_at = utc_now()
        self._touch()
        return self


class DeliveryResult(BaseModel):
    """Outcome of one dispatcher call.

    ``success`` is True for SUCCEEDED, False otherwise. A RETRY_SCHEDULED
    result (queued mode) is neither success nor final failure; check
    ``pending``.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    record: DeliveryAttemptRecord
    error: str | None = None

    @property
    def state(self) -> DeliveryState:
        return self.record.state

    @property
    def pending(self) -> bool:
        return not self.record.state.is_terminal


class TriggerSummary(BaseModel):
    """Aggregate result of fanning one event out to its subscribers."""

    model_config = ConfigDict(extra="forbid")

    triggered: int = Field(default=0, ge=0)
    successful: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    pending: int = Field(default=0, ge=0)
    delivery_ids: list[str] = Field(default_factory=list)
    error: str | None = None


__all__ = [
    "DEFAULT_RESPONSE_BODY_MAX_CHARS",
    "DeliveryAttemptRecord",
    "DeliveryResult",
    "DeliveryState",
    "TriggerSummary",
    "truncate_body",
]
