"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from hookrelay.models import (
    MAX_RETRIES,
    MAX_TIMEOUT_MS,
    MIN_RETRIES,
    MIN_TIMEOUT_MS,
    DeliveryAttemptRecord,
    DeliveryState,
    Subscription,
)


class CreateSubscriptionRequest(BaseModel):
    """Request body for registering a webhook.

    ``url`` and ``events`` are optional here so that a missing value is
    reported as a registry validation error rather than a schema error.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100, description="Display name")
    url: str | None = Field(default=None, description="Endpoint that receives events")
    events: list[str] | None = Field(default=None, description="Event types to subscribe to")
    description: str | None = Field(default=None, description="Optional description")
    headers: dict[str, str] | None = Field(default=None, description="Custom request headers")
    max_retries: int | None = Field(default=None, ge=MIN_RETRIES, le=MAX_RETRIES)
    timeout_ms: int | None = Field(default=None, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS)
    active: bool = Field(default=True)


class UpdateSubscriptionRequest(BaseModel):
    """Partial update. Omitted fields keep their current value."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=100)
    url: str | None = None
    events: list[str] | None = Field(default=None)
    description: str | None = None
    headers: dict[str, str] | None = None
    max_retries: int | None = Field(default=None, ge=MIN_RETRIES, le=MAX_RETRIES)
    timeout_ms: int | None = Field(default=None, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS)
    active: bool | None = None


class TriggerRequest(BaseModel):
    """Request body for emitting an event for the caller."""

    model_config = ConfigDict(extra="forbid")

    event: str = Field(min_length=1, description="Event type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Event payload")


class SubscriptionResponse(BaseModel):
    """A subscription as returned by read endpoints. The secret is never included."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    description: str | None
    url: str
    events: list[str]
    active: bool
    headers: dict[str, str]
    max_retries: int
    timeout_ms: int
    last_triggered_at: datetime | None
    success_count: int
    failure_count: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> SubscriptionResponse:
        return cls(
            id=subscription.id,
            name=subscription.name,
            description=subscription.description,
            url=str(subscription.url),
            events=[e.value for e in subscription.events],
            active=subscription.active,
            headers=subscription.headers,
            max_retries=subscription.max_retries,
            timeout_ms=subscription.timeout_ms,
            last_triggered_at=subscription.last_triggered_at,
            success_count=subscription.success_count,
            failure_count=subscription.failure_count,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )


class SubscriptionSecretResponse(BaseModel):
    """Create and rotate responses: the only place the plaintext secret appears."""

    model_config = ConfigDict(extra="forbid")

    subscription: SubscriptionResponse
    secret: str
    message: str


class SubscriptionListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subscriptions: list[SubscriptionResponse]
    count: int


class DeliveryResponse(BaseModel):
    """One delivery sequence from the ledger."""

    model_config = ConfigDict(extra="forbid")

    id: str
    subscription_id: str
    event_type: str
    payload: dict[str, Any]
    state: DeliveryState
    success: bool
    attempts: int
    max_attempts: int
    response_status: int | None
    response_body: str | None
    response_time_ms: int | None
    error: str | None
    next_retry_at: datetime | None
    created_at: datetime
    completed_at: datetime | None

    @classmethod
    def from_record(cls, record: DeliveryAttemptRecord) -> DeliveryResponse:
        return cls(
            id=record.id,
            subscription_id=record.subscription_id,
            event_type=record.event_type,
            payload=record.payload,
            state=record.state,
            success=record.success,
            attempts=record.attempts,
            max_attempts=record.max_attempts,
            response_status=record.response_status,
            response_body=record.response_body,
            response_time_ms=record.response_time_ms,
            error=record.error,
            next_retry_at=record.next_retry_at,
            created_at=record.created_at,
            completed_at=record.completed_at,
        )


class SubscriptionDetailResponse(BaseModel):
    """A subscription with its most recent deliveries."""

    model_config = ConfigDict(extra="forbid")

    subscription: SubscriptionResponse
    recent_deliveries: list[DeliveryResponse]


class DeliveryListResponse(BaseModel):
    """Paginated delivery history.

    Attributes:
        deliveries: Page of records, newest first.
        total: Records matching the filter.
        limit: Page size used.
        offset: Records skipped.
    """

    model_config = ConfigDict(extra="forbid")

    deliveries: list[DeliveryResponse]
    total: int
    limit: int
    offset: int


class EventListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    events: list[str]
    count: int


class DeliveryTestResponse(BaseModel):
    """Outcome of a test delivery."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    state: DeliveryState
    delivery: DeliveryResponse
    error: str | None = None


class TriggerResponse(BaseModel):
    """Fan-out summary for an emitted event."""

    model_config = ConfigDict(extra="forbid")

    triggered: int
    successful: int
    failed: int
    pending: int
    delivery_ids: list[str]
    error: str | None = None


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy, unhealthy).
        version: API version.
        storage_connected: Whether storage is connected.
        retry_mode: Active retry mode.
        worker_running: Whether the retry worker is polling.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    storage_connected: bool
    retry_mode: str | None = None
    worker_running: bool = False
