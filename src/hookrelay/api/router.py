"""FastAPI router for HookRelay API endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from hookrelay.exceptions import ValidationError
from hookrelay.models import SUBSCRIBABLE_EVENTS, EventType, parse_event_type
from hookrelay.service import HookRelayService

from .auth import OwnerDep
from .schemas import (
    CreateSubscriptionRequest,
    DeliveryListResponse,
    DeliveryResponse,
    DeliveryTestResponse,
    EventListResponse,
    HealthResponse,
    SubscriptionDetailResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionSecretResponse,
    TriggerRequest,
    TriggerResponse,
    UpdateSubscriptionRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

API_VERSION = "0.1.0"

# Service instance (set by app lifespan)
_service: HookRelayService | None = None


def set_service(service: HookRelayService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> HookRelayService:
    """Dependency to get the HookRelayService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[HookRelayService, Depends(get_service)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health and retry worker status."""
    if _service is None:
        return HealthResponse(status="unhealthy", version=API_VERSION, storage_connected=False)

    return HealthResponse(
        status="healthy",
        version=API_VERSION,
        storage_connected=True,
        retry_mode=_service.dispatcher.retry_mode,
        worker_running=_service.worker.is_running,
    )


@router.get("/webhooks", response_model=SubscriptionListResponse, tags=["webhooks"])
async def list_webhooks(
    owner: OwnerDep,
    service: ServiceDep,
    active: Annotated[bool | None, Query(description="Filter by active flag")] = None,
) -> SubscriptionListResponse:
    """List the caller's webhooks. Secrets are never returned here."""
    subscriptions = await service.registry.list_subscriptions(owner.owner_id, active=active)
    return SubscriptionListResponse(
        subscriptions=[SubscriptionResponse.from_subscription(s) for s in subscriptions],
        count=len(subscriptions),
    )


@router.post(
    "/webhooks",
    response_model=SubscriptionSecretResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    request: CreateSubscriptionRequest,
    owner: OwnerDep,
    service: ServiceDep,
) -> SubscriptionSecretResponse:
    """Register a webhook.

    The response carries the signing secret. It is shown only once.
    """
    subscription, secret = await service.registry.create(
        owner_id=owner.owner_id,
        name=request.name,
        url=request.url,
        events=request.events,
        description=request.description,
        headers=request.headers,
        max_retries=request.max_retries,
        timeout_ms=request.timeout_ms,
        active=request.active,
    )
    return SubscriptionSecretResponse(
        subscription=SubscriptionResponse.from_subscription(subscription),
        secret=secret,
        message="Store this secret securely. It will not be shown again.",
    )


@router.get("/webhooks/events", response_model=EventListResponse, tags=["webhooks"])
async def list_events() -> EventListResponse:
    """List the event types a webhook can subscribe to."""
    events = [e.value for e in SUBSCRIBABLE_EVENTS]
    return EventListResponse(events=events, count=len(events))


@router.post("/webhooks/trigger", response_model=TriggerResponse, tags=["webhooks"])
async def trigger_event(
    request: TriggerRequest,
    owner: OwnerDep,
    service: ServiceDep,
) -> TriggerResponse:
    """Emit an event for the caller and deliver it to every matching webhook."""
    event = parse_event_type(request.event)
    if event is None or event is EventType.WEBHOOK_TEST:
        raise ValidationError("event", f"Unknown event: {request.event}")

    summary = await service.trigger.trigger(owner.owner_id, event, request.payload)
    return TriggerResponse(**summary.model_dump())


@router.get(
    "/webhooks/{subscription_id}",
    response_model=SubscriptionDetailResponse,
    tags=["webhooks"],
)
async def get_webhook(
    subscription_id: str,
    owner: OwnerDep,
    service: ServiceDep,
) -> SubscriptionDetailResponse:
    """Get a webhook with its 20 most recent deliveries."""
    subscription = await service.registry.get(subscription_id, owner.owner_id)
    deliveries = await service.registry.recent_deliveries(subscription_id, owner.owner_id)
    return SubscriptionDetailResponse(
        subscription=SubscriptionResponse.from_subscription(subscription),
        recent_deliveries=[DeliveryResponse.from_record(d) for d in deliveries],
    )


@router.put(
    "/webhooks/{subscription_id}",
    response_model=SubscriptionResponse,
    tags=["webhooks"],
)
async def update_webhook(
    subscription_id: str,
    request: UpdateSubscriptionRequest,
    owner: OwnerDep,
    service: ServiceDep,
) -> SubscriptionResponse:
    """Update a webhook. Only supplied fields change."""
    subscription = await service.registry.update(
        subscription_id,
        owner.owner_id,
        **request.model_dump(exclude_unset=True),
    )
    return SubscriptionResponse.from_subscription(subscription)


@router.delete(
    "/webhooks/{subscription_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["webhooks"],
)
async def delete_webhook(
    subscription_id: str,
    owner: OwnerDep,
    service: ServiceDep,
) -> None:
    """Delete a webhook. Its delivery history is retained."""
    await service.registry.delete(subscription_id, owner.owner_id)


@router.post(
    "/webhooks/{subscription_id}/test",
    response_model=DeliveryTestResponse,
    tags=["webhooks"],
)
async def test_webhook(
    subscription_id: str,
    owner: OwnerDep,
    service: ServiceDep,
) -> DeliveryTestResponse:
    """Send a ``webhook.test`` event to the webhook."""
    user = {"id": owner.owner_id}
    if owner.username:
        user["username"] = owner.username

    result = await service.registry.send_test(subscription_id, owner.owner_id, user=user)
    return DeliveryTestResponse(
        success=result.success,
        state=result.state,
        delivery=DeliveryResponse.from_record(result.record),
        error=result.error,
    )


@router.get(
    "/webhooks/{subscription_id}/deliveries",
    response_model=DeliveryListResponse,
    tags=["webhooks"],
)
async def list_webhook_deliveries(
    subscription_id: str,
    owner: OwnerDep,
    service: ServiceDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    success: Annotated[bool | None, Query(description="Filter by outcome")] = None,
) -> DeliveryListResponse:
    """Delivery history for a webhook, newest first."""
    records, total = await service.registry.list_deliveries(
        subscription_id,
        owner.owner_id,
        success=success,
        limit=limit,
        offset=offset,
    )
    return DeliveryListResponse(
        deliveries=[DeliveryResponse.from_record(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/webhooks/{subscription_id}/secret/rotate",
    response_model=SubscriptionSecretResponse,
    tags=["webhooks"],
)
async def rotate_webhook_secret(
    subscription_id: str,
    owner: OwnerDep,
    service: ServiceDep,
) -> SubscriptionSecretResponse:
    """Replace the webhook's signing secret. The old secret stops working immediately."""
    subscription, secret = await service.registry.rotate_secret(subscription_id, owner.owner_id)
    logger.info("Rotated webhook secret for %s", subscription_id)
    return SubscriptionSecretResponse(
        subscription=SubscriptionResponse.from_subscription(subscription),
        secret=secret,
        message="Secret rotated. Update your receiver with the new secret.",
    )
