"""Subscription registry service.

Validates subscription configuration, issues and rotates secrets, and
answers the fan-out query. Storage errors on the fan-out path are turned
into RegistryUnavailable so the trigger can isolate them.

Example:
    ```python
    registry = SubscriptionRegistry(storage)
    subscription, secret = await registry.create(
        owner_id="acct_1",
        name="Post sync",
        url="https://example.com/hooks",
        events=["post.created", "post.updated"],
    )
    ```
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

import pydantic

from hookrelay.exceptions import (
    NotFoundError,
    RegistryUnavailable,
    ValidationError,
)
from hookrelay.logging import get_logger
from hookrelay.models import (
    DeliveryAttemptRecord,
    DeliveryResult,
    EventType,
    Subscription,
    parse_event_type,
    utc_now,
)
from hookrelay.webhooks.signing import generate_secret

if TYPE_CHECKING:
    from hookrelay.storage import HookStorage
    from hookrelay.webhooks.dispatcher import DeliveryDispatcher

logger = get_logger(__name__)

# Fields an owner may change after creation
UPDATABLE_FIELDS = frozenset(
    {"name", "description", "url", "events", "active", "headers", "max_retries", "timeout_ms"}
)

RECENT_DELIVERIES_LIMIT = 20
TEST_MESSAGE = "This is a test webhook from HookRelay"

def validate_events(events: Iterable[str | EventType] | None) -> list[EventType]:
    """Check an event list against the subscribable vocabulary.

    Raises:
        ValidationError: If the list is empty or contains unknown events.
    """
    values = list(events or [])
    if not values:
        raise ValidationError("events", "At least one event is required")

    parsed: list[EventType] = []
    invalid: list[str] = []
    for value in values:
        event = parse_event_type(value)
        if event is None or event is EventType.WEBHOOK_TEST:
            invalid.append(str(value))
        else:
            parsed.append(event)

    if invalid:
        raise ValidationError(
            "events",
            f"Invalid events: {', '.join(invalid)}",
            details={"invalid": invalid},
        )
    return parsed


def _from_pydantic(error: pydantic.ValidationError) -> ValidationError:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "subscription"
    return ValidationError(
        field,
        first.get("msg", "Invalid value"),
        details={"errors": error.errors(include_url=False, include_context=False)},
    )


class SubscriptionRegistry:
    """CRUD and lookup for subscriptions, scoped per owner."""

    def __init__(
        self,
        storage: HookStorage,
        dispatcher: DeliveryDispatcher | None = None,
    ) -> None:
        self._storage = storage
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> DeliveryDispatcher:
        if self._dispatcher is None:
            from hookrelay.webhooks.dispatcher import DeliveryDispatcher

            self._dispatcher = DeliveryDispatcher(self._storage)
        return self._dispatcher

    async def create(
        self,
        owner_id: str,
        name: str,
        url: str | None,
        events: Iterable[str | EventType] | None,
        description: str | None = None,
        headers: Mapping[str, str] | None = None,
        max_retries: int | None = None,
        timeout_ms: int | None = None,
        active: bool = True,
    ) -> tuple[Subscription, str]:
        """Register a subscription and issue its secret.

        Returns:
            Tuple of (subscription, plaintext secret). The secret is not
            retrievable later; it can only be rotated.

        Raises:
            ValidationError: If the URL or events are missing or invalid.
        """
        if not url:
            raise ValidationError("url", "URL is required")
        parsed_events = validate_events(events)

        secret = generate_secret()
        data: dict[str, Any] = {
            "owner_id": owner_id,
            "name": name,
            "description": description,
            "url": url,
            "secret": secret,
            "events": parsed_events,
            "active": active,
            "headers": dict(headers or {}),
        }
        if max_retries is not None:
            data["max_retries"] = max_retries
        if timeout_ms is not None:
            data["timeout_ms"] = timeout_ms

        try:
            subscription = Subscription.model_validate(data)
        except pydantic.ValidationError as e:
            raise _from_pydantic(e) from e

        await self._storage.store_subscription(subscription)
        logger.info(
            "Subscription created",
            subscription_id=subscription.id,
            owner_id=owner_id,
            events=[e.value for e in subscription.events],
        )
        return subscription, secret

    async def list_subscriptions(
        self, owner_id: str, active: bool | None = None
    ) -> list[Subscription]:
        return await self._storage.list_subscriptions(owner_id=owner_id, active=active)

    async def get(self, subscription_id: str, owner_id: str) -> Subscription:
        """Get a subscription.

        Raises:
            NotFoundError: If it does not exist for this owner.
        """
        subscription = await self._storage.get_subscription(subscription_id, owner_id)
        if subscription is None:
            raise NotFoundError("subscription", subscription_id)
        return subscription

    async def update(self, subscription_id: str, owner_id: str, **updates: Any) -> Subscription:
        """Apply a partial update. ``None`` values are ignored.

        Raises:
            ValidationError: On unknown fields or invalid values.
            NotFoundError: If the subscription does not exist.
        """
        changes = {k: v for k, v in updates.items() if v is not None}
        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                unknown[0], "Field cannot be updated", details={"fields": unknown}
            )
        if "events" in changes:
            changes["events"] = validate_events(changes["events"])
        if "headers" in changes:
            changes["headers"] = dict(changes["headers"])

        try:
            subscription = await self._storage.update_subscription(
                subscription_id, owner_id, **changes
            )
        except pydantic.ValidationError as e:
            raise _from_pydantic(e) from e

        if subscription is None:
            raise NotFoundError("subscription", subscription_id)
        logger.info(
            "Subscription updated",
            subscription_id=subscription_id,
            fields=sorted(changes),
        )
        return subscription

    async def delete(self, subscription_id: str, owner_id: str) -> None:
        """Delete a subscription. Its delivery history is kept."""
        if not await self._storage.delete_subscription(subscription_id, owner_id):
            raise NotFoundError("subscription", subscription_id)
        logger.info("Subscription deleted", subscription_id=subscription_id, owner_id=owner_id)

    async def rotate_secret(self, subscription_id: str, owner_id: str) -> tuple[Subscription, str]:
        """Replace the secret. The old one stops validating immediately.

        Returns:
            Tuple of (subscription, new plaintext secret).
        """
        secret = generate_secret()
        subscription = await self._storage.update_subscription(
            subscription_id, owner_id, secret=secret
        )
        if subscription is None:
            raise NotFoundError("subscription", subscription_id)
        logger.info("Subscription secret rotated", subscription_id=subscription_id)
        return subscription, secret

    async def list_deliveries(
        self,
        subscription_id: str,
        owner_id: str,
        success: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DeliveryAttemptRecord], int]:
        """Paginated delivery history, newest first."""
        await self.get(subscription_id, owner_id)
        return await self._storage.list_deliveries(
            subscription_id,
            owner_id,
            success=success,
            limit=limit,
            offset=offset,
        )

    async def recent_deliveries(
        self,
        subscription_id: str,
        owner_id: str,
        limit: int = RECENT_DELIVERIES_LIMIT,
    ) -> list[DeliveryAttemptRecord]:
        records, _ = await self._storage.list_deliveries(subscription_id, owner_id, limit=limit)
        return records

    async def send_test(
        self,
        subscription_id: str,
        owner_id: str,
        user: Mapping[str, Any] | None = None,
    ) -> DeliveryResult:
        """Deliver a synthetic ``webhook.test`` event to one subscription.

        Sent even if the subscription is inactive or not subscribed to any
        particular event.
        """
        subscription = await self.get(subscription_id, owner_id)
        payload = {
            "event": EventType.WEBHOOK_TEST.value,
            "timestamp": utc_now().isoformat(),
            "data": {
                "message": TEST_MESSAGE,
                "user": dict(user) if user else {"id": owner_id},
            },
        }
        return await self.dispatcher.deliver(subscription, EventType.WEBHOOK_TEST, payload)

    async def list_matching(self, owner_id: str, event_type: EventType | str) -> list[Subscription]:
        """Active subscriptions of ``owner_id`` listening for ``event_type``.

        Raises:
            RegistryUnavailable: If the registry could not be queried.
        """
        try:
            return await self._storage.get_subscriptions_for_event(event_type, owner_id=owner_id)
        except Exception as e:
            # Any lookup failure, including undecodable stored documents
            raise RegistryUnavailable(f"Subscription lookup failed: {e}") from e


__all__ = [
    "RECENT_DELIVERIES_LIMIT",
    "UPDATABLE_FIELDS",
    "SubscriptionRegistry",
    "validate_events",
]
