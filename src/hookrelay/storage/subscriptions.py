"""Subscription registry storage.

Stores subscriptions with their secret encrypted, answers the fan-out query
(active subscriptions of an owner listening for an event), and applies
delivery outcomes to the aggregate counters.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from qdrant_client import models

from hookrelay.models import EventType, Subscription, utc_now

from .retry import qdrant_retry

if TYPE_CHECKING:
    import asyncio

    from qdrant_client import AsyncQdrantClient

    from hookrelay.crypto import SecretBox

_SECRET_FIELD = "secret_ciphertext"


class SubscriptionMixin:
    """Mixin providing subscription operations for HookStorage.

    This mixin expects the following attributes/methods from the base class:
    - _collection_name(kind) -> str
    - _point_id(record_id, owner_id) -> str
    - _upsert(kind, point_id, payload)
    - _match(key, value) -> FieldCondition
    - _lock(key) -> asyncio.Lock
    - _scroll_all(kind, scroll_filter) -> list[Record]
    - _secret_box: SecretBox
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _point_id: Any
    _upsert: Any
    _match: Any
    _lock: Any
    _scroll_all: Any
    _secret_box: SecretBox
    client: AsyncQdrantClient

    def _subscription_to_payload(self, subscription: Subscription) -> dict[str, Any]:
        payload = subscription.model_dump(mode="json", exclude={"secret"})
        payload[_SECRET_FIELD] = self._secret_box.encrypt(subscription.secret.get_secret_value())
        return payload

    def _payload_to_subscription(self, payload: dict[str, Any]) -> Subscription:
        data = dict(payload)
        data["secret"] = self._secret_box.decrypt(data.pop(_SECRET_FIELD))
        return Subscription.model_validate(data)

    def _subscription_lock(self, subscription_id: str) -> asyncio.Lock:
        lock: asyncio.Lock = self._lock(f"subscription/{subscription_id}")
        return lock

    @qdrant_retry
    async def store_subscription(self, subscription: Subscription) -> str:
        """Insert or replace a subscription.

        Returns:
            The subscription ID.
        """
        await self._upsert(
            "subscriptions",
            self._point_id(subscription.id, subscription.owner_id),
            self._subscription_to_payload(subscription),
        )
        return subscription.id

    @qdrant_retry
    async def get_subscription(
        self,
        subscription_id: str,
        owner_id: str,
    ) -> Subscription | None:
        """Get a subscription by ID, scoped to its owner."""
        results = await self.client.retrieve(
            collection_name=self._collection_name("subscriptions"),
            ids=[self._point_id(subscription_id, owner_id)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None
        return self._payload_to_subscription(results[0].payload)

    @qdrant_retry
    async def list_subscriptions(
        self,
        owner_id: str,
        active: bool | None = None,
    ) -> list[Subscription]:
        """List all of an owner's subscriptions, newest first.

        Args:
            owner_id: Owning account.
            active: If set, only return subscriptions with this active flag.
        """
        filters = [self._match("owner_id", owner_id)]
        if active is not None:
            filters.append(self._match("active", active))

        points = await self._scroll_all("subscriptions", models.Filter(must=filters))
        subscriptions = [
            self._payload_to_subscription(p.payload) for p in points if p.payload is not None
        ]
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions

    @qdrant_retry
    async def get_subscriptions_for_event(
        self,
        event_type: EventType | str,
        owner_id: str,
    ) -> list[Subscription]:
        """Active subscriptions of ``owner_id`` that listen for ``event_type``."""
        event = event_type.value if isinstance(event_type, EventType) else str(event_type)
        points = await self._scroll_all(
            "subscriptions",
            models.Filter(
                must=[
                    self._match("owner_id", owner_id),
                    self._match("active", True),
                    self._match("events", event),
                ]
            ),
        )
        return [self._payload_to_subscription(p.payload) for p in points if p.payload is not None]

    async def update_subscription(
        self,
        subscription_id: str,
        owner_id: str,
        **updates: Any,
    ) -> Subscription | None:
        """Apply configuration updates and re-validate the subscription.

        Runs under the subscription lock so a concurrent outcome update is
        never overwritten with stale counters.

        Raises:
            pydantic.ValidationError: If the updated subscription is invalid.

        Returns:
            Updated subscription, or None if not found.
        """
        async with self._subscription_lock(subscription_id):
            current = await self.get_subscription(subscription_id, owner_id)
            if current is None:
                return None

            data = current.model_dump()
            data.update(updates)
            data["updated_at"] = utc_now()
            updated = Subscription.model_validate(data)

            await self.store_subscription(updated)
            return updated

    @qdrant_retry
    async def delete_subscription(self, subscription_id: str, owner_id: str) -> bool:
        """Delete a subscription. Delivery records are kept for audit.

        Returns:
            True if deleted, False if not found.
        """
        async with self._subscription_lock(subscription_id):
            point_id = self._point_id(subscription_id, owner_id)
            collection = self._collection_name("subscriptions")
            existing = await self.client.retrieve(
                collection_name=collection,
                ids=[point_id],
                with_payload=False,
            )
            if not existing:
                return False
            await self.client.delete(
                collection_name=collection,
                points_selector=models.PointIdsList(points=[point_id]),
            )
            return True

    async def record_outcome(
        self,
        subscription_id: str,
        owner_id: str,
        success: bool,
        at: datetime | None = None,
    ) -> Subscription | None:
        """Count one finished delivery sequence against a subscription.

        Increments ``success_count`` or ``failure_count`` and sets
        ``last_triggered_at``. Only those fields are written, under the
        subscription lock, so concurrent sequences for the same
        subscription never lose an increment.

        Returns:
            The subscription with updated counters, or None if it was deleted.
        """
        async with self._subscription_lock(subscription_id):
            current = await self.get_subscription(subscription_id, owner_id)
            if current is None:
                return None

            if success:
                current.success_count += 1
            else:
                current.failure_count += 1
            current.last_triggered_at = at or utc_now()

            await self._set_subscription_fields(
                current,
                {
                    "success_count": current.success_count,
                    "failure_count": current.failure_count,
                    "last_triggered_at": current.last_triggered_at.isoformat(),
                },
            )
            return current

    @qdrant_retry
    async def _set_subscription_fields(
        self, subscription: Subscription, fields: dict[str, Any]
    ) -> None:
        await self.client.set_payload(
            collection_name=self._collection_name("subscriptions"),
            payload=fields,
            points=[self._point_id(subscription.id, subscription.owner_id)],
        )
