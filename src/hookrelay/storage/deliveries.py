"""Delivery ledger storage.

One document per delivery sequence, updated in place after every attempt.
The ledger is also the durable retry queue: records in ``retry_scheduled``
with a due ``next_retry_at`` are claimed by the retry worker.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from qdrant_client import models

from hookrelay.models import DeliveryAttemptRecord, DeliveryState, utc_now

from .base import to_timestamp
from .retry import qdrant_retry

if TYPE_CHECKING:
    from qdrant_client import AsyncQdrantClient

_TIMESTAMP_FIELDS = {
    "created_ts": "created_at",
    "next_retry_ts": "next_retry_at",
    "locked_ts": "locked_at",
}


class DeliveryMixin:
    """Mixin providing delivery ledger operations for HookStorage.

    This mixin expects the following attributes/methods from the base class:
    - _collection_name(kind) -> str
    - _point_id(record_id, owner_id) -> str
    - _upsert(kind, point_id, payload)
    - _match(key, value) -> FieldCondition
    - _lock(key) -> asyncio.Lock
    - _scroll_all(kind, scroll_filter) -> list[Record]
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _point_id: Any
    _upsert: Any
    _match: Any
    _lock: Any
    _scroll_all: Any
    client: AsyncQdrantClient

    @staticmethod
    def _record_to_payload(record: DeliveryAttemptRecord) -> dict[str, Any]:
        payload = record.model_dump(mode="json")
        for ts_field, source in _TIMESTAMP_FIELDS.items():
            payload[ts_field] = to_timestamp(getattr(record, source))
        return payload

    @staticmethod
    def _payload_to_record(payload: dict[str, Any]) -> DeliveryAttemptRecord:
        data = {k: v for k, v in payload.items() if k not in _TIMESTAMP_FIELDS}
        return DeliveryAttemptRecord.model_validate(data)

    @qdrant_retry
    async def log_delivery(self, record: DeliveryAttemptRecord) -> str:
        """Write a delivery record (insert or replace).

        Returns:
            The delivery ID.
        """
        await self._upsert(
            "deliveries",
            self._point_id(record.id, record.owner_id),
            self._record_to_payload(record),
        )
        return record.id

    async def update_delivery(self, record: DeliveryAttemptRecord) -> str:
        """Persist the current state of a delivery record."""
        return await self.log_delivery(record)

    @qdrant_retry
    async def get_delivery(self, delivery_id: str, owner_id: str) -> DeliveryAttemptRecord | None:
        """Get a delivery record by ID, scoped to its owner."""
        results = await self.client.retrieve(
            collection_name=self._collection_name("deliveries"),
            ids=[self._point_id(delivery_id, owner_id)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None
        return self._payload_to_record(results[0].payload)

    @qdrant_retry
    async def list_deliveries(
        self,
        subscription_id: str,
        owner_id: str,
        success: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DeliveryAttemptRecord], int]:
        """Delivery history for a subscription, newest first.

        Args:
            subscription_id: Subscription whose history to read.
            owner_id: Owning account.
            success: If set, only return records with this success flag.
            limit: Page size.
            offset: Records to skip.

        Returns:
            Tuple of (page of records, total matching records).
        """
        filters = [
            self._match("subscription_id", subscription_id),
            self._match("owner_id", owner_id),
        ]
        if success is not None:
            filters.append(self._match("success", success))
        query_filter = models.Filter(must=filters)
        collection = self._collection_name("deliveries")

        count = await self.client.count(collection_name=collection, count_filter=query_filter)
        # Ordered scrolls cannot resume from a page offset, so read through the page
        points, _ = await self.client.scroll(
            collection_name=collection,
            scroll_filter=query_filter,
            limit=offset + limit,
            order_by=models.OrderBy(key="created_ts", direction=models.Direction.DESC),
            with_payload=True,
        )

        records = [self._payload_to_record(p.payload) for p in points if p.payload is not None]
        return records[offset:], int(count.count)

    @qdrant_retry
    async def get_due_deliveries(
        self,
        now: datetime | None = None,
        limit: int = 100,
    ) -> list[DeliveryAttemptRecord]:
        """Records scheduled for retry whose due time has passed, oldest due first."""
        now = now or utc_now()
        points, _ = await self.client.scroll(
            collection_name=self._collection_name("deliveries"),
            scroll_filter=models.Filter(
                must=[
                    self._match("state", DeliveryState.RETRY_SCHEDULED.value),
                    models.FieldCondition(
                        key="next_retry_ts",
                        range=models.Range(lte=now.timestamp()),
                    ),
                ]
            ),
            limit=limit,
            order_by=models.OrderBy(key="next_retry_ts", direction=models.Direction.ASC),
            with_payload=True,
        )
        return [self._payload_to_record(p.payload) for p in points if p.payload is not None]

    async def claim_delivery(
        self,
        record: DeliveryAttemptRecord,
        now: datetime | None = None,
    ) -> DeliveryAttemptRecord | None:
        """Take the lease on a due record so only one worker attempts it.

        Re-reads the record under its lock and only claims it if it is still
        scheduled and due.

        Returns:
            The claimed record, or None if it was already taken or changed.
        """
        now = now or utc_now()
        async with self._lock(f"delivery/{record.id}"):
            current = await self.get_delivery(record.id, record.owner_id)
            if current is None or current.state is not DeliveryState.RETRY_SCHEDULED:
                return None
            if current.next_retry_at is not None and current.next_retry_at > now:
                return None

            current.state = DeliveryState.ATTEMPTING
            current.locked_at = now
            current.updated_at = now
            await self.update_delivery(current)
            return current

    async def begin_attempt(self, record: DeliveryAttemptRecord, attempt: int) -> bool:
        """Take the lease for an attempt if the stored record is still ours.

        The stored record must have the state and lease the caller last saw.
        A record released as stale and re-claimed elsewhere no longer does.

        Returns:
            True if ``record`` was moved to ATTEMPTING and saved.
        """
        async with self._lock(f"delivery/{record.id}"):
            current = await self.get_delivery(record.id, record.owner_id)
            if current is None or current.state is not record.state:
                return False
            if current.locked_at != record.locked_at:
                return False
            record.mark_attempting(attempt)
            await self.update_delivery(record)
            return True

    @qdrant_retry
    async def release_stale_claims(
        self,
        locked_before: datetime,
        now: datetime | None = None,
    ) -> int:
        """Return in-flight records with an expired lease to the retry queue.

        Covers attempts interrupted by a crash or restart. Released records
        become due immediately.

        Returns:
            Number of released records.
        """
        now = now or utc_now()
        points = await self._scroll_all(
            "deliveries",
            models.Filter(
                must=[
                    self._match("state", DeliveryState.ATTEMPTING.value),
                    models.FieldCondition(
                        key="locked_ts",
                        range=models.Range(lt=locked_before.timestamp()),
                    ),
                ]
            ),
        )

        released = 0
        for point in points:
            if point.payload is None:
                continue
            stale = self._payload_to_record(point.payload)
            async with self._lock(f"delivery/{stale.id}"):
                record = await self.get_delivery(stale.id, stale.owner_id)
                if record is None or record.state is not DeliveryState.ATTEMPTING:
                    continue
                if record.locked_at is None or record.locked_at >= locked_before:
                    continue
                record.state = DeliveryState.RETRY_SCHEDULED
                record.next_retry_at = now
                record.locked_at = None
                record.updated_at = now
                await self.update_delivery(record)
            released += 1
        return released
