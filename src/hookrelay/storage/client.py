"""Qdrant storage client for HookRelay.

Combines the subscription registry and delivery ledger mixins.

Example:
    ```python
    from hookrelay.storage import HookStorage

    async with HookStorage() as storage:
        await storage.store_subscription(subscription)
        matching = await storage.get_subscriptions_for_event("post.created", owner_id="acct_1")
    ```
"""

from __future__ import annotations

from typing import Any

from .base import StorageBase
from .deliveries import DeliveryMixin
from .subscriptions import SubscriptionMixin


class HookStorage(SubscriptionMixin, DeliveryMixin, StorageBase):
    """Async Qdrant storage for subscriptions and delivery records.

    - SubscriptionMixin: store/get/list/update/delete subscriptions, the
      fan-out query, and counter updates (record_outcome)
    - DeliveryMixin: log/update/get/list delivery records, due-retry queries,
      claims and lease recovery
    """

    async def __aenter__(self) -> HookStorage:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


__all__ = ["HookStorage"]
