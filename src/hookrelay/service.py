"""HookRelay service layer.

Wires storage, the subscription registry, the delivery dispatcher, the
fan-out trigger and the retry worker together.

Example:
    ```python
    from hookrelay.service import HookRelayService

    async with HookRelayService.create() as relay:
        subscription, secret = await relay.registry.create(
            owner_id="acct_1",
            name="Posts",
            url="https://example.com/hooks",
            events=["post.created"],
        )
        summary = await relay.trigger.trigger("acct_1", "post.created", {"post_id": "p1"})
    ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from hookrelay.config import Settings
from hookrelay.crypto import SecretBox
from hookrelay.logging import get_logger
from hookrelay.registry import SubscriptionRegistry
from hookrelay.storage import HookStorage
from hookrelay.webhooks import DeliveryDispatcher, FanOutTrigger, RetryWorker

logger = get_logger(__name__)


@dataclass
class HookRelayService:
    """High-level webhook service.

    Attributes:
        storage: Qdrant storage for subscriptions and the delivery ledger.
        registry: Subscription CRUD and the fan-out query.
        dispatcher: Single-subscription delivery with retries.
        trigger: Fan-out of one event to all matching subscriptions.
        worker: Durable retry worker (used in queued mode).
        settings: Configuration settings.
    """

    storage: HookStorage
    registry: SubscriptionRegistry
    dispatcher: DeliveryDispatcher
    trigger: FanOutTrigger
    worker: RetryWorker
    settings: Settings
    _worker_started: bool = field(default=False, init=False, repr=False)

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        location: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> HookRelayService:
        """Create a HookRelayService with default dependencies.

        Args:
            settings: Optional settings. Uses environment if None.
            location: Local Qdrant location such as ":memory:".
            transport: httpx transport for outgoing deliveries.
        """
        if settings is None:
            settings = Settings()

        storage = HookStorage(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            prefix=settings.collection_prefix,
            location=location,
            secret_box=SecretBox(settings.effective_encryption_key),
        )
        dispatcher = DeliveryDispatcher(storage, settings, transport=transport)
        registry = SubscriptionRegistry(storage, dispatcher)
        return cls(
            storage=storage,
            registry=registry,
            dispatcher=dispatcher,
            trigger=FanOutTrigger(registry, dispatcher),
            worker=RetryWorker(storage, dispatcher, settings),
            settings=settings,
        )

    async def initialize(self, *, start_worker: bool = False) -> None:
        """Initialize storage and optionally start the retry worker.

        The worker only runs in queued mode.
        """
        await self.storage.initialize()
        if start_worker and self.dispatcher.retry_mode == "queued":
            self.worker.start()
            self._worker_started = True
        elif start_worker:
            logger.info("Retry worker not started", retry_mode=self.dispatcher.retry_mode)

    async def close(self) -> None:
        """Stop the worker, wait for background triggers and close storage."""
        if self._worker_started:
            await self.worker.stop()
            self._worker_started = False
        await self.trigger.drain()
        await self.storage.close()

    async def __aenter__(self) -> HookRelayService:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


__all__ = ["HookRelayService"]
