"""Fan an emitted event out to every matching subscription."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from hookrelay.exceptions import RegistryUnavailable
from hookrelay.logging import get_logger
from hookrelay.models import DeliveryResult, EventType, TriggerSummary

if TYPE_CHECKING:
    from hookrelay.registry import SubscriptionRegistry

    from .dispatcher import DeliveryDispatcher

logger = get_logger(__name__)


class FanOutTrigger:
    """Dispatches an event to all subscribed webhooks of an owner.

    Deliveries run concurrently, one task per subscription. A failing
    delivery never affects the others, and nothing here raises to the code
    that emitted the event.

    Example:
        ```python
        trigger = FanOutTrigger(registry, dispatcher)
        summary = await trigger.trigger("acct_1", "post.created", {"post_id": "p1"})
        print(summary.triggered, summary.successful, summary.failed)
        ```
    """

    def __init__(self, registry: SubscriptionRegistry, dispatcher: DeliveryDispatcher) -> None:
        self._registry = registry
        self._dispatcher = dispatcher
        self._background: set[asyncio.Task[TriggerSummary]] = set()

    async def trigger(
        self,
        owner_id: str,
        event_type: EventType | str,
        payload: Mapping[str, Any],
    ) -> TriggerSummary:
        """Deliver ``payload`` to every active subscription of ``owner_id`` for ``event_type``.

        Returns:
            TriggerSummary with per-outcome counts. If the registry cannot be
            queried the summary is all zeros and carries ``error``.
        """
        event_name = event_type.value if isinstance(event_type, EventType) else str(event_type)
        try:
            subscriptions = await self._registry.list_matching(owner_id, event_name)
        except RegistryUnavailable as e:
            logger.error(
                "Webhook trigger failed to query subscriptions",
                owner_id=owner_id,
                event_type=event_name,
                error=e.message,
            )
            return TriggerSummary(error=e.message)

        if not subscriptions:
            logger.debug("No webhooks subscribed", owner_id=owner_id, event_type=event_name)
            return TriggerSummary()

        results = await asyncio.gather(
            *(self._dispatcher.deliver(s, event_name, payload) for s in subscriptions),
            return_exceptions=True,
        )

        summary = TriggerSummary(triggered=len(subscriptions))
        for subscription, result in zip(subscriptions, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                summary.failed += 1
                logger.error(
                    "Webhook dispatch raised",
                    subscription_id=subscription.id,
                    event_type=event_name,
                    error=str(result),
                )
                continue

            delivery: DeliveryResult = result
            summary.delivery_ids.append(delivery.record.id)
            if delivery.success:
                summary.successful += 1
            elif delivery.pending:
                summary.pending += 1
            else:
                summary.failed += 1

        logger.info(
            "Webhooks triggered",
            owner_id=owner_id,
            event_type=event_name,
            triggered=summary.triggered,
            successful=summary.successful,
            failed=summary.failed,
            pending=summary.pending,
        )
        return summary

    def emit(
        self,
        owner_id: str,
        event_type: EventType | str,
        payload: Mapping[str, Any],
    ) -> asyncio.Task[TriggerSummary]:
        """Schedule ``trigger`` in the background and return immediately.

        Must be called from a running event loop. The returned task never
        fails: ``trigger`` isolates every delivery error.
        """
        task = asyncio.create_task(self.trigger(owner_id, event_type, payload))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for all background triggers started by ``emit``."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


__all__ = ["FanOutTrigger"]
