"""Retry worker: continues queued delivery sequences when they come due.

The delivery ledger is the queue. Each pass releases leases left behind by
interrupted attempts, claims due RETRY_SCHEDULED records and hands them to
the dispatcher. Retries therefore survive a process restart.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from hookrelay.config import Settings
from hookrelay.config import settings as default_settings
from hookrelay.logging import get_logger, log_context
from hookrelay.models import DeliveryAttemptRecord, DeliveryResult, utc_now

if TYPE_CHECKING:
    from hookrelay.storage import HookStorage

    from .dispatcher import DeliveryDispatcher

logger = get_logger(__name__)


class RetryWorker:
    """Polls the delivery ledger for due retries.

    Example:
        ```python
        worker = RetryWorker(storage, dispatcher)
        worker.start()
        ...
        await worker.stop()
        ```
    """

    def __init__(
        self,
        storage: HookStorage,
        dispatcher: DeliveryDispatcher,
        settings: Settings | None = None,
    ) -> None:
        self._storage = storage
        self._dispatcher = dispatcher
        self._settings = settings or default_settings
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: datetime | None = None) -> int:
        """Run one pass over the ledger.

        Returns:
            Number of records processed (resumed or closed).
        """
        now = now or utc_now()
        lease_cutoff = now - timedelta(seconds=self._settings.worker_lease_seconds)
        released = await self._storage.release_stale_claims(lease_cutoff, now=now)
        if released:
            logger.warning("Released stale delivery leases", count=released)

        due = await self._storage.get_due_deliveries(
            now=now, limit=self._settings.worker_batch_size
        )
        claimed: list[DeliveryAttemptRecord] = []
        for record in due:
            claim = await self._storage.claim_delivery(record, now=now)
            if claim is not None:
                claimed.append(claim)

        if not claimed:
            return 0

        results = await asyncio.gather(
            *(self._process(record) for record in claimed),
            return_exceptions=True,
        )
        for record, result in zip(claimed, results, strict=True):
            if isinstance(result, Exception):
                # Lease stays in place; the record is released after it expires
                logger.error("Retry processing failed", delivery_id=record.id, error=str(result))

        logger.debug("Retry worker pass complete", processed=len(claimed))
        return len(claimed)

    async def _process(self, record: DeliveryAttemptRecord) -> DeliveryResult:
        with log_context(delivery_id=record.id, subscription_id=record.subscription_id):
            return await self._continue(record)

    async def _continue(self, record: DeliveryAttemptRecord) -> DeliveryResult:
        subscription = await self._storage.get_subscription(
            record.subscription_id, record.owner_id
        )

        if subscription is None:
            record.mark_exhausted(
                error="Subscription not found",
                max_body_chars=self._settings.response_body_max_chars,
            )
            await self._storage.update_delivery(record)
            logger.info("Dropped retry for deleted subscription")
            return DeliveryResult(success=False, record=record, error=record.error)

        if not subscription.active:
            record.mark_exhausted(
                error="Subscription inactive",
                max_body_chars=self._settings.response_body_max_chars,
            )
            await self._storage.update_delivery(record)
            await self._storage.record_outcome(
                subscription.id, subscription.owner_id, success=False
            )
            logger.info("Dropped retry for inactive subscription")
            return DeliveryResult(success=False, record=record, error=record.error)

        return await self._dispatcher.resume(subscription, record)

    async def _loop(self) -> None:
        interval = self._settings.worker_poll_interval_seconds
        while not self._stopping.is_set():
            try:
                processed = await self.run_once()
            except Exception:
                logger.exception("Retry worker pass failed")
                processed = 0
            if processed:
                continue
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)

    def start(self) -> None:
        """Start polling in a background task on the running loop."""
        if self.is_running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Retry worker started",
            poll_interval_seconds=self._settings.worker_poll_interval_seconds,
        )

    async def stop(self) -> None:
        """Stop polling and wait for the current pass to finish."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Retry worker stopped")


__all__ = ["RetryWorker"]
