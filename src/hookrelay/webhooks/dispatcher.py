"""Webhook delivery with HMAC signatures and exponential backoff retry.

One ``deliver`` call runs one delivery sequence for one subscription:

    INITIATED -> ATTEMPTING -> SUCCEEDED
                            -> RETRY_SCHEDULED -> ATTEMPTING ...
                            -> EXHAUSTED

Any HTTP response completes the sequence; only transport failures
(timeouts, refused connections, DNS and protocol errors) are retried.
In ``inline`` mode the dispatching task sleeps through the backoff. In
``queued`` mode the record is left in RETRY_SCHEDULED with its due time and
the retry worker continues the sequence through ``resume``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from hookrelay.config import RetryMode, Settings
from hookrelay.config import settings as default_settings
from hookrelay.exceptions import TerminalFailure, TransportError
from hookrelay.logging import get_logger, log_context
from hookrelay.models import DeliveryAttemptRecord, DeliveryResult, EventType

from .backoff import backoff_seconds, next_retry_at
from .headers import build_delivery_headers
from .signing import serialize_payload, sign

if TYPE_CHECKING:
    from hookrelay.models import Subscription
    from hookrelay.storage import HookStorage

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]

LEASE_LOST = "Delivery lease lost to the retry worker"


@dataclass(slots=True)
class _Response:
    """What one completed attempt observed."""

    status_code: int
    body: str
    elapsed_ms: int


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class DeliveryDispatcher:
    """Delivers one event to one subscription with retries.

    Handles:
    - Signing the serialized payload with the subscription secret
    - Building headers and POSTing with the subscription's timeout
    - Retrying transport failures with ``base * 2**attempt`` backoff
    - Keeping the delivery record and subscription counters current

    Example:
        ```python
        dispatcher = DeliveryDispatcher(storage)
        result = await dispatcher.deliver(subscription, "post.created", {"id": "p1"})
        if result.pending:
            ...  # queued mode: the retry worker will continue it
        ```
    """

    def __init__(
        self,
        storage: HookStorage,
        settings: Settings | None = None,
        *,
        retry_mode: RetryMode | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            storage: HookStorage for delivery records and counters.
            settings: Settings to read delivery options from.
            retry_mode: Overrides ``settings.retry_mode``.
            transport: httpx transport for outgoing requests (tests use MockTransport).
            sleep: Awaitable used for inline backoff waits.
        """
        self._storage = storage
        self._settings = settings or default_settings
        self._retry_mode: RetryMode = retry_mode or self._settings.retry_mode
        self._transport = transport
        self._sleep = sleep
        # Bounds in-flight requests only; backoff waits happen outside it
        self._semaphore = asyncio.Semaphore(self._settings.max_concurrent_requests)

    @property
    def retry_mode(self) -> RetryMode:
        return self._retry_mode

    async def deliver(
        self,
        subscription: Subscription,
        event_type: EventType | str,
        payload: Mapping[str, Any],
    ) -> DeliveryResult:
        """Start a delivery sequence for one event.

        Args:
            subscription: Target subscription.
            event_type: Event name, sent in the event header.
            payload: JSON-serializable body.

        Returns:
            DeliveryResult. ``pending`` is True when a retry was queued.
        """
        event_name = event_type.value if isinstance(event_type, EventType) else str(event_type)
        record = DeliveryAttemptRecord(
            subscription_id=subscription.id,
            owner_id=subscription.owner_id,
            event_type=event_name,
            payload=dict(payload),
            attempts=1,
            max_attempts=subscription.max_attempts,
        )
        await self._storage.log_delivery(record)
        return await self._run(subscription, record, attempt=1)

    async def resume(
        self,
        subscription: Subscription,
        record: DeliveryAttemptRecord,
    ) -> DeliveryResult:
        """Continue a queued sequence with its next attempt.

        The attempt budget captured when the sequence started is kept, even
        if the subscription's ``max_retries`` changed since.
        """
        attempt = record.attempts + 1
        if attempt > record.max_attempts:
            # The final attempt was interrupted before its outcome was recorded
            record.mark_exhausted(
                error=record.error or "Delivery interrupted on final attempt",
                response_status=record.response_status,
                response_body=record.response_body,
                response_time_ms=record.response_time_ms,
                max_body_chars=self._settings.response_body_max_chars,
            )
            await self._finish_failed(subscription, record)
            return DeliveryResult(success=False, record=record, error=record.error)
        return await self._run(subscription, record, attempt=attempt)

    async def _run(
        self,
        subscription: Subscription,
        record: DeliveryAttemptRecord,
        attempt: int,
    ) -> DeliveryResult:
        with log_context(
            delivery_id=record.id,
            subscription_id=subscription.id,
            event_type=record.event_type,
        ):
            return await self._run_attempts(subscription, record, attempt)

    async def _run_attempts(
        self,
        subscription: Subscription,
        record: DeliveryAttemptRecord,
        attempt: int,
    ) -> DeliveryResult:
        body = serialize_payload(record.payload)
        max_body_chars = self._settings.response_body_max_chars
        base = self._settings.backoff_base_seconds

        try:
            while True:
                failure: TransportError | None = None
                async with self._semaphore:
                    # The lease is taken only once a request slot is held
                    if not await self._storage.begin_attempt(record, attempt):
                        logger.warning("Delivery lease lost, leaving it queued", attempt=attempt)
                        return DeliveryResult(success=False, record=record, error=LEASE_LOST)
                    started = time.monotonic()
                    try:
                        response = await self._attempt(subscription, record, body)
                    except TransportError as e:
                        failure = e
                        elapsed = _elapsed_ms(started)

                if failure is None:
                    break

                if attempt >= record.max_attempts:
                    record.mark_exhausted(
                        error=failure.message,
                        response_status=failure.status_code,
                        response_body=failure.response_body,
                        response_time_ms=elapsed,
                        max_body_chars=max_body_chars,
                    )
                    raise TerminalFailure(
                        record, f"Delivery failed after {attempt} attempts: {failure.message}"
                    ) from failure

                due = next_retry_at(attempt, base)
                record.mark_retry_scheduled(
                    error=failure.message,
                    next_retry_at=due,
                    response_status=failure.status_code,
                    response_body=failure.response_body,
                    response_time_ms=elapsed,
                    max_body_chars=max_body_chars,
                )
                await self._storage.update_delivery(record)
                logger.info(
                    "Delivery attempt failed, retry scheduled",
                    attempt=attempt,
                    max_attempts=record.max_attempts,
                    error=failure.message,
                    next_retry_at=due.isoformat(),
                )

                if self._retry_mode == "queued":
                    return DeliveryResult(success=False, record=record, error=record.error)

                await self._sleep(backoff_seconds(attempt, base))
                attempt += 1

        except TerminalFailure as e:
            logger.warning(
                "Webhook delivery exhausted", attempts=record.attempts, error=record.error
            )
            await self._finish_failed(subscription, e.record)
            return DeliveryResult(success=False, record=e.record, error=e.message)
        except Exception as e:
            logger.exception("Webhook delivery error", attempt=record.attempts)
            record.mark_exhausted(
                error=f"Unexpected error: {e}",
                max_body_chars=max_body_chars,
            )
            await self._finish_failed(subscription, record)
            return DeliveryResult(success=False, record=record, error=record.error)

        return await self._finish_succeeded(subscription, record, response, attempt)

    async def _attempt(
        self,
        subscription: Subscription,
        record: DeliveryAttemptRecord,
        body: str,
    ) -> _Response:
        """Perform one HTTP attempt.

        Raises:
            TransportError: If no usable response was received.
        """
        headers = build_delivery_headers(
            event_type=record.event_type,
            signature=sign(body, subscription.secret.get_secret_value()),
            delivery_id=record.id,
            user_agent=self._settings.user_agent,
            custom=subscription.headers,
            allow_protected_override=self._settings.allow_protected_header_override,
        )

        started = time.monotonic()
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=subscription.timeout_seconds,
            ) as client:
                response = await client.post(
                    str(subscription.url),
                    content=body.encode("utf-8"),
                    headers=headers,
                )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out after {subscription.timeout_ms}ms") from e
        except httpx.RequestError as e:
            raise TransportError(str(e) or type(e).__name__) from e

        result = _Response(response.status_code, response.text, _elapsed_ms(started))
        if self._settings.retry_on_error_status and not response.is_success:
            raise TransportError(
                f"HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=result.body,
            )
        return result

    async def _finish_succeeded(
        self,
        subscription: Subscription,
        record: DeliveryAttemptRecord,
        response: _Response,
        attempt: int,
    ) -> DeliveryResult:
        record.mark_success(
            response_status=response.status_code,
            response_body=response.body,
            response_time_ms=response.elapsed_ms,
            max_body_chars=self._settings.response_body_max_chars,
        )
        # The receiver has the event; a bookkeeping failure cannot undo that
        try:
            await self._storage.update_delivery(record)
        except Exception:
            logger.exception("Delivered but failed to save the delivery record", attempt=attempt)
        try:
            await self._storage.record_outcome(subscription.id, subscription.owner_id, success=True)
        except Exception:
            logger.exception("Delivered but failed to update counters", attempt=attempt)

        logger.info(
            "Webhook delivered",
            attempt=attempt,
            status_code=response.status_code,
            response_time_ms=response.elapsed_ms,
        )
        return DeliveryResult(success=True, record=record)

    async def _finish_failed(
        self,
        subscription: Subscription,
        record: DeliveryAttemptRecord,
    ) -> None:
        await self._storage.update_delivery(record)
        await self._storage.record_outcome(subscription.id, subscription.owner_id, success=False)


__all__ = ["DeliveryDispatcher", "SleepFunc"]
