"""Tests for the subscription registry service."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from conftest import OWNER_ID, RECEIVER_URL, Receiver

from hookrelay.exceptions import NotFoundError, RegistryUnavailable, ValidationError
from hookrelay.models import EventType
from hookrelay.registry import TEST_MESSAGE, SubscriptionRegistry, validate_events
from hookrelay.webhooks.signing import verify_signature


class TestValidateEvents:
    def test_accepts_known_events(self):
        assert validate_events(["post.created", EventType.USER_CREATED]) == [
            EventType.POST_CREATED,
            EventType.USER_CREATED,
        ]

    @pytest.mark.parametrize("events", [None, []])
    def test_rejects_empty(self, events):
        with pytest.raises(ValidationError) as exc_info:
            validate_events(events)
        assert exc_info.value.field == "events"

    def test_reports_every_invalid_event(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_events(["post.created", "post.exploded", "webhook.test"])

        assert exc_info.value.details == {"invalid": ["post.exploded", "webhook.test"]}


class TestCreate:
    async def test_create_returns_secret_once(self, registry: SubscriptionRegistry, storage):
        subscription, secret = await registry.create(
            owner_id=OWNER_ID,
            name="Post sync",
            url=RECEIVER_URL,
            events=["post.created", "post.updated", "post.created"],
            headers={"X-Tenant": "blue"},
        )

        assert len(secret) == 64
        assert subscription.secret.get_secret_value() == secret
        assert subscription.events == [EventType.POST_CREATED, EventType.POST_UPDATED]
        assert subscription.max_retries == 3
        assert subscription.timeout_ms == 10000
        assert subscription.active is True
        stored = await storage.get_subscription(subscription.id, OWNER_ID)
        assert stored is not None

    async def test_missing_url(self, registry: SubscriptionRegistry):
        with pytest.raises(ValidationError) as exc_info:
            await registry.create(OWNER_ID, "x", url=None, events=["post.created"])
        assert exc_info.value.field == "url"

    async def test_invalid_event(self, registry: SubscriptionRegistry):
        with pytest.raises(ValidationError):
            await registry.create(OWNER_ID, "x", url=RECEIVER_URL, events=["nope"])

    async def test_out_of_range_policy(self, registry: SubscriptionRegistry):
        with pytest.raises(ValidationError) as exc_info:
            await registry.create(
                OWNER_ID, "x", url=RECEIVER_URL, events=["post.created"], timeout_ms=500
            )
        assert exc_info.value.field == "timeout_ms"

    async def test_malformed_url(self, registry: SubscriptionRegistry):
        with pytest.raises(ValidationError) as exc_info:
            await registry.create(OWNER_ID, "x", url="not a url", events=["post.created"])
        assert exc_info.value.field == "url"


class TestReadUpdateDelete:
    async def test_get_missing(self, registry: SubscriptionRegistry):
        with pytest.raises(NotFoundError):
            await registry.get("sub_missing", OWNER_ID)

    async def test_get_other_owner(self, registry: SubscriptionRegistry, make_subscription):
        subscription = await make_subscription()
        with pytest.raises(NotFoundError):
            await registry.get(subscription.id, "acct_2")

    async def test_update_ignores_none(self, registry: SubscriptionRegistry, make_subscription):
        subscription = await make_subscription(description="keep me")

        updated = await registry.update(
            subscription.id, OWNER_ID, name="Renamed", description=None, max_retries=5
        )

        assert updated.name == "Renamed"
        assert updated.description == "keep me"
        assert updated.max_retries == 5

    async def test_update_rejects_unknown_field(
        self, registry: SubscriptionRegistry, make_subscription
    ):
        subscription = await make_subscription()
        with pytest.raises(ValidationError) as exc_info:
            await registry.update(subscription.id, OWNER_ID, success_count=100)
        assert exc_info.value.field == "success_count"

    async def test_update_validates_events(
        self, registry: SubscriptionRegistry, make_subscription
    ):
        subscription = await make_subscription()
        with pytest.raises(ValidationError):
            await registry.update(subscription.id, OWNER_ID, events=["webhook.test"])

    async def test_update_invalid_value(self, registry: SubscriptionRegistry, make_subscription):
        subscription = await make_subscription()
        with pytest.raises(ValidationError) as exc_info:
            await registry.update(subscription.id, OWNER_ID, max_retries=6)
        assert exc_info.value.field == "max_retries"

    async def test_update_missing(self, registry: SubscriptionRegistry):
        with pytest.raises(NotFoundError):
            await registry.update("sub_missing", OWNER_ID, name="x")

    async def test_delete(self, registry: SubscriptionRegistry, make_subscription):
        subscription = await make_subscription()

        await registry.delete(subscription.id, OWNER_ID)

        with pytest.raises(NotFoundError):
            await registry.get(subscription.id, OWNER_ID)
        with pytest.raises(NotFoundError):
            await registry.delete(subscription.id, OWNER_ID)

    async def test_rotate_secret(self, registry: SubscriptionRegistry, make_subscription):
        subscription = await make_subscription()
        old_secret = subscription.secret.get_secret_value()

        rotated, new_secret = await registry.rotate_secret(subscription.id, OWNER_ID)

        assert new_secret != old_secret
        assert rotated.secret.get_secret_value() == new_secret
        stored = await registry.get(subscription.id, OWNER_ID)
        assert stored.secret.get_secret_value() == new_secret

    async def test_rotate_missing(self, registry: SubscriptionRegistry):
        with pytest.raises(NotFoundError):
            await registry.rotate_secret("sub_missing", OWNER_ID)

    async def test_list_deliveries_requires_subscription(self, registry: SubscriptionRegistry):
        with pytest.raises(NotFoundError):
            await registry.list_deliveries("sub_missing", OWNER_ID)


class TestSendTest:
    async def test_sends_signed_test_event(
        self, storage, make_subscription, make_dispatcher
    ):
        subscription = await make_subscription(active=False)
        receiver = Receiver(httpx.Response(200))
        registry = SubscriptionRegistry(storage, make_dispatcher(receiver))

        result = await registry.send_test(subscription.id, OWNER_ID, user={"id": "u1"})

        assert result.success is True
        assert result.record.event_type == "webhook.test"
        assert result.record.payload["event"] == "webhook.test"
        assert result.record.payload["data"] == {"message": TEST_MESSAGE, "user": {"id": "u1"}}
        request = receiver.requests[0]
        assert verify_signature(
            request.content,
            subscription.secret.get_secret_value(),
            request.headers["X-Webhook-Signature"],
        )

        history, total = await registry.list_deliveries(subscription.id, OWNER_ID)
        assert total == 1
        assert history[0].id == result.record.id

    async def test_missing_subscription(self, registry: SubscriptionRegistry):
        with pytest.raises(NotFoundError):
            await registry.send_test("sub_missing", OWNER_ID)


class TestListMatching:
    async def test_returns_active_subscribers(
        self, registry: SubscriptionRegistry, make_subscription
    ):
        wanted = await make_subscription(events=["user.created"])
        await make_subscription(events=["post.created"])

        matching = await registry.list_matching(OWNER_ID, "user.created")

        assert [s.id for s in matching] == [wanted.id]

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("connection refused"),
            ValueError("payload missing field: url"),
            KeyError("secret_ciphertext"),
        ],
    )
    async def test_storage_failure_becomes_registry_unavailable(self, error):
        storage = MagicMock()
        storage.get_subscriptions_for_event = AsyncMock(side_effect=error)
        registry = SubscriptionRegistry(storage)

        with pytest.raises(RegistryUnavailable, match="Subscription lookup failed"):
            await registry.list_matching(OWNER_ID, "post.created")
