"""Tests for the management API.

The service runs against in-memory Qdrant with a scripted webhook receiver;
it is created inside the TestClient's event loop through the app lifespan.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
import pytest
from conftest import OWNER_ID, RECEIVER_URL, Receiver
from fastapi import FastAPI
from fastapi.testclient import TestClient

from hookrelay.api.app import register_exception_handlers
from hookrelay.api.auth import OWNER_HEADER, TokenValidator, get_settings
from hookrelay.api.router import router, set_service
from hookrelay.service import HookRelayService
from hookrelay.webhooks.signing import verify_signature

AUTH_SECRET = "k" * 64


def build_app(settings, receiver: Receiver) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service = HookRelayService.create(
            settings, location=":memory:", transport=receiver.transport
        )
        await service.initialize()
        set_service(service)
        yield
        await service.close()
        set_service(None)

    app = FastAPI(lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(router, prefix="/api/v1")
    app.dependency_overrides[get_settings] = lambda: settings
    return app


@pytest.fixture
def receiver() -> Receiver:
    return Receiver(httpx.Response(200, text="ok"))


@pytest.fixture
def client(test_settings, receiver):
    with TestClient(build_app(test_settings, receiver)) as client:
        client.headers[OWNER_HEADER] = OWNER_ID
        yield client


def create_webhook(client: TestClient, **overrides) -> dict:
    body = {"name": "Post sync", "url": RECEIVER_URL, "events": ["post.created"]}
    body.update(overrides)
    response = client.post("/api/v1/webhooks", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    def test_healthy(self, client: TestClient):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["storage_connected"] is True
        assert data["retry_mode"] == "inline"
        assert data["worker_running"] is False


class TestWebhookCrud:
    def test_create_returns_secret_once(self, client: TestClient):
        created = create_webhook(client)

        assert len(created["secret"]) == 64
        webhook_id = created["subscription"]["id"]
        assert created["subscription"]["events"] == ["post.created"]

        listed = client.get("/api/v1/webhooks").json()
        assert listed["count"] == 1
        assert "secret" not in listed["subscriptions"][0]

        detail = client.get(f"/api/v1/webhooks/{webhook_id}").json()
        assert "secret" not in detail["subscription"]
        assert detail["recent_deliveries"] == []

    def test_create_without_url(self, client: TestClient):
        response = client.post(
            "/api/v1/webhooks", json={"name": "x", "events": ["post.created"]}
        )

        assert response.status_code == 400
        assert response.json()["error"]["field"] == "url"

    def test_create_with_invalid_event(self, client: TestClient):
        response = client.post(
            "/api/v1/webhooks",
            json={"name": "x", "url": RECEIVER_URL, "events": ["post.created", "nope"]},
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"invalid": ["nope"]}

    def test_list_filters_by_active(self, client: TestClient):
        create_webhook(client, name="on")
        create_webhook(client, name="off", active=False)

        response = client.get("/api/v1/webhooks", params={"active": "false"})

        assert [s["name"] for s in response.json()["subscriptions"]] == ["off"]

    def test_update(self, client: TestClient):
        webhook_id = create_webhook(client)["subscription"]["id"]

        response = client.put(
            f"/api/v1/webhooks/{webhook_id}",
            json={"name": "Renamed", "events": ["post.created", "post.deleted"]},
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"
        assert response.json()["events"] == ["post.created", "post.deleted"]

    def test_delete(self, client: TestClient):
        webhook_id = create_webhook(client)["subscription"]["id"]

        assert client.delete(f"/api/v1/webhooks/{webhook_id}").status_code == 204
        assert client.get(f"/api/v1/webhooks/{webhook_id}").status_code == 404
        assert client.delete(f"/api/v1/webhooks/{webhook_id}").status_code == 404

    def test_other_owner_cannot_see_webhook(self, client: TestClient):
        webhook_id = create_webhook(client)["subscription"]["id"]

        response = client.get(
            f"/api/v1/webhooks/{webhook_id}", headers={OWNER_HEADER: "acct_2"}
        )

        assert response.status_code == 404

    def test_rotate_secret(self, client: TestClient):
        created = create_webhook(client)
        webhook_id = created["subscription"]["id"]

        rotated = client.post(f"/api/v1/webhooks/{webhook_id}/secret/rotate").json()

        assert rotated["secret"] != created["secret"]

    def test_list_events(self, client: TestClient):
        data = client.get("/api/v1/webhooks/events").json()

        assert "post.created" in data["events"]
        assert "webhook.test" not in data["events"]
        assert data["count"] == len(data["events"])


class TestDeliveries:
    def test_test_delivery(self, client: TestClient, receiver: Receiver):
        created = create_webhook(client)
        webhook_id = created["subscription"]["id"]

        response = client.post(f"/api/v1/webhooks/{webhook_id}/test")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["state"] == "succeeded"
        assert data["delivery"]["event_type"] == "webhook.test"
        request = receiver.requests[0]
        assert verify_signature(
            request.content, created["secret"], request.headers["X-Webhook-Signature"]
        )

    def test_trigger_and_history(self, client: TestClient, receiver: Receiver):
        webhook_id = create_webhook(client)["subscription"]["id"]
        create_webhook(client, events=["user.created"])

        response = client.post(
            "/api/v1/webhooks/trigger",
            json={"event": "post.created", "payload": {"post_id": "p1"}},
        )

        assert response.status_code == 200
        summary = response.json()
        assert summary["triggered"] == 1
        assert summary["successful"] == 1
        assert len(receiver.requests) == 1

        history = client.get(f"/api/v1/webhooks/{webhook_id}/deliveries").json()
        assert history["total"] == 1
        assert history["deliveries"][0]["id"] == summary["delivery_ids"][0]
        assert history["deliveries"][0]["payload"] == {"post_id": "p1"}

        failed = client.get(
            f"/api/v1/webhooks/{webhook_id}/deliveries", params={"success": "false"}
        ).json()
        assert failed["total"] == 0

        detail = client.get(f"/api/v1/webhooks/{webhook_id}").json()
        assert detail["subscription"]["success_count"] == 1
        assert len(detail["recent_deliveries"]) == 1

    def test_trigger_unknown_event(self, client: TestClient):
        response = client.post("/api/v1/webhooks/trigger", json={"event": "webhook.test"})

        assert response.status_code == 400
        assert response.json()["error"]["field"] == "event"

    def test_deliveries_limit_bounds(self, client: TestClient):
        webhook_id = create_webhook(client)["subscription"]["id"]

        response = client.get(
            f"/api/v1/webhooks/{webhook_id}/deliveries", params={"limit": 101}
        )

        assert response.status_code == 422


class TestOwnerResolution:
    def test_missing_owner_header(self, client: TestClient):
        response = client.get("/api/v1/webhooks", headers={OWNER_HEADER: ""})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_bearer_token_when_auth_enabled(self, test_settings, receiver):
        settings = test_settings.model_copy(
            update={"auth_enabled": True, "auth_secret_key": AUTH_SECRET}
        )
        token = TokenValidator(AUTH_SECRET).create_token(OWNER_ID, "alice")

        with TestClient(build_app(settings, receiver)) as client:
            assert client.get("/api/v1/webhooks").status_code == 401

            bad = client.get(
                "/api/v1/webhooks", headers={"Authorization": f"Bearer {token}x"}
            )
            assert bad.status_code == 401

            ok = client.get("/api/v1/webhooks", headers={"Authorization": f"Bearer {token}"})
            assert ok.status_code == 200
