"""Tests for delivery header construction and the custom-header merge."""

from unittest.mock import MagicMock

from hookrelay.webhooks import headers as headers_module
from hookrelay.webhooks.headers import (
    DELIVERY_HEADER,
    EVENT_HEADER,
    SIGNATURE_HEADER,
    HeaderClass,
    build_delivery_headers,
    header_class,
    protected_collisions,
)


def build(**kwargs):
    return build_delivery_headers(
        event_type="post.created",
        signature="abc123",
        delivery_id="dlv_1",
        user_agent="HookRelay-Webhooks/1.0",
        **kwargs,
    )


class TestHeaderClass:
    def test_case_insensitive(self):
        assert header_class("x-webhook-signature") is HeaderClass.PROTECTED
        assert header_class("CONTENT-TYPE") is HeaderClass.OVERRIDABLE
        assert header_class("X-Tenant") is None

    def test_protected_collisions(self):
        custom = {"x-webhook-delivery": "d", "User-Agent": "ua", "X-Tenant": "t"}
        assert protected_collisions(custom) == ["x-webhook-delivery"]


class TestBuildDeliveryHeaders:
    def test_protocol_headers(self):
        headers = build()

        assert headers == {
            "Content-Type": "application/json",
            EVENT_HEADER: "post.created",
            SIGNATURE_HEADER: "abc123",
            DELIVERY_HEADER: "dlv_1",
            "User-Agent": "HookRelay-Webhooks/1.0",
        }

    def test_custom_headers_added(self):
        headers = build(custom={"X-Tenant": "blue"})
        assert headers["X-Tenant"] == "blue"

    def test_overridable_header_replaced_case_insensitively(self):
        headers = build(custom={"user-agent": "custom-agent"})

        assert headers["user-agent"] == "custom-agent"
        assert "User-Agent" not in headers

    def test_protected_override_allowed_and_logged(self, monkeypatch):
        logger = MagicMock()
        monkeypatch.setattr(headers_module, "logger", logger)

        headers = build(custom={"X-Webhook-Signature": "forged"})

        assert headers[SIGNATURE_HEADER] == "forged"
        logger.warning.assert_called_once()
        assert logger.warning.call_args.kwargs["header"] == "X-Webhook-Signature"

    def test_protected_override_dropped_when_disallowed(self):
        headers = build(
            custom={"x-webhook-signature": "forged", "X-Tenant": "blue"},
            allow_protected_override=False,
        )

        assert headers[SIGNATURE_HEADER] == "abc123"
        assert "x-webhook-signature" not in headers
        assert headers["X-Tenant"] == "blue"
