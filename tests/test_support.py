"""Tests for logging, encryption, auth tokens and exception helpers."""

import pytest
import structlog
from cryptography.fernet import Fernet

from hookrelay.api.auth import TokenValidator
from hookrelay.crypto import SecretBox
from hookrelay.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from hookrelay.logging import REDACTED, log_context, redact_secrets


class TestRedactSecrets:
    def test_masks_credential_keys(self):
        event = {"event": "Subscription created", "secret": "abc", "Authorization": "Bearer x"}

        result = redact_secrets(None, "info", event)

        assert result["secret"] == REDACTED
        assert result["Authorization"] == REDACTED
        assert result["event"] == "Subscription created"

    def test_leaves_other_keys(self):
        event = {"event": "x", "subscription_id": "sub_1"}
        assert redact_secrets(None, "info", dict(event)) == event


class TestLogContext:
    def test_binds_for_the_block_only(self):
        with log_context(delivery_id="dlv_1", attempt=2):
            bound = structlog.contextvars.get_contextvars()
            assert bound == {"delivery_id": "dlv_1", "attempt": 2}

        assert "delivery_id" not in structlog.contextvars.get_contextvars()

    def test_nested_blocks_restore_outer_values(self):
        with log_context(delivery_id="dlv_1"):
            with log_context(delivery_id="dlv_2", subscription_id="sub_1"):
                assert structlog.contextvars.get_contextvars()["delivery_id"] == "dlv_2"
            assert structlog.contextvars.get_contextvars() == {"delivery_id": "dlv_1"}

    def test_unbinds_when_the_block_raises(self):
        with pytest.raises(RuntimeError):
            with log_context(delivery_id="dlv_1"):
                raise RuntimeError("boom")

        assert structlog.contextvars.get_contextvars() == {}


class TestSecretBox:
    def test_round_trip(self):
        box = SecretBox(Fernet.generate_key())
        token = box.encrypt("whsec")

        assert token != "whsec"
        assert box.decrypt(token) == "whsec"

    def test_wrong_key(self):
        token = SecretBox(Fernet.generate_key()).encrypt("whsec")

        with pytest.raises(StorageError):
            SecretBox(Fernet.generate_key()).decrypt(token)

    def test_invalid_key(self):
        with pytest.raises(ConfigurationError):
            SecretBox("not-a-fernet-key")


class TestExceptions:
    def test_validation_error_dict(self):
        error = ValidationError("events", "Invalid events: nope", details={"invalid": ["nope"]})

        assert error.to_dict() == {
            "error": {
                "code": "validation_error",
                "field": "events",
                "message": "events: Invalid events: nope",
                "details": {"invalid": ["nope"]},
            }
        }

    def test_not_found_dict(self):
        error = NotFoundError("subscription", "sub_1")

        assert error.to_dict()["error"]["resource_id"] == "sub_1"
        assert str(error) == "subscription not found: sub_1"


class TestTokenValidator:
    def test_round_trip(self):
        validator = TokenValidator("k" * 64)
        owner = validator.validate_token(validator.create_token("acct_1", "alice"))

        assert owner.owner_id == "acct_1"
        assert owner.username == "alice"

    def test_expired(self):
        validator = TokenValidator("k" * 64)
        token = validator.create_token("acct_1", expire_minutes=-1)

        with pytest.raises(AuthenticationError, match="expired"):
            validator.validate_token(token)

    @pytest.mark.parametrize("token", ["garbage", "a:b:notanint:sig", "a:b:c"])
    def test_malformed(self, token):
        with pytest.raises(AuthenticationError):
            TokenValidator("k" * 64).validate_token(token)
