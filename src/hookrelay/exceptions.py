"""HookRelay exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from HookRelayError for easy catching.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hookrelay.models import DeliveryAttemptRecord


class HookRelayError(Exception):
    """Base exception for all HookRelay errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "hookrelay_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(HookRelayError):
    """Invalid subscription configuration.

    Raised synchronously by the subscription registry when a URL or event
    set is missing or an event is outside the known vocabulary. Never retried.

    Attributes:
        field: The field that failed validation.
        details: Optional extra context (e.g. the rejected events).
    """

    code: str = "validation_error"

    def __init__(
        self,
        field: str,
        message: str,
        details: dict[str, object] | None = None,
    ) -> None:
        self.field = field
        self.details = details or {}
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        error: dict[str, object] = {
            "code": self.code,
            "field": self.field,
            "message": self.message,
        }
        if self.details:
            error["details"] = self.details
        return {"error": error}


class NotFoundError(HookRelayError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "subscription", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(HookRelayError):
    """Storage operation failed."""

    code: str = "storage_error"


class RegistryUnavailable(HookRelayError):
    """The subscription registry could not be queried.

    Isolated by the fan-out trigger into a zero-count result; never fatal
    to the system emitting the event.
    """

    code: str = "registry_unavailable"


class TransportError(HookRelayError):
    """A delivery attempt failed before a usable response was received.

    Covers timeouts, refused connections, DNS failures and protocol errors.
    This is the only condition that triggers a retry.

    Attributes:
        status_code: Partial HTTP status, if one was received.
        response_body: Partial response body, if one was received.
    """

    code: str = "transport_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class TerminalFailure(HookRelayError):
    """All delivery attempts for a sequence have been used up.

    Raised inside the dispatcher and converted into a failed DeliveryResult;
    it never reaches the caller of the fan-out trigger.

    Attributes:
        record: The exhausted delivery record.
    """

    code: str = "terminal_failure"

    def __init__(self, record: DeliveryAttemptRecord, message: str) -> None:
        self.record = record
        super().__init__(message)


class ConfigurationError(HookRelayError):
    """Configuration error.

    Raised when required configuration is missing or invalid.
    """

    code: str = "configuration_error"


class AuthenticationError(HookRelayError):
    """Authentication failed.

    Raised when authentication credentials are invalid or missing.
    """

    code: str = "authentication_error"
