"""Configuration management for HookRelay."""

import logging
import secrets
import warnings
from typing import Literal

from cryptography.fernet import Fernet
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

RetryMode = Literal["inline", "queued"]


def _generate_dev_secret_key() -> str:
    """Generate a random auth secret for development use (64 hex chars)."""
    return secrets.token_hex(32)


class Settings(BaseSettings):
    """HookRelay configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the HOOKRELAY_ prefix. For example:
        HOOKRELAY_QDRANT_URL=http://localhost:6333
        HOOKRELAY_RETRY_MODE=inline

    Security Notes:
        - In production (HOOKRELAY_ENV=production), auth is enabled by default
        - Production requires an explicit auth secret and secret encryption key
        - In dev/test both keys are generated at startup if missing, so
          stored subscription secrets become unreadable after a restart
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    collection_prefix: str = Field(
        default="hookrelay",
        description="Prefix for Qdrant collection names",
    )
    storage_max_scroll_limit: int = Field(
        default=10000,
        ge=100,
        le=100000,
        description="Page size for storage scrolls; listings follow pages to the end",
    )

    # Delivery
    retry_mode: RetryMode = Field(
        default="queued",
        description=(
            "'queued' persists retries in the delivery ledger for the retry worker; "
            "'inline' sleeps between attempts inside the dispatching task"
        ),
    )
    backoff_base_seconds: float = Field(
        default=1.0,
        gt=0.0,
        le=60.0,
        description="Backoff unit; the wait after attempt N is base * 2**N",
    )
    response_body_max_chars: int = Field(
        default=5000,
        ge=0,
        le=1_000_000,
        description="Cap on the stored response body excerpt",
    )
    user_agent: str = Field(
        default="HookRelay-Webhooks/1.0",
        description="Client identifier sent with every delivery",
    )
    max_concurrent_requests: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum in-flight HTTP requests per dispatcher (backoff waits excluded)",
    )
    retry_on_error_status: bool = Field(
        default=False,
        description=(
            "Treat non-2xx responses as retryable failures. By default any response "
            "that arrives completes the delivery and only transport failures retry."
        ),
    )
    allow_protected_header_override: bool = Field(
        default=True,
        description=(
            "Let subscription custom headers replace the signature, delivery id and "
            "event headers on name collision"
        ),
    )

    # Retry worker
    worker_enabled: bool = Field(
        default=True,
        description="Start the retry worker with the API (queued mode only)",
    )
    worker_poll_interval_seconds: float = Field(
        default=1.0,
        gt=0.0,
        le=300.0,
        description="Delay between retry worker passes when nothing is due",
    )
    worker_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum due deliveries claimed per worker pass",
    )
    worker_lease_seconds: int = Field(
        default=120,
        ge=60,
        le=3600,
        description="In-flight deliveries with an older lease are released back to the queue",
    )

    # Secrets
    secret_encryption_key: str | None = Field(
        default=None,
        description=(
            "Fernet key used to encrypt subscription secrets at rest. "
            "REQUIRED in production. In dev/test, a random key is generated if not set."
        ),
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # Authentication
    auth_enabled: bool | None = Field(
        default=None,
        description=(
            "Enable Bearer token authentication. "
            "If not set, defaults to True in production, False otherwise."
        ),
    )
    auth_secret_key: str | None = Field(
        default=None,
        description="Secret key for token validation (HMAC). REQUIRED in production.",
    )
    auth_token_expire_minutes: int = Field(
        default=60,
        ge=1,
        description="Token expiration time in minutes",
    )

    # CORS
    cors_enabled: bool = Field(default=True, description="Enable CORS middleware")
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins",
    )
    cors_allow_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        description="Allowed HTTP methods for CORS requests",
    )
    cors_allow_headers: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed headers for CORS requests",
    )

    # Runtime-generated dev keys (not from env)
    _runtime_dev_secret: str | None = None
    _runtime_encryption_key: str | None = None

    model_config = {
        "env_prefix": "HOOKRELAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_security_settings(self) -> "Settings":
        """Resolve auth defaults and require explicit keys in production."""
        is_production = self.env == "production"

        if self.auth_enabled is None:
            object.__setattr__(self, "auth_enabled", is_production)

        if is_production:
            if self.auth_secret_key is None:
                raise ValueError(
                    "HOOKRELAY_AUTH_SECRET_KEY must be set in production. "
                    'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
                )
            if self.secret_encryption_key is None:
                raise ValueError(
                    "HOOKRELAY_SECRET_ENCRYPTION_KEY must be set in production. Generate one "
                    'with: python -c "from cryptography.fernet import Fernet; '
                    'print(Fernet.generate_key().decode())"'
                )
            if not self.auth_enabled:
                warnings.warn(
                    "Authentication is disabled in production environment. "
                    "Set HOOKRELAY_AUTH_ENABLED=true to enable.",
                    UserWarning,
                    stacklevel=2,
                )
                logger.warning("Authentication disabled in production")
        else:
            if self.auth_secret_key is None:
                object.__setattr__(self, "_runtime_dev_secret", _generate_dev_secret_key())
            if self.secret_encryption_key is None:
                object.__setattr__(
                    self, "_runtime_encryption_key", Fernet.generate_key().decode("ascii")
                )
                logger.debug(
                    "Generated random secret encryption key (secrets unreadable after restart)"
                )

        return self

    @property
    def is_auth_enabled(self) -> bool:
        """Get resolved auth_enabled value (always bool, never None)."""
        if self.auth_enabled is None:
            return self.env == "production"
        return self.auth_enabled

    @property
    def effective_auth_secret_key(self) -> str:
        """Configured auth key, or the runtime-generated one in dev/test."""
        if self.auth_secret_key is not None:
            return self.auth_secret_key
        if self._runtime_dev_secret is not None:
            return self._runtime_dev_secret
        raise ValueError("No auth secret key available")

    @property
    def effective_encryption_key(self) -> str:
        """Configured Fernet key, or the runtime-generated one in dev/test."""
        if self.secret_encryption_key is not None:
            return self.secret_encryption_key
        if self._runtime_encryption_key is not None:
            return self._runtime_encryption_key
        raise ValueError("No secret encryption key available")


# Global settings instance
settings = Settings()
