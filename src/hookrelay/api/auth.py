"""Authentication for the HookRelay management API.

Provides:
- Bearer token validation with HMAC-signed tokens
- A FastAPI dependency resolving the calling owner

When auth is disabled (the default outside production) the owner is taken
from the ``X-Owner-Id`` header.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from hookrelay.config import Settings
from hookrelay.config import settings as default_settings
from hookrelay.exceptions import AuthenticationError
from hookrelay.logging import get_logger

logger = get_logger(__name__)

OWNER_HEADER = "X-Owner-Id"

# Security scheme for OpenAPI docs
security = HTTPBearer(auto_error=False)


class AuthenticatedOwner(BaseModel):
    """The account a request acts for.

    Attributes:
        owner_id: Account identifier; scopes every subscription operation.
        username: Optional display name, echoed in test deliveries.
    """

    model_config = ConfigDict(extra="forbid")

    owner_id: str = Field(min_length=1)
    username: str | None = None


class TokenValidator:
    """Validates Bearer tokens using HMAC-SHA256.

    Token format: owner_id:username:expires_at:signature
    where signature = HMAC(secret, owner_id:username:expires_at)
    """

    def __init__(self, secret_key: str) -> None:
        self.secret_key = secret_key.encode()

    def _sign(self, payload: str) -> str:
        return hmac.new(self.secret_key, payload.encode(), hashlib.sha256).hexdigest()

    def create_token(
        self,
        owner_id: str,
        username: str | None = None,
        expire_minutes: int = 60,
    ) -> str:
        """Create a signed token for an owner."""
        expires_at = int(time.time()) + (expire_minutes * 60)
        payload = f"{owner_id}:{username or ''}:{expires_at}"
        return f"{payload}:{self._sign(payload)}"

    def validate_token(self, token: str) -> AuthenticatedOwner:
        """Validate a token and return the owner.

        Raises:
            AuthenticationError: If token is invalid or expired.
        """
        try:
            parts = token.split(":")
            if len(parts) != 4:
                raise AuthenticationError("Invalid token format")

            owner_id, username, expires_at_str, signature = parts
            payload = f"{owner_id}:{username}:{expires_at_str}"
            if not hmac.compare_digest(signature, self._sign(payload)):
                raise AuthenticationError("Invalid token signature")

            if time.time() > int(expires_at_str):
                raise AuthenticationError("Token has expired")

            return AuthenticatedOwner(owner_id=owner_id, username=username or None)
        except ValueError as e:
            raise AuthenticationError(f"Invalid token: {e}") from e


@lru_cache(maxsize=1)
def get_token_validator(secret_key: str) -> TokenValidator:
    return TokenValidator(secret_key)


def get_settings() -> Settings:
    """Settings used by the auth dependency (overridable in tests)."""
    return default_settings


async def get_current_owner(
    settings: Annotated[Settings, Depends(get_settings)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    x_owner_id: Annotated[str | None, Header(alias=OWNER_HEADER)] = None,
) -> AuthenticatedOwner:
    """Resolve the calling owner.

    Raises:
        AuthenticationError: If no identity is supplied or the token is invalid.
    """
    if settings.is_auth_enabled:
        if credentials is None:
            raise AuthenticationError("Missing authentication credentials")
        validator = get_token_validator(settings.effective_auth_secret_key)
        owner = validator.validate_token(credentials.credentials)
        logger.debug("Owner authenticated", owner_id=owner.owner_id)
        return owner

    if not x_owner_id:
        raise AuthenticationError(f"Missing {OWNER_HEADER} header")
    return AuthenticatedOwner(owner_id=x_owner_id)


OwnerDep = Annotated[AuthenticatedOwner, Depends(get_current_owner)]
