"""Encryption at rest for subscription secrets.

Signing needs the plaintext secret, so secrets are encrypted (not hashed)
with Fernet before they are written to storage.
"""

from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken

from hookrelay.exceptions import ConfigurationError, StorageError


class SecretBox:
    """Symmetric encryption for secrets stored in subscription payloads.

    Example:
        ```python
        box = SecretBox(settings.effective_encryption_key)
        token = box.encrypt("whsec")
        assert box.decrypt(token) == "whsec"
        ```
    """

    def __init__(self, key: str | bytes) -> None:
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid secret encryption key: {e}") from e

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise StorageError(
                "Stored subscription secret could not be decrypted with the configured key"
            ) from e


__all__ = ["SecretBox"]
