"""Payload serialization and HMAC-SHA256 signatures.

The signature is computed over the exact bytes placed on the wire, so the
receiver can recompute it from the raw request body and the secret it was
given out of band.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from collections.abc import Mapping
from typing import Any

SIGNATURE_PREFIX = "sha256="
SECRET_BYTES = 32


def serialize_payload(payload: Mapping[str, Any]) -> str:
    """Serialize a payload to its canonical JSON wire form.

    Keys are sorted and separators are compact so a payload re-read from the
    ledger serializes to the same bytes it had on the first attempt.
    """
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def sign(payload: str | bytes, secret: str) -> str:
    """Compute the HMAC-SHA256 hex digest of a serialized payload.

    Args:
        payload: Serialized body exactly as transmitted.
        secret: Subscription secret.

    Returns:
        Lowercase hex digest (64 characters).
    """
    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_signature(payload: str | bytes, secret: str, signature: str) -> bool:
    """Verify a signature in constant time.

    Accepts both the bare hex digest and the ``sha256=<hex>`` form.
    """
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX) :]
    return hmac.compare_digest(sign(payload, secret), signature)


def generate_secret() -> str:
    """Generate a 256-bit random subscription secret, hex-encoded."""
    return secrets.token_hex(SECRET_BYTES)


__all__ = [
    "SECRET_BYTES",
    "SIGNATURE_PREFIX",
    "generate_secret",
    "serialize_payload",
    "sign",
    "verify_signature",
]
