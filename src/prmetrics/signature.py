"""GitHub webhook signature verification."""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional

SIGNATURE_HEADER = "X-Hub-Signature-256"
_SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` HMAC signature GitHub sends for ``raw_body``."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"{_SIGNATURE_PREFIX}{digest}"


def verify_signature(raw_body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """Verify a webhook delivery against the shared secret.

    Args:
        raw_body: Request body exactly as received, before JSON decoding.
        signature_header: Value of the ``X-Hub-Signature-256`` header, if any.
        secret: Shared webhook secret.

    Returns:
        ``True`` only when the header matches the computed signature exactly.
    """
    if not signature_header:
        return False

    expected = compute_signature(raw_body, secret)
    if len(expected) != len(signature_header):
        return False

    return hmac.compare_digest(expected.encode("utf-8"), signature_header.encode("utf-8"))
