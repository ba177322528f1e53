"""GitHub webhook signature verification."""

from __future__ import annotations

import hashlib
import hmac
import re

SIGNATURE_PREFIX = "sha256="
_HEX_DIGEST_RE = re.compile(r"[0-9a-f]{64}")


def compute_signature(raw_body: bytes | str, secret: str) -> str:
    """Return the ``sha256=<hex>`` header value GitHub would send for ``raw_body``."""
    body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(raw_body: bytes | str, signature_header: str | None, secret: str | None) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw request body.

    Never raises: a missing secret, a missing or unprefixed header, or a
    malformed digest all verify as ``False``.
    """
    if not secret or not signature_header:
        return False
    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False

    provided = signature_header[len(SIGNATURE_PREFIX) :].lower()
    # compare_digest needs equal-length ASCII input; reject malformed digests up front.
    if not _HEX_DIGEST_RE.fullmatch(provided):
        return False

    expected = compute_signature(raw_body, secret)[len(SIGNATURE_PREFIX) :]
    return hmac.compare_digest(expected, provided)
