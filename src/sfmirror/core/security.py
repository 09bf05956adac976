"""Inbound webhook signature verification.

Salesforce-side triggers sign every webhook call:

    X-Convex-Timestamp: epoch milliseconds
    X-Convex-Signature: hex(HMAC-SHA256(secret, "{timestamp}.{raw_body}"))

Verification rejects stale or future timestamps outside the tolerance and
compares digests in constant time. With no secret configured every request
is accepted and a warning is logged on each call.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass

import structlog

from src.sfmirror.config import Settings
from src.sfmirror.core.errors import AuthError

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Convex-Signature"
TIMESTAMP_HEADER = "X-Convex-Timestamp"


@dataclass(frozen=True)
class SignatureCheck:
    valid: bool
    error: str | None = None


def compute_signature(raw_body: bytes | str, timestamp: str, secret: str) -> str:
    """Lowercase hex HMAC-SHA256 of ``"{timestamp}.{raw_body}"``."""
    body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
    signed_payload = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    raw_body: bytes | str,
    signature: str | None,
    timestamp: str | None,
    secret: str | None,
    tolerance_seconds: int = 300,
    now_ms: int | None = None,
) -> SignatureCheck:
    """Check a webhook request's signature and timestamp freshness.

    Args:
        raw_body: Request body exactly as received.
        signature: Value of the signature header, if sent.
        timestamp: Value of the timestamp header (epoch ms), if sent.
        secret: Shared secret; empty or None disables verification.
        tolerance_seconds: Allowed clock skew in either direction.
        now_ms: Current time in epoch ms (defaults to the wall clock).

    Returns:
        SignatureCheck with ``valid`` and, when invalid, the reason.
    """
    if not secret:
        logger.warning("webhook.signature_verification_disabled")
        return SignatureCheck(valid=True)

    if not signature:
        return SignatureCheck(valid=False, error=f"Missing {SIGNATURE_HEADER} header")
    if not timestamp:
        return SignatureCheck(valid=False, error=f"Missing {TIMESTAMP_HEADER} header")

    try:
        timestamp_ms = int(timestamp.strip())
    except ValueError:
        return SignatureCheck(valid=False, error="Request timestamp too old")

    current_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    if abs(current_ms - timestamp_ms) > tolerance_seconds * 1000:
        return SignatureCheck(valid=False, error="Request timestamp too old")

    expected = compute_signature(raw_body, timestamp.strip(), secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        return SignatureCheck(valid=False, error="Invalid signature")

    return SignatureCheck(valid=True)


class WebhookSignatureVerifier:
    """Settings-bound verifier used by the webhook route.

    Args:
        secret: Shared webhook secret (empty disables verification).
        tolerance_seconds: Allowed timestamp skew.
    """

    def __init__(self, secret: str | None, tolerance_seconds: int = 300) -> None:
        self._secret = secret
        self._tolerance_seconds = tolerance_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> WebhookSignatureVerifier:
        return cls(
            settings.SALESFORCE_WEBHOOK_SECRET,
            settings.WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS,
        )

    def verify(
        self, raw_body: bytes | str, signature: str | None, timestamp: str | None
    ) -> SignatureCheck:
        return verify_webhook_signature(
            raw_body,
            signature,
            timestamp,
            self._secret,
            self._tolerance_seconds,
        )

    def require(
        self, raw_body: bytes | str, signature: str | None, timestamp: str | None
    ) -> None:
        """Verify or raise.

        Raises:
            AuthError: With the rejection reason when verification fails.
        """
        check = self.verify(raw_body, signature, timestamp)
        if not check.valid:
            logger.warning("webhook.signature_rejected", reason=check.error)
            raise AuthError(check.error or "Invalid signature")
