"""Tests for webhook HMAC signature and timestamp verification."""

from __future__ import annotations

import hashlib
import hmac

import pytest
from structlog.testing import capture_logs

from src.sfmirror.core.errors import AuthError
from src.sfmirror.core.security import (
    WebhookSignatureVerifier,
    compute_signature,
    verify_webhook_signature,
)

SECRET = "whsec_test"
NOW_MS = 1_700_000_000_000
BODY = b'{"objectType":"Contact","changeType":"UPDATE","recordId":"003"}'


def _sign(body: bytes, timestamp: str, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()


class TestVerifyWebhookSignature:
    """verify_webhook_signature outcomes."""

    def test_valid_signature(self):
        ts = str(NOW_MS)
        check = verify_webhook_signature(BODY, _sign(BODY, ts), ts, SECRET, now_ms=NOW_MS)
        assert check.valid is True
        assert check.error is None

    def test_compute_signature_matches_reference(self):
        ts = str(NOW_MS)
        assert compute_signature(BODY, ts, SECRET) == _sign(BODY, ts)
        assert compute_signature(BODY.decode(), ts, SECRET) == _sign(BODY, ts)

    def test_missing_signature(self):
        check = verify_webhook_signature(BODY, None, str(NOW_MS), SECRET, now_ms=NOW_MS)
        assert check.valid is False
        assert check.error == "Missing X-Convex-Signature header"

    def test_missing_timestamp(self):
        check = verify_webhook_signature(BODY, "abc", None, SECRET, now_ms=NOW_MS)
        assert check.valid is False
        assert check.error == "Missing X-Convex-Timestamp header"

    @pytest.mark.parametrize("offset_ms", [-301_000, 301_000])
    def test_timestamp_outside_tolerance(self, offset_ms):
        ts = str(NOW_MS + offset_ms)
        check = verify_webhook_signature(BODY, _sign(BODY, ts), ts, SECRET, now_ms=NOW_MS)
        assert check.valid is False
        assert check.error == "Request timestamp too old"

    def test_timestamp_at_edge_of_tolerance(self):
        ts = str(NOW_MS - 300_000)
        check = verify_webhook_signature(BODY, _sign(BODY, ts), ts, SECRET, now_ms=NOW_MS)
        assert check.valid is True

    def test_non_numeric_timestamp(self):
        check = verify_webhook_signature(BODY, "abc", "yesterday", SECRET, now_ms=NOW_MS)
        assert check.valid is False
        assert check.error == "Request timestamp too old"

    def test_wrong_secret(self):
        ts = str(NOW_MS)
        check = verify_webhook_signature(
            BODY, _sign(BODY, ts, "other"), ts, SECRET, now_ms=NOW_MS,
        )
        assert check.valid is False
        assert check.error == "Invalid signature"

    def test_tampered_body(self):
        ts = str(NOW_MS)
        signature = _sign(BODY, ts)
        check = verify_webhook_signature(BODY + b" ", signature, ts, SECRET, now_ms=NOW_MS)
        assert check.error == "Invalid signature"

    def test_no_secret_accepts_and_warns_every_call(self):
        with capture_logs() as logs:
            first = verify_webhook_signature(BODY, None, None, "")
            second = verify_webhook_signature(BODY, None, None, None)

        assert first.valid and second.valid
        warnings = [e for e in logs if e["event"] == "webhook.signature_verification_disabled"]
        assert len(warnings) == 2
        assert all(e["log_level"] == "warning" for e in warnings)


class TestWebhookSignatureVerifier:
    """Settings-bound verifier."""

    def test_require_raises_with_reason(self):
        verifier = WebhookSignatureVerifier(SECRET)
        with pytest.raises(AuthError) as exc_info:
            verifier.require(BODY, None, "1")
        assert exc_info.value.reason == "Missing X-Convex-Signature header"

    def test_from_settings(self):
        from src.sfmirror.config import Settings

        verifier = WebhookSignatureVerifier.from_settings(
            Settings(SALESFORCE_WEBHOOK_SECRET="", WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS=60)
        )
        assert verifier.verify(BODY, None, None).valid is True
