"""Unit tests for webhook signature verification and event parsing."""
import hashlib
import hmac

import pytest

from common.webhooks import (
    WebhookConfigurationError,
    WebhookError,
    compute_signature,
    parse_event,
    verify_signature,
)

SECRET = "whsec_unit"
BODY = b'{"event":"payment.succeeded","payment":{"id":"pay_1"}}'
TIMESTAMP = "1700000000"


def test_signature_is_hmac_over_body_and_timestamp():
    expected = hmac.new(SECRET.encode(), BODY + TIMESTAMP.encode(), hashlib.sha256).hexdigest()

    assert compute_signature(SECRET, BODY, TIMESTAMP) == expected
    assert compute_signature(SECRET, BODY.decode(), TIMESTAMP) == expected


@pytest.mark.parametrize("prefix", ["", "sha256="])
def test_valid_signature_passes(prefix):
    verify_signature(SECRET, BODY, prefix + compute_signature(SECRET, BODY, TIMESTAMP), TIMESTAMP)


@pytest.mark.parametrize(
    "secret, payload, timestamp",
    [
        ("other-secret", BODY, TIMESTAMP),
        (SECRET, BODY + b" ", TIMESTAMP),
        (SECRET, BODY, "1700000001"),
    ],
)
def test_mismatched_signature_is_rejected(secret, payload, timestamp):
    signature = compute_signature(secret, payload, timestamp)

    with pytest.raises(WebhookError) as exc_info:
        verify_signature(SECRET, BODY, signature, TIMESTAMP)
    assert exc_info.value.status_code == 400


def test_missing_headers_are_rejected():
    with pytest.raises(WebhookError, match="signature"):
        verify_signature(SECRET, BODY, None, TIMESTAMP)
    with pytest.raises(WebhookError, match="timestamp"):
        verify_signature(SECRET, BODY, "abc", None)


def test_missing_secret_is_a_configuration_error():
    with pytest.raises(WebhookConfigurationError) as exc_info:
        verify_signature("", BODY, "abc", TIMESTAMP)
    assert exc_info.value.status_code == 500


def test_parse_event():
    assert parse_event(BODY)["event"] == "payment.succeeded"
    with pytest.raises(WebhookError):
        parse_event(b"[]")
    with pytest.raises(WebhookError):
        parse_event(b'{"payment": {}}')
    with pytest.raises(WebhookError):
        parse_event(b"{broken")
