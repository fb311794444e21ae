from __future__ import annotations

import base64
import hashlib
import hmac

import pytest

from printdesk.core.errors import AuthenticationError
from printdesk.core.security import compute_webhook_signature, verify_webhook_signature


SECRET = "hush"
BODY = b'{"id": 820982911946154508, "line_items": []}'


def test_signature_is_base64_hmac_sha256_of_raw_body() -> None:
    expected = base64.b64encode(hmac.new(SECRET.encode(), BODY, hashlib.sha256).digest()).decode()
    assert compute_webhook_signature(BODY, SECRET) == expected


def test_valid_signature_passes() -> None:
    verify_webhook_signature(BODY, compute_webhook_signature(BODY, SECRET), SECRET)
    verify_webhook_signature(BODY, f"  {compute_webhook_signature(BODY, SECRET)}\n", SECRET)


@pytest.mark.parametrize("header", [None, "", "   "])
def test_missing_signature_is_rejected(header: str | None) -> None:
    with pytest.raises(AuthenticationError, match="Missing"):
        verify_webhook_signature(BODY, header, SECRET)


def test_missing_secret_is_rejected() -> None:
    with pytest.raises(AuthenticationError, match="secret"):
        verify_webhook_signature(BODY, compute_webhook_signature(BODY, SECRET), None)


def test_signature_covers_exact_bytes() -> None:
    signature = compute_webhook_signature(BODY, SECRET)
    # Same JSON document, different bytes.
    reformatted = b'{"id":820982911946154508,"line_items":[]}'

    with pytest.raises(AuthenticationError, match="Invalid"):
        verify_webhook_signature(reformatted, signature, SECRET)
    with pytest.raises(AuthenticationError, match="Invalid"):
        verify_webhook_signature(BODY, signature, "other-secret")
    with pytest.raises(AuthenticationError, match="Invalid"):
        verify_webhook_signature(BODY, "not-base64-ÿ", SECRET)
