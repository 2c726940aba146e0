# tests/test_signing.py
import hashlib
import hmac
import json

import pytest

from calltracker.signing import (
    hmac_sha256_hex, sign_payment, verify_payment_signature,
    verify_webhook_signature,
)

SECRET = "s3cr3t"


def test_known_vector():
    assert hmac_sha256_hex(
        "key", "The quick brown fox jumps over the lazy dog"
    ) == "f7bc83f430538424b13298e6aa6fb143ef4d59a14946175997479dbc2d1a3cd8"


@pytest.mark.parametrize("order_id,payment_id", [
    ("order_1", "pay_1"),
    ("order_IluGWxBm9U8zJ8", "pay_IH4NVgf4Dreq1l"),
    ("o|x", "p"),
    ("", ""),
])
def test_payment_signature_matches_hmac(order_id, payment_id):
    expected = hmac.new(SECRET.encode(), f"{order_id}|{payment_id}".encode(),
                        hashlib.sha256).hexdigest()
    assert sign_payment(SECRET, order_id, payment_id) == expected
    assert verify_payment_signature(SECRET, order_id, payment_id, expected)
    assert not verify_payment_signature(SECRET, order_id, payment_id,
                                        expected.upper())
    assert not verify_payment_signature("other", order_id, payment_id,
                                        expected)


def test_payment_signature_rejects_junk():
    assert not verify_payment_signature(SECRET, "o", "p", None)
    assert not verify_payment_signature(SECRET, "o", "p", "")
    assert not verify_payment_signature(SECRET, "o", "p", 12345)


def test_webhook_uses_raw_bytes():
    raw = b'{"b": 1,\n "a": [2, 3]}'
    sig = hmac.new(SECRET.encode(), raw, hashlib.sha256).hexdigest()
    assert verify_webhook_signature(SECRET, raw, sig)

    reencoded = json.dumps(json.loads(raw)).encode()
    assert not verify_webhook_signature(SECRET, reencoded, sig)
    assert not verify_webhook_signature(SECRET, raw + b" ", sig)
    assert not verify_webhook_signature(SECRET, raw, None)
