"""HMAC-SHA256 checks for Razorpay checkout confirmations and webhooks.

Pure computation, no I/O. Digests are compared as lowercase hex with
``hmac.compare_digest`` so comparison time does not depend on where the
first differing character sits.
"""
import hashlib
import hmac
from typing import Optional, Union

from .helpers import ct_equal


def hmac_sha256_hex(secret: str, message: Union[bytes, str]) -> str:
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _matches(expected: str, signature: Optional[str]) -> bool:
    if not signature or not isinstance(signature, str):
        return False
    return ct_equal(expected, signature)


def payment_message(order_id: str, payment_id: str) -> str:
    return f"{order_id}|{payment_id}"


def sign_payment(secret: str, order_id: str, payment_id: str) -> str:
    return hmac_sha256_hex(secret, payment_message(order_id, payment_id))


def verify_payment_signature(
    secret: str, order_id: str, payment_id: str, signature: Optional[str]
) -> bool:
    return _matches(sign_payment(secret, order_id, payment_id), signature)


def verify_webhook_signature(
    secret: str, raw_body: bytes, signature: Optional[str]
) -> bool:
    # raw_body must be the bytes off the wire, never re-serialized JSON
    return _matches(hmac_sha256_hex(secret, raw_body), signature)
