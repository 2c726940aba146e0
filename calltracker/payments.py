from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Optional, TypedDict
import logging
import math
import re
import uuid

import httpx

from .errors import ClientError, UpstreamError
from .helpers import now_ms, now_ts
from .infra.timings import timeit
from .signing import sign_payment

log = logging.getLogger(__name__)

MOCK_KEY_ID = "rzp_test_mock"
MOCK_KEY_SECRET = "mock-key-secret"

# string forms Number() accepts; float() alone also takes "1_0", "inf", "nan"
_DECIMAL = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?\Z")
_RADIX = re.compile(r"0([xXoObB])([0-9a-fA-F]+)\Z")
_RADIX_BASES = {"x": 16, "o": 8, "b": 2}


# ----------------------------
# Amount handling
# ----------------------------
def parse_amount(value: Any) -> float:
    """Coerce a request's `amount` the way `Number(x || 0)` would."""
    if value is None or value == "" or value is False:
        return 0.0
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _DECIMAL.match(text):
            return float(text)
        m = _RADIX.match(text)
        if m:
            base = _RADIX_BASES[m.group(1).lower()]
            try:
                return float(int(m.group(2), base))
            except ValueError:
                return math.nan
        if text in ("Infinity", "+Infinity"):
            return math.inf
        if text == "-Infinity":
            return -math.inf
        return math.nan
    return math.nan


def to_minor_units(amount: float) -> int:
    # half away from zero on the decimal as written: 0.005 -> 1, 0.025 -> 3
    try:
        scaled = Decimal(repr(float(amount))) * 100
    except InvalidOperation:
        raise ClientError("Invalid amount")
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def validate_amount(value: Any) -> int:
    amount = parse_amount(value)
    if not math.isfinite(amount) or amount <= 0:
        raise ClientError("Invalid amount")
    minor = to_minor_units(amount)
    if minor < 1:
        raise ClientError("Invalid amount")
    return minor


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class OrderRequest(TypedDict):
    amount: int
    currency: str
    receipt: str
    notes: Dict[str, str]


class PaymentAdapter(ABC):
    key_id: str
    key_secret: str

    @abstractmethod
    async def create_order(self, req: OrderRequest) -> Dict[str, Any]: ...

    async def close(self) -> None:
        return None


# ----------------------------
# Razorpay implementation
# ----------------------------
class RazorpayPay(PaymentAdapter):

    def __init__(self, http: httpx.AsyncClient, key_id: str, key_secret: str,
                 base_url: str = "https://api.razorpay.com/v1") -> None:
        self.http = http
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")

    async def create_order(self, req: OrderRequest) -> Dict[str, Any]:
        async with timeit("gateway.create_order"):
            try:
                resp = await self.http.post(
                    f"{self.base_url}/orders",
                    json=dict(req),
                    auth=(self.key_id, self.key_secret),
                )
            except httpx.HTTPError as e:
                raise UpstreamError(str(e) or "Failed to create order")
        try:
            body = resp.json()
        except ValueError:
            body = None
        if resp.status_code >= 400:
            raise UpstreamError(_gateway_message(body, resp.status_code))
        if not isinstance(body, dict) or not body.get("id"):
            raise UpstreamError("Gateway returned an unexpected order")
        return body


def _gateway_message(body: Any, status: int) -> str:
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("description"):
            return str(err["description"])
    return f"Failed to create order (HTTP {status})"


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """Offline stand-in for Razorpay; orders are made up locally."""

    def __init__(self, key_id: Optional[str] = None,
                 key_secret: Optional[str] = None) -> None:
        self.key_id = key_id or MOCK_KEY_ID
        self.key_secret = key_secret or MOCK_KEY_SECRET

    async def create_order(self, req: OrderRequest) -> Dict[str, Any]:
        return {
            "id": f"order_mock{uuid.uuid4().hex[:14]}",
            "entity": "order",
            "amount": req["amount"],
            "amount_paid": 0,
            "amount_due": req["amount"],
            "currency": req["currency"],
            "receipt": req["receipt"],
            "status": "created",
            "attempts": 0,
            "notes": req["notes"],
            "created_at": int(now_ts()),
        }

    def checkout(self, order_id: str) -> Dict[str, str]:
        # what Razorpay's checkout hands back to the browser
        payment_id = f"pay_mock{uuid.uuid4().hex[:14]}"
        return {
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": sign_payment(
                self.key_secret, order_id, payment_id
            ),
        }


# ----------------------------
# Order broker
# ----------------------------
class OrderBroker:
    def __init__(self, adapter: PaymentAdapter, receipt_prefix: str = "rento",
                 source_note: str = "rento-web",
                 default_currency: str = "INR") -> None:
        self.adapter = adapter
        self.receipt_prefix = receipt_prefix
        self.source_note = source_note
        self.default_currency = default_currency

    @property
    def key_id(self) -> str:
        return self.adapter.key_id

    def build_request(self, amount: Any,
                      currency: Optional[str] = None) -> OrderRequest:
        minor = validate_amount(amount)
        return {
            "amount": minor,
            "currency": str(currency or self.default_currency),
            "receipt": f"{self.receipt_prefix}_{now_ms()}",
            "notes": {"source": self.source_note},
        }

    async def create_order(self, amount: Any,
                           currency: Optional[str] = None) -> Dict[str, Any]:
        req = self.build_request(amount, currency)
        order = await self.adapter.create_order(req)
        log.info("order %s created: %d %s (receipt %s)",
                 order.get("id"), req["amount"], req["currency"],
                 req["receipt"])
        return order
