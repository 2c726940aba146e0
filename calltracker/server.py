import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import orjson
import redis.asyncio as redis

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, load_settings
from .errors import (
    AppError, ClientError, ConfigError, PayloadTooLarge, error_body
)
from .helpers import js_string, now_ts
from .infra.timings import flush_timings
from .model.counter import CallCounter
from .model.lock import new_lock
from .model.sheets import ServiceAccountAuth, SheetsClient
from .payments import (
    MockPay, OrderBroker, PaymentAdapter, RazorpayPay, validate_amount
)
from .signing import (
    hmac_sha256_hex, verify_payment_signature, verify_webhook_signature
)

log = logging.getLogger(__name__)

WEBHOOK_SIGNATURE_HEADER = "x-razorpay-signature"
PAYMENT_FIELDS = ("razorpay_order_id", "razorpay_payment_id",
                  "razorpay_signature")


# ----------------------------
# Request plumbing
# ----------------------------
@dataclass
class JSONBody:
    raw: Optional[bytes]
    data: Dict[str, Any]


async def json_body(request: Request) -> JSONBody:
    """Read the body under the size cap, keeping the exact bytes.

    Only JSON content types are parsed; anything else yields an empty
    mapping and no raw bytes.
    """
    cap = request.app.state.settings.max_body_bytes
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > cap:
        raise PayloadTooLarge()
    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > cap:
            raise PayloadTooLarge()
        chunks.append(chunk)
    raw = b"".join(chunks)

    if "json" not in request.headers.get("content-type", "").lower():
        return JSONBody(raw=None, data={})
    if not raw.strip():
        return JSONBody(raw=None, data={})
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError:
        raise ClientError("Invalid JSON body")
    return JSONBody(raw=raw, data=data if isinstance(data, dict) else {})


def get_broker(request: Request) -> Optional[OrderBroker]:
    return getattr(request.app.state, "broker", None)


def require_broker(request: Request) -> OrderBroker:
    broker = get_broker(request)
    if broker is None:
        missing = request.app.state.settings.missing_payment_vars()
        raise ConfigError(f"Missing {', '.join(missing) or 'payment config'}")
    return broker


def get_counter(request: Request) -> CallCounter:
    counter = getattr(request.app.state, "counter", None)
    if counter is None:
        missing = request.app.state.settings.missing_counter_vars()
        name = missing[0] if missing else "counter config"
        raise ConfigError(f"Missing {name} env var")
    return counter


# ----------------------------
# Client construction
# ----------------------------
def make_payment_adapter(settings: Settings,
                         http: httpx.AsyncClient) -> Optional[PaymentAdapter]:
    if settings.payment_backend == "mock":
        return MockPay(settings.razorpay_key_id, settings.razorpay_key_secret)
    if not settings.payments_enabled:
        return None
    return RazorpayPay(
        http,
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        base_url=settings.razorpay_api_url,
    )


def make_counter(settings: Settings, http: httpx.AsyncClient,
                 lock) -> Optional[CallCounter]:
    if not settings.counter_enabled:
        return None
    auth = ServiceAccountAuth(http, settings.service_account_info())
    sheets = SheetsClient(
        http, auth, settings.google_sheet_id,
        base_url=settings.sheets_api_url,
    )
    return CallCounter(
        sheets,
        sheet_name=settings.google_sheet_tab,
        zone=settings.log_timezone,
        lock=lock,
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


# ----------------------------
# App factory
# ----------------------------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings if settings is not None else load_settings()

    app = FastAPI(
        title="Call Tracker",
        default_response_class=ORJSONResponse,
    )
    app.state.settings = settings
    app.state.http = None
    app.state.redis = None
    app.state.lock = None
    app.state.broker = None
    app.state.counter = None

    # ---
    # errors
    # ---
    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            log.error("%s %s failed: %s",
                      request.method, request.url.path, exc.message)
        return ORJSONResponse(error_body(exc.message),
                              status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return ORJSONResponse(error_body(str(exc.detail)),
                              status_code=exc.status_code,
                              headers=getattr(exc, "headers", None))

    # every handler is its own fault-isolation unit
    @app.middleware("http")
    async def _isolate_faults(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            log.exception("unhandled error on %s %s",
                          request.method, request.url.path)
            return ORJSONResponse(error_body(str(exc) or "Internal error"),
                                  status_code=500)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        log.info("=" * 50)
        log.info("Call Tracker is starting up...")
        for feature, state in settings.describe():
            log.info("   - %-13s %s", feature, state)
        log.info("=" * 50)

    @app.on_event("startup")
    async def _http_client_start():
        app.state.http = httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            limits=httpx.Limits(
                max_connections=64, max_keepalive_connections=16
            ),
        )

    @app.on_event("startup")
    async def _lock_start():
        if settings.counter_lock_backend == "redis":
            app.state.redis = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
            )
        app.state.lock = new_lock(
            settings.counter_lock_backend,
            r=app.state.redis,
            ttl_seconds=settings.counter_lock_ttl_seconds,
        )

    @app.on_event("startup")
    async def _clients_start():
        adapter = make_payment_adapter(settings, app.state.http)
        if adapter is not None:
            app.state.broker = OrderBroker(
                adapter,
                receipt_prefix=settings.receipt_prefix,
                source_note=settings.order_source_note,
                default_currency=settings.default_currency,
            )
        app.state.counter = make_counter(
            settings, app.state.http, app.state.lock
        )

    @app.on_event("shutdown")
    async def _clients_stop():
        broker = app.state.broker
        if broker is not None:
            await broker.adapter.close()
            app.state.broker = None
        app.state.counter = None

    @app.on_event("shutdown")
    async def _lock_stop():
        lock = app.state.lock
        if lock is not None:
            await lock.close()
            app.state.lock = None
            app.state.redis = None

    @app.on_event("shutdown")
    async def _http_client_stop():
        http = app.state.http
        await flush_timings(http, settings.timings_url)
        if http is not None:
            await http.aclose()
            app.state.http = None

    # ----------------------------
    # Health
    # ----------------------------
    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.head("/health")
    async def health_head():
        return Response(status_code=200)

    # ----------------------------
    # Payments
    # ----------------------------
    @app.get("/payments/key")
    async def payments_key(request: Request):
        # only the publishable key id; works with the secret unset
        broker = get_broker(request)
        key_id = (broker.key_id if broker is not None
                  else settings.razorpay_key_id)
        if not key_id:
            raise ConfigError("Missing RAZORPAY_KEY_ID")
        return {"ok": True, "keyId": key_id}

    @app.post("/payments/create-order")
    async def create_order(request: Request,
                           body: JSONBody = Depends(json_body)):
        amount = body.data.get("amount")
        currency = body.data.get("currency")
        # a bad amount is the caller's fault even when payments are off
        validate_amount(amount)
        broker = require_broker(request)
        order = await broker.create_order(amount, currency)
        return {"ok": True, "order": order, "keyId": broker.key_id}

    @app.post("/payments/verify")
    async def verify_payment(request: Request,
                             body: JSONBody = Depends(json_body)):
        order_id, payment_id, signature = (
            body.data.get(f) for f in PAYMENT_FIELDS
        )
        if not order_id or not payment_id or not signature:
            raise ClientError("Missing payment fields")

        broker = get_broker(request)
        secret = (broker.adapter.key_secret if broker is not None
                  else settings.razorpay_key_secret)
        if not secret:
            raise ConfigError("Missing RAZORPAY_KEY_SECRET")

        if not verify_payment_signature(
            secret, js_string(order_id), js_string(payment_id), signature
        ):
            raise ClientError("Signature verification failed")
        log.info("payment %s for order %s verified", payment_id, order_id)
        return {"ok": True}

    @app.post("/payments/webhook")
    async def payments_webhook(request: Request,
                               body: JSONBody = Depends(json_body)):
        secret = settings.razorpay_webhook_secret
        if not secret:
            raise ConfigError("Missing RAZORPAY_WEBHOOK_SECRET")

        signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER)
        if not signature or not body.raw:
            raise ClientError("Missing webhook signature or raw body")

        if not verify_webhook_signature(secret, body.raw, signature):
            raise ClientError("Invalid webhook signature")

        event = body.data.get("event", "unknown")
        entity_ids = _entity_ids(body.data.get("payload"))
        log.info("webhook %s verified %s", event, entity_ids)
        return {"ok": True}

    # ----------------------------
    # Call counter
    # ----------------------------
    @app.post("/track-call", dependencies=[Depends(json_body)])
    async def track_call(counter: CallCounter = Depends(get_counter)):
        date_key, calls = await counter.increment_today()
        return {"ok": True, "date": date_key, "calls": calls}

    # ----------------------------
    # MockPay checkout (mock backend only)
    # ----------------------------
    if settings.payment_backend == "mock":
        @app.post("/mockpay/{order_id}/pay")
        async def mockpay_pay(order_id: str, request: Request):
            adapter: MockPay = require_broker(request).adapter
            confirmation = adapter.checkout(order_id)
            if settings.mock_webhook_url and settings.razorpay_webhook_secret:
                await _emit_mock_webhook(app, settings, confirmation)
            return {"ok": True, **confirmation}

    return app


def _entity_ids(payload: Any) -> Dict[str, str]:
    ids = {}
    if not isinstance(payload, dict):
        return ids
    for name, wrapper in payload.items():
        entity = wrapper.get("entity") if isinstance(wrapper, dict) else None
        if isinstance(entity, dict) and entity.get("id"):
            ids[name] = str(entity["id"])
    return ids


async def _emit_mock_webhook(app: FastAPI, settings: Settings,
                             confirmation: Dict[str, str]) -> None:
    event = {
        "entity": "event",
        "event": "payment.captured",
        "contains": ["payment"],
        "payload": {
            "payment": {
                "entity": {
                    "id": confirmation["razorpay_payment_id"],
                    "order_id": confirmation["razorpay_order_id"],
                    "status": "captured",
                },
            },
        },
        "created_at": int(now_ts()),
    }
    payload = orjson.dumps(event)
    sig = hmac_sha256_hex(settings.razorpay_webhook_secret, payload)
    try:
        resp = await app.state.http.post(
            settings.mock_webhook_url,
            content=payload,
            headers={
                WEBHOOK_SIGNATURE_HEADER: sig,
                "content-type": "application/json",
            },
        )
    except httpx.HTTPError as e:
        # the caller already has its confirmation; they can retry delivery
        log.warning("mock webhook delivery to %s failed: %s",
                    settings.mock_webhook_url, e)
        return
    if not resp.is_success:
        log.warning("mock webhook delivery to %s rejected: HTTP %d %s",
                    settings.mock_webhook_url, resp.status_code,
                    resp.text[:200])
