import math
import time
import re
from datetime import datetime, timezone
from decimal import Decimal
import hmac
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ConfigError


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def now_ms() -> int:
    return int(time.time() * 1000)


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def load_zone(zone: Union[str, ZoneInfo]) -> ZoneInfo:
    if isinstance(zone, ZoneInfo):
        return zone
    try:
        return ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"Invalid time zone: {zone!r}")


def resolve_date_key(
    now: Optional[datetime], zone: Union[str, ZoneInfo]
) -> str:
    """Calendar day of `now` in `zone` as YYYY-MM-DD.

    Naive datetimes are taken to be UTC. The key is assembled from the
    integer fields, so host locale never leaks into it.
    """
    tz = load_zone(zone)
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(tz)
    return f"{local.year:04d}-{local.month:02d}-{local.day:02d}"


_EXPONENT = re.compile(r"e([+-])0*(\d)")


def js_string(value) -> str:
    """Text of a JSON scalar as JavaScript string interpolation renders it.

    `5.0` becomes "5", `1e-05` becomes "0.00001", `True` becomes "true".
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        if 1e-6 <= abs(value) < 1e21:
            return format(Decimal(repr(value)), "f")
        return _EXPONENT.sub(r"e\1\2", repr(value))
    return str(value)


_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_count(value) -> int:
    # parseInt-style: leading integer wins, anything else counts as 0
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        return max(0, int(value)) if math.isfinite(value) else 0
    m = _LEADING_INT.match(str(value))
    if not m:
        return 0
    return max(0, int(m.group(1)))
