# tests/test_helpers.py
import locale
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from calltracker.errors import ConfigError
from calltracker.helpers import (
    ct_equal, js_string, parse_count, resolve_date_key
)


class TestResolveDateKey:
    def test_zone_shifts_the_day(self):
        instant = datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)
        assert resolve_date_key(instant, "Asia/Kolkata") == "2024-01-02"
        assert resolve_date_key(instant, "UTC") == "2024-01-01"
        assert resolve_date_key(instant, "America/New_York") == "2024-01-01"

    def test_naive_datetime_is_utc(self):
        naive = datetime(2024, 3, 9, 23, 0)
        assert resolve_date_key(naive, "UTC") == "2024-03-09"
        assert resolve_date_key(naive, "Asia/Tokyo") == "2024-03-10"

    def test_zero_padded(self):
        assert resolve_date_key(
            datetime(999, 2, 3, 12, tzinfo=timezone.utc), "UTC"
        ) == "0999-02-03"

    def test_same_day_is_idempotent(self):
        morning = datetime(2024, 6, 1, 0, 1, tzinfo=ZoneInfo("Asia/Kolkata"))
        night = morning + timedelta(hours=23, minutes=58)
        assert resolve_date_key(morning, "Asia/Kolkata") == \
            resolve_date_key(night, "Asia/Kolkata") == "2024-06-01"

    def test_accepts_zoneinfo(self):
        instant = datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)
        assert resolve_date_key(instant, ZoneInfo("Asia/Kolkata")) == \
            "2024-01-02"

    def test_now_default(self):
        key = resolve_date_key(None, "UTC")
        assert len(key) == 10 and key[4] == key[7] == "-"

    def test_invalid_zone(self):
        with pytest.raises(ConfigError, match="Invalid time zone"):
            resolve_date_key(None, "Mars/Olympus_Mons")

    @pytest.mark.parametrize("name", ["de_DE.UTF-8", "ar_EG.UTF-8",
                                      "th_TH.UTF-8"])
    def test_host_locale_does_not_leak(self, name):
        saved = locale.setlocale(locale.LC_ALL)
        try:
            locale.setlocale(locale.LC_ALL, name)
        except locale.Error:
            pytest.skip(f"locale {name} not installed")
        try:
            instant = datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)
            assert resolve_date_key(instant, "Asia/Kolkata") == "2024-01-02"
        finally:
            locale.setlocale(locale.LC_ALL, saved)


@pytest.mark.parametrize("value,expected", [
    ("7", 7), (" 7 ", 7), ("12abc", 12), ("3.9", 3), ("", 0), ("abc", 0),
    (None, 0), (True, 0), (4, 4), (4.7, 4), (float("nan"), 0),
    (float("inf"), 0), ("-2", 0),
])
def test_parse_count(value, expected):
    assert parse_count(value) == expected


def test_ct_equal():
    assert ct_equal("abc", "abc")
    assert not ct_equal("abc", "abd")


@pytest.mark.parametrize("value,expected", [
    ("order_1", "order_1"), (5, "5"), (5.0, "5"), (-2.0, "-2"), (1.5, "1.5"),
    (1e-05, "0.00001"), (1e-07, "1e-7"), (1e21, "1e+21"),
    (1e16, "10000000000000000"), (True, "true"), (None, "null"),
])
def test_js_string(value, expected):
    assert js_string(value) == expected
