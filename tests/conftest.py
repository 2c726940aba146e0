# tests/conftest.py
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from calltracker.config import Settings
from calltracker.model.counter import CallCounter
from calltracker.server import create_app, get_counter

KEY_ID = "rzp_test_key"
KEY_SECRET = "key_secret_test"
WEBHOOK_SECRET = "whsec_test"
HEADER_ROW = ["Date", "Calls"]


class FakeSheet:
    """In-memory stand-in for the Sheets values API.

    Every call yields to the event loop once, so unguarded read/write pairs
    from concurrent tasks would interleave.
    """

    def __init__(self, rows: Optional[List[List[Any]]] = None) -> None:
        self.rows = [list(r) for r in (rows if rows is not None else [HEADER_ROW])]
        self.calls: List[tuple] = []

    async def read_range(self, rng: str) -> List[List[Any]]:
        self.calls.append(("read", rng, None))
        await asyncio.sleep(0)
        return [list(r) for r in self.rows]

    async def update_range(self, rng: str, values: List[List[Any]]) -> None:
        self.calls.append(("update", rng, values))
        await asyncio.sleep(0)
        cell = rng.split("!")[-1]
        row = self.rows[int(cell[1:]) - 1]
        while len(row) < 2:
            row.append("")
        row[1] = values[0][0]

    async def append_rows(self, rng: str, values: List[List[Any]]) -> None:
        self.calls.append(("append", rng, values))
        await asyncio.sleep(0)
        self.rows.extend(list(v) for v in values)


class FixedClock:
    def __init__(self, when: datetime) -> None:
        self.when = when

    def __call__(self) -> datetime:
        return self.when


def make_settings(**overrides: Any) -> Settings:
    values = {
        "PAYMENT_BACKEND": "mock",
        "RAZORPAY_KEY_ID": KEY_ID,
        "RAZORPAY_KEY_SECRET": KEY_SECRET,
        "RAZORPAY_WEBHOOK_SECRET": WEBHOOK_SECRET,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture()
def sheet() -> FakeSheet:
    return FakeSheet()


@pytest.fixture()
def clock() -> FixedClock:
    # 2024-01-02 12:00 in Asia/Kolkata
    return FixedClock(datetime(2024, 1, 2, 6, 30, tzinfo=timezone.utc))


@pytest.fixture()
def counter(sheet: FakeSheet, clock: FixedClock) -> CallCounter:
    return CallCounter(sheet, sheet_name="Sheet1", zone="Asia/Kolkata",
                       clock=clock)


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def app(settings: Settings, counter: CallCounter) -> Iterator[FastAPI]:
    application = create_app(settings)
    application.dependency_overrides[get_counter] = lambda: counter
    try:
        yield application
    finally:
        application.dependency_overrides.clear()


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client
