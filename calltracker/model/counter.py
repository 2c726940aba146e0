from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Callable, List, Optional, Protocol, Tuple, Union
from zoneinfo import ZoneInfo

from ..helpers import load_zone, parse_count, resolve_date_key
from .lock import LocalCounterLock
from .sheets import a1_range

log = logging.getLogger(__name__)

DATE_COL = 0
COUNT_COL = 1


class RowStore(Protocol):
    async def read_range(self, rng: str) -> List[List[Any]]: ...

    async def update_range(self, rng: str, values: List[List[Any]]) -> None:
        ...

    async def append_rows(self, rng: str, values: List[List[Any]]) -> None:
        ...


def _cell(row: List[Any], col: int) -> Any:
    return row[col] if len(row) > col else None


def find_date_rows(rows: List[List[Any]], date_key: str) -> List[int]:
    """List indexes of every data row keyed `date_key` (header skipped)."""
    hits = []
    for i in range(1, len(rows)):
        value = _cell(rows[i] or [], DATE_COL)
        if str(value if value is not None else "").strip() == date_key:
            hits.append(i)
    return hits


class CallCounter:
    """One row per calendar day in a two-column sheet: date key, count.

    Read and write for a key happen under `lock.hold(date_key)`, so two
    increments of the same day cannot interleave (within the lock's reach:
    one process for the local backend, every process for redis).
    """

    def __init__(self, store: RowStore, sheet_name: str = "Sheet1",
                 zone: Union[str, ZoneInfo] = "Asia/Kolkata",
                 lock=None,
                 clock: Optional[Callable[[], datetime]] = None) -> None:
        self.store = store
        self.sheet_name = sheet_name
        self.zone = load_zone(zone)
        self.lock = lock if lock is not None else LocalCounterLock()
        self.clock = clock

    @property
    def range(self) -> str:
        return a1_range(self.sheet_name, "A:B")

    def count_cell(self, row_index: int) -> str:
        # list index 0 is sheet row 1
        return a1_range(self.sheet_name, f"B{row_index + 1}")

    async def increment_today(
        self, now: Optional[datetime] = None
    ) -> Tuple[str, int]:
        if now is None and self.clock is not None:
            now = self.clock()
        date_key = resolve_date_key(now, self.zone)
        async with self.lock.hold(date_key):
            return date_key, await self._increment(date_key)

    async def _increment(self, date_key: str) -> int:
        rows = await self.store.read_range(self.range)
        hits = find_date_rows(rows, date_key)

        if not hits:
            await self.store.append_rows(self.range, [[date_key, 1]])
            log.info("call counter: new row for %s", date_key)
            return 1

        row_index = hits[0]
        if len(hits) > 1:
            log.warning(
                "call counter: %s appears on sheet rows %s; using row %d",
                date_key, [i + 1 for i in hits], row_index + 1,
            )
        calls = parse_count(_cell(rows[row_index], COUNT_COL)) + 1
        await self.store.update_range(self.count_cell(row_index), [[calls]])
        log.info("call counter: %s -> %d", date_key, calls)
        return calls
