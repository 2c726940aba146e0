# calltracker/infra/timings.py
"""Latency samples for outbound calls (Sheets, OAuth token, gateway).

Samples stay in memory per kind and are summarized once, on shutdown.
"""
from __future__ import annotations
import json
import logging
import os
import socket
import statistics
import time
from collections import defaultdict
from typing import DefaultDict, Dict, Optional, List

import httpx

log = logging.getLogger(__name__)

# kind -> elapsed seconds, e.g. "sheets.read" -> [0.21, 0.18]
_SAMPLES: DefaultDict[str, List[float]] = defaultdict(list)


def record_timing(kind: str, seconds: float) -> None:
    _SAMPLES[kind].append(float(seconds))


class timeit:
    """Record how long the wrapped upstream call took, even if it raised.

        async with timeit("sheets.append"):
            await http.post(...)
    """
    __slots__ = ("kind", "started")

    def __init__(self, kind: str):
        self.kind = kind
        self.started = 0.0

    async def __aenter__(self):
        self.started = time.perf_counter()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        record_timing(self.kind, time.perf_counter() - self.started)


# ------------ summaries ------------

def _summarize(kind: str, samples: List[float]) -> dict:
    spread = statistics.stdev(samples) if len(samples) > 1 else 0.0
    return {
        "kind": kind,
        "n": len(samples),
        "mean": statistics.fmean(samples),
        "std": spread,
    }


def aggregates() -> List[dict]:
    return [_summarize(k, v) for k, v in _SAMPLES.items() if v]


def reset() -> None:
    _SAMPLES.clear()


def _to_ndjson(recs: List[dict]) -> bytes:
    lines = [json.dumps(rec, separators=(",", ":")) + "\n" for rec in recs]
    return "".join(lines).encode("utf-8")


async def flush_timings(
    http: Optional[httpx.AsyncClient],
    url: Optional[str],
    worker_id: Optional[str] = None,
) -> Dict[str, int]:
    """
    Log the per-kind aggregates and, when `url` is set, POST them as NDJSON
    to {url}/v1/metric/flush. Timings are cleared afterwards either way.
    """
    recs = aggregates()
    if not recs:
        return {"accepted": 0}

    for rec in recs:
        log.info("timing %-22s n=%-6d mean=%.4fs std=%.4fs",
                 rec["kind"], rec["n"], rec["mean"], rec["std"])

    accepted = 0
    try:
        if url and http is not None:
            worker_id = worker_id or f"{os.getpid()}@{socket.gethostname()}"
            r = await http.post(
                f"{url.rstrip('/')}/v1/metric/flush",
                content=_to_ndjson(recs),
                headers={
                    "content-type": "application/x-ndjson",
                    "x-worker-id": worker_id,
                },
            )
            r.raise_for_status()
            accepted = int(r.json().get("accepted", 0))
    except (httpx.HTTPError, ValueError) as e:
        log.warning("timings flush to %s failed: %s", url, e)
    finally:
        reset()
    return {"accepted": accepted}
