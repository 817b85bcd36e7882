from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from lighthouse.services.telemetry import counters_snapshot, external_latency_by_integration

router = APIRouter(prefix="/ops", tags=["ops"])


@router.get("/metrics")
async def ops_metrics(window_s: int = Query(default=300, ge=1, le=86400)) -> dict[str, Any]:
    # In-process view only; each API or worker process reports its own counters.
    return {
        "counters": counters_snapshot(),
        "external_calls": external_latency_by_integration(window_s),
        "window_s": window_s,
    }
