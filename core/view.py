# core/view.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from core.refresher import Refresher
from core.snapshot import Record, Snapshot

@dataclass(frozen=True)
class DatasetView:
    name: str
    count: int
    cached_at: Optional[datetime]
    age_s: Optional[int]
    generation: int
    skipped: int
    in_flight: bool
    fetch_running: bool
    timer_running: bool
    period_s: float
    last_outcome: Optional[str] = None
    last_error: Optional[str] = None

def _now_utc() -> datetime:
    return datetime.now(timezone.utc)

def iso_or_none(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None

def records_payload(records: Sequence[Record]) -> list[dict[str, Any]]:
    # Records are read-only mappings; JSON wants plain dicts
    return [dict(r) for r in records]

def build_view(refresher: Refresher, snapshot: Optional[Snapshot] = None) -> DatasetView:
    snap = snapshot if snapshot is not None else refresher.store.get()
    status = refresher.status()

    age: Optional[int] = None
    if snap.refreshed_at is not None:
        age = max(int((_now_utc() - snap.refreshed_at).total_seconds()), 0)

    return DatasetView(
        name=refresher.name,
        count=len(snap.records),
        cached_at=snap.refreshed_at,
        age_s=age,
        generation=snap.generation,
        skipped=snap.skipped,
        in_flight=status["in_flight"],
        fetch_running=status["fetch_running"],
        timer_running=status["timer_running"],
        period_s=status["period_s"],
        last_outcome=status["last_outcome"],
        last_error=status["last_error"],
    )

def view_dict(view: DatasetView) -> dict[str, Any]:
    return {
        "name": view.name,
        "count": view.count,
        "cachedAt": iso_or_none(view.cached_at),
        "age_s": view.age_s,
        "age": format_age(view.age_s) if view.age_s is not None else None,
        "generation": view.generation,
        "skipped": view.skipped,
        "in_flight": view.in_flight,
        "fetch_running": view.fetch_running,
        "timer_running": view.timer_running,
        "period_s": view.period_s,
        "last_outcome": view.last_outcome,
        "last_error": view.last_error,
    }

def format_age(age_s: int) -> str:
    if age_s < 60:
        return f"{age_s}s"
    if age_s < 3600:
        return f"{age_s // 60}m"
    if age_s < 86400:
        return f"{age_s // 3600}h"
    return f"{age_s // 86400}d"
