from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Literal, Optional, Tuple

from core.errors import EmptySource, SourceUnavailable
from core.query import QueryConfig
from core.snapshot import Snapshot, SnapshotStore
from core.transform import FieldMapping, transform_fetch
from sources.base import Source, SourceFetch

log = logging.getLogger("sheetportal.refresher")

Outcome = Literal["ok", "empty", "failed"]
EmptyPolicy = Literal["retain", "collapse"]
Sleep = Callable[[float], Awaitable[Any]]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DatasetSpec:
    name: str
    source: Source
    mapping: FieldMapping = field(default_factory=FieldMapping)
    query: QueryConfig = field(default_factory=QueryConfig)
    partition_layout: Tuple[Tuple[str, int], ...] = ()
    period_s: float = 0.0       # 0 = boot + miss fallback only
    timeout_s: float = 30.0
    on_empty: EmptyPolicy = "retain"
    required: bool = True


@dataclass(frozen=True)
class RefreshOutcome:
    dataset: str
    status: Outcome
    published: bool
    records: int = 0
    duration_ms: int = 0
    error: Optional[str] = None
    joined: bool = False        # True when this caller piggybacked on an in-flight refresh


class Refresher:
    """
    Fetch, transform and publish one dataset.

    At most one refresh per dataset is in flight. A caller that arrives while
    one is running awaits that same task instead of starting a second fetch.
    """

    def __init__(
        self,
        spec: DatasetSpec,
        store: SnapshotStore,
        *,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self.spec = spec
        self.store = store
        self._sleep = sleep
        self._clock = clock
        self._generation = itertools.count(1)
        self._inflight: Optional[asyncio.Task[RefreshOutcome]] = None
        self._timer: Optional[asyncio.Task[None]] = None
        self._worker: Optional[asyncio.Future[SourceFetch]] = None
        self.last_outcome: Optional[RefreshOutcome] = None
        self.fetches = 0
        self.failures = 0

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def timer_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def fetch_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @staticmethod
    def _reap(worker: asyncio.Future) -> None:
        # A timed-out worker finishes on its own; collect its result so it isn't reported as lost
        if not worker.cancelled():
            worker.exception()

    async def _fetch(self) -> SourceFetch:
        if self.fetch_running:
            # The thread behind a timed-out attempt can't be cancelled; never start a second one
            raise SourceUnavailable("previous fetch still running")

        self.fetches += 1
        worker = asyncio.ensure_future(asyncio.to_thread(self.spec.source.fetch_all_rows))
        worker.add_done_callback(self._reap)
        self._worker = worker
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout=self.spec.timeout_s)
        except (SourceUnavailable, EmptySource):
            raise
        except asyncio.TimeoutError as exc:
            raise SourceUnavailable(f"Exceeded {self.spec.timeout_s:.2f}s") from exc
        except Exception as exc:
            raise SourceUnavailable(f"{type(exc).__name__}: {exc}") from exc

    async def _run(self) -> RefreshOutcome:
        start = time.perf_counter()
        started_at = self._clock()
        generation = next(self._generation)

        def outcome(status: Outcome, published: bool, records: int = 0, error: str | None = None) -> RefreshOutcome:
            return RefreshOutcome(
                dataset=self.name,
                status=status,
                published=published,
                records=records,
                duration_ms=int((time.perf_counter() - start) * 1000),
                error=error,
            )

        log.info("refresh start dataset=%s source=%s", self.name, self.spec.source.describe())
        try:
            fetched = await self._fetch()
            result = transform_fetch(
                fetched,
                self.spec.mapping,
                partition_layout=self.spec.partition_layout,
            )
            if not result.records:
                raise EmptySource(f"{self.spec.source.describe()} returned no rows")
        except EmptySource as exc:
            return await self._handle_empty(generation, started_at, outcome, str(exc))
        except SourceUnavailable as exc:
            self.failures += 1
            log.warning("refresh failed dataset=%s: %s (keeping generation %d)",
                        self.name, exc, self.store.get().generation)
            return outcome("failed", False, error=str(exc))
        except Exception as exc:
            self.failures += 1
            log.exception("unexpected refresh failure for %s", self.name)
            return outcome("failed", False, error=f"{type(exc).__name__}: {exc}")

        snapshot = Snapshot(
            dataset=self.name,
            records=result.records,
            partitions=result.partitions,
            refreshed_at=started_at,
            generation=generation,
            skipped=result.skipped,
        )
        published = await self.store.publish(snapshot)
        done = outcome("ok", published, records=len(snapshot.records))
        log.info("refresh done dataset=%s records=%d skipped=%d duration_ms=%d",
                 self.name, done.records, result.skipped, done.duration_ms)
        return done

    async def _handle_empty(
        self,
        generation: int,
        started_at: datetime,
        outcome: Callable[..., RefreshOutcome],
        reason: str,
    ) -> RefreshOutcome:
        # First load has nothing to protect; afterwards the policy decides.
        if self.store.is_loaded and self.spec.on_empty == "retain":
            log.warning("empty source for %s, retaining %d cached records: %s",
                        self.name, len(self.store.get()), reason)
            return outcome("empty", False, error=reason)

        partitions = {name: () for name, _ in self.spec.partition_layout}
        snapshot = Snapshot(
            dataset=self.name,
            partitions=MappingProxyType(partitions),
            refreshed_at=started_at,
            generation=generation,
        )
        published = await self.store.publish(snapshot)
        log.warning("empty source for %s, published empty snapshot: %s", self.name, reason)
        return outcome("empty", published, error=reason)

    async def refresh_once(self) -> RefreshOutcome:
        task = self._inflight
        if task is not None and not task.done():
            log.info("refresh already running for %s, joining", self.name)
            joined = await asyncio.shield(task)
            return replace(joined, joined=True)

        task = asyncio.create_task(self._run(), name=f"refresh:{self.name}")
        self._inflight = task
        try:
            result = await asyncio.shield(task)
        finally:
            if self._inflight is task and task.done():
                self._inflight = None
        self.last_outcome = result
        return result

    async def ensure_loaded(self) -> Snapshot:
        """Cache-miss fallback: refresh before answering while the snapshot holds no records."""
        if self.store.get().is_empty:
            log.warning("cache miss for %s, refreshing before answering", self.name)
            await self.refresh_once()
        return self.store.get()

    async def _timer_loop(self) -> None:
        period = self.spec.period_s
        while True:
            await self._sleep(period)
            try:
                await self.refresh_once()
            except Exception:
                # keep the timer alive
                log.exception("timer tick failed for %s", self.name)

    def start(self) -> bool:
        if self.spec.period_s <= 0 or self.timer_running:
            return False
        self._timer = asyncio.create_task(self._timer_loop(), name=f"timer:{self.name}")
        log.info("timer started dataset=%s period_s=%s", self.name, self.spec.period_s)
        return True

    async def stop(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        task = self._inflight
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    def status(self) -> dict[str, Any]:
        last = self.last_outcome
        return {
            "in_flight": self.in_flight,
            "fetch_running": self.fetch_running,
            "timer_running": self.timer_running,
            "period_s": self.spec.period_s,
            "fetches": self.fetches,
            "failures": self.failures,
            "last_outcome": last.status if last else None,
            "last_error": last.error if last else None,
        }
