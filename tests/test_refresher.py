"""Tests for the refresher: overlap guard, failure isolation, timers, empty-source policy."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.refresher import DatasetSpec, Refresher
from core.snapshot import SnapshotStore
from core.transform import FieldMapping
from sources.static import StaticSource
from tests.helpers import FailingSource, GatedSource, ManualTimer, wait_until

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class StepClock:
    def __init__(self) -> None:
        self.now = T0

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _rows(n: int) -> list[dict]:
    return [{"병명": f"질병{i}"} for i in range(n)]


def _refresher(source, *, period_s: float = 0, timer: ManualTimer | None = None, clock=None, **spec_kwargs) -> Refresher:
    spec = DatasetSpec(name="patients", source=source, period_s=period_s, **spec_kwargs)
    kwargs = {}
    if timer is not None:
        kwargs["sleep"] = timer.sleep
    if clock is not None:
        kwargs["clock"] = clock
    return Refresher(spec, SnapshotStore("patients"), **kwargs)


class TestRefreshOnce:
    @pytest.mark.asyncio
    async def test_first_refresh_loads_all_sheets(self, patient_sheets) -> None:
        source = StaticSource(patient_sheets)
        refresher = _refresher(source, mapping=FieldMapping(provenance="보험회사"))
        assert len(refresher.store.get()) == 0

        outcome = await refresher.refresh_once()

        snap = refresher.store.get()
        assert outcome.status == "ok" and outcome.published
        assert len(snap.records) == 8
        assert {r["보험회사"] for r in snap.records} == {"삼성화재", "현대해상"}
        assert len({r["id"] for r in snap.records}) == 8
        assert snap.refreshed_at is not None

    @pytest.mark.asyncio
    async def test_timestamp_is_fetch_start(self) -> None:
        clock = StepClock()
        refresher = _refresher(StaticSource({"s": _rows(2)}), clock=clock)
        await refresher.refresh_once()
        assert refresher.store.get().refreshed_at == T0


class TestOverlapGuard:
    @pytest.mark.asyncio
    async def test_second_call_joins_in_flight_refresh(self) -> None:
        source = GatedSource(_rows(4))
        refresher = _refresher(source)

        first = asyncio.create_task(refresher.refresh_once())
        await wait_until(lambda: source.calls == 1)
        second = asyncio.create_task(refresher.refresh_once())
        third = asyncio.create_task(refresher.ensure_loaded())
        await asyncio.sleep(0.02)
        assert refresher.in_flight

        source.gate.set()
        a, b, snap = await asyncio.gather(first, second, third)

        assert source.calls == 1
        assert source.max_active == 1
        assert not a.joined and b.joined
        assert a.status == b.status == "ok"
        assert len(snap.records) == 4
        assert refresher.store.get().generation == 1

    @pytest.mark.asyncio
    async def test_sequential_calls_each_fetch(self) -> None:
        source = StaticSource({"s": _rows(1)})
        refresher = _refresher(source)
        await refresher.refresh_once()
        await refresher.refresh_once()
        assert source.fetch_count == 2
        assert refresher.store.get().generation == 2
        assert not refresher.in_flight

    @pytest.mark.asyncio
    async def test_timed_out_worker_blocks_new_fetches(self) -> None:
        source = GatedSource(_rows(2))
        refresher = _refresher(source, timeout_s=0.05)
        try:
            first = await refresher.refresh_once()
            second = await refresher.refresh_once()

            assert first.status == second.status == "failed"
            assert "Exceeded" in first.error
            assert second.error == "previous fetch still running"
            assert refresher.fetch_running
            assert refresher.status()["fetch_running"] is True
        finally:
            source.gate.set()

        await wait_until(lambda: not refresher.fetch_running)
        third = await refresher.refresh_once()

        assert third.status == "ok"
        assert source.calls == 2
        assert source.max_active == 1
        assert refresher.fetches == 2


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_snapshot(self) -> None:
        source = StaticSource({"s": _rows(10)})
        refresher = _refresher(source)
        await refresher.refresh_once()
        before = refresher.store.get()

        refresher.spec.source.fetch_all_rows = FailingSource().fetch_all_rows  # type: ignore[method-assign]
        outcome = await refresher.refresh_once()

        assert outcome.status == "failed"
        assert not outcome.published
        assert "connection refused" in outcome.error
        assert refresher.store.get() is before
        assert refresher.failures == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self) -> None:
        class Broken:
            def describe(self) -> str:
                return "broken"

            def fetch_all_rows(self):
                raise KeyError("sheets")

        refresher = _refresher(Broken())
        outcome = await refresher.refresh_once()
        assert outcome.status == "failed"
        assert "KeyError" in outcome.error
        assert not refresher.store.is_loaded

    @pytest.mark.asyncio
    async def test_fetch_timeout_is_a_failure(self) -> None:
        source = GatedSource(_rows(3))
        refresher = _refresher(source, timeout_s=0.05)
        try:
            outcome = await refresher.refresh_once()
        finally:
            source.gate.set()
        await wait_until(lambda: not refresher.fetch_running)

        assert outcome.status == "failed"
        assert "Exceeded" in outcome.error
        assert not refresher.in_flight
        assert refresher.store.get().generation == 0


class TestEmptySource:
    @pytest.mark.asyncio
    async def test_first_empty_publishes_empty_snapshot(self) -> None:
        refresher = _refresher(StaticSource({}))
        outcome = await refresher.refresh_once()
        snap = refresher.store.get()
        assert outcome.status == "empty" and outcome.published
        assert snap.records == ()
        assert snap.refreshed_at is not None

    @pytest.mark.asyncio
    async def test_retain_keeps_previous_data(self) -> None:
        source = StaticSource({"s": _rows(5)})
        refresher = _refresher(source, on_empty="retain")
        await refresher.refresh_once()
        before = refresher.store.get()

        source.replace({"s": []})
        outcome = await refresher.refresh_once()

        assert outcome.status == "empty" and not outcome.published
        assert refresher.store.get() is before

    @pytest.mark.asyncio
    async def test_collapse_publishes_empty(self) -> None:
        source = StaticSource({"s": _rows(5)})
        refresher = _refresher(source, on_empty="collapse")
        await refresher.refresh_once()

        source.replace({})
        outcome = await refresher.refresh_once()

        assert outcome.published
        assert len(refresher.store.get()) == 0


class TestTimer:
    @pytest.mark.asyncio
    async def test_periodic_refresh_picks_up_new_rows(self) -> None:
        timer = ManualTimer()
        clock = StepClock()
        source = StaticSource({"s": _rows(10)})
        refresher = _refresher(source, period_s=180, timer=timer, clock=clock)

        await refresher.refresh_once()
        first = refresher.store.get()
        assert len(first) == 10
        assert refresher.start()

        source.replace({"s": _rows(12)})
        clock.advance(180)
        await timer.tick()

        snap = refresher.store.get()
        assert len(snap) == 12
        assert snap.refreshed_at > first.refreshed_at
        assert timer.periods[0] == 180
        await refresher.stop()
        assert not refresher.timer_running

    @pytest.mark.asyncio
    async def test_failed_tick_keeps_old_snapshot_and_timer_alive(self) -> None:
        timer = ManualTimer()
        source = StaticSource({"s": _rows(10)})
        refresher = _refresher(source, period_s=180, timer=timer)
        await refresher.refresh_once()
        before = refresher.store.get()
        refresher.start()

        failing = FailingSource()
        refresher.spec.source.fetch_all_rows = failing.fetch_all_rows  # type: ignore[method-assign]
        await timer.tick()

        assert failing.calls == 1
        assert refresher.store.get() is before
        assert refresher.timer_running
        await refresher.stop()

    @pytest.mark.asyncio
    async def test_zero_period_has_no_timer(self) -> None:
        refresher = _refresher(StaticSource({"s": _rows(1)}), period_s=0)
        assert refresher.start() is False
        assert not refresher.timer_running

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_timer(self) -> None:
        timer = ManualTimer()
        refresher = _refresher(StaticSource({"s": _rows(1)}), period_s=60, timer=timer)
        assert refresher.start() is True
        assert refresher.start() is False
        await refresher.stop()


class TestEnsureLoaded:
    @pytest.mark.asyncio
    async def test_miss_triggers_refresh(self) -> None:
        source = StaticSource({"s": _rows(3)})
        refresher = _refresher(source)
        snap = await refresher.ensure_loaded()
        assert len(snap) == 3
        assert source.fetch_count == 1

    @pytest.mark.asyncio
    async def test_loaded_store_is_not_refetched(self) -> None:
        source = StaticSource({"s": _rows(3)})
        refresher = _refresher(source)
        await refresher.refresh_once()
        await refresher.ensure_loaded()
        assert source.fetch_count == 1

    @pytest.mark.asyncio
    async def test_failed_miss_returns_empty_snapshot(self) -> None:
        refresher = _refresher(FailingSource())
        snap = await refresher.ensure_loaded()
        assert snap.records == ()
        assert snap.refreshed_at is None

    @pytest.mark.asyncio
    async def test_empty_store_is_refetched(self) -> None:
        source = StaticSource({"s": []})
        refresher = _refresher(source)
        first = await refresher.ensure_loaded()
        assert first.is_empty
        assert refresher.store.is_loaded

        source.replace({"s": _rows(2)})
        snap = await refresher.ensure_loaded()

        assert len(snap) == 2
        assert source.fetch_count == 2


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_reports_last_outcome(self) -> None:
        refresher = _refresher(FailingSource("503"))
        await refresher.refresh_once()
        status = refresher.status()
        assert status["last_outcome"] == "failed"
        assert status["last_error"] == "503"
        assert status["fetches"] == 1
        assert status["in_flight"] is False
