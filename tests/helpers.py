from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable

from core.errors import SourceUnavailable
from sources.base import SheetRows, SourceFetch


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


class ManualTimer:
    """Stand-in for asyncio.sleep that only returns when the test calls tick()."""

    def __init__(self) -> None:
        self.periods: list[float] = []
        self._parked: list[asyncio.Future] = []

    async def sleep(self, delay: float) -> None:
        self.periods.append(delay)
        fut = asyncio.get_running_loop().create_future()
        self._parked.append(fut)
        await fut

    async def tick(self) -> None:
        await wait_until(lambda: bool(self._parked))
        self._parked.pop(0).set_result(None)
        # The loop parks again only once the refresh for this tick has returned
        await wait_until(lambda: bool(self._parked))


class GatedSource:
    """Blocks inside fetch until `gate` is set; tracks how many fetches overlap."""

    def __init__(self, rows: list[dict[str, Any]], title: str = "sheet1") -> None:
        self.rows = rows
        self.title = title
        self.gate = threading.Event()
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def describe(self) -> str:
        return "gated"

    def fetch_all_rows(self) -> SourceFetch:
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if not self.gate.wait(5):
                raise SourceUnavailable("gate never opened")
            return (SheetRows(self.title, [dict(r) for r in self.rows]),)
        finally:
            with self._lock:
                self.active -= 1


class FailingSource:
    def __init__(self, message: str = "connection refused") -> None:
        self.message = message
        self.calls = 0

    def describe(self) -> str:
        return "failing"

    def fetch_all_rows(self) -> SourceFetch:
        self.calls += 1
        raise SourceUnavailable(self.message)


