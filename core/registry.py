from __future__ import annotations

import asyncio
import logging
from typing import Any

from core.errors import DuplicateDatasetError, RegistryMiss, StartupRefreshError
from core.refresher import DatasetSpec, Refresher, RefreshOutcome, Sleep
from core.snapshot import SnapshotStore

log = logging.getLogger("sheetportal.registry")


class CacheRegistry:
    """
    Named datasets and their (store, refresher) pairs.

    Datasets are declared once at startup. Request handlers only look stores
    up; they never refresh or publish except through the refresher's miss
    fallback.
    """

    def __init__(self, *, sleep: Sleep = asyncio.sleep) -> None:
        self._sleep = sleep
        self._stores: dict[str, SnapshotStore] = {}
        self._refreshers: dict[str, Refresher] = {}
        self.started = False

    def register(self, spec: DatasetSpec) -> Refresher:
        if spec.name in self._refreshers:
            raise DuplicateDatasetError(spec.name)

        store = SnapshotStore(spec.name)
        refresher = Refresher(spec, store, sleep=self._sleep)
        self._stores[spec.name] = store
        self._refreshers[spec.name] = refresher
        log.info("registered dataset=%s period_s=%s", spec.name, spec.period_s)
        return refresher

    def has_dataset(self, name: str) -> bool:
        return name in self._refreshers

    def names(self) -> list[str]:
        return list(self._refreshers)

    def get_store(self, name: str) -> SnapshotStore:
        try:
            return self._stores[name]
        except KeyError:
            raise RegistryMiss(name) from None

    def get_refresher(self, name: str) -> Refresher:
        try:
            return self._refreshers[name]
        except KeyError:
            raise RegistryMiss(name) from None

    def items(self) -> list[tuple[str, Refresher]]:
        return list(self._refreshers.items())

    async def refresh_all(self) -> dict[str, RefreshOutcome]:
        outcomes = await asyncio.gather(*(r.refresh_once() for r in self._refreshers.values()))
        return {outcome.dataset: outcome for outcome in outcomes}

    async def start(self) -> dict[str, RefreshOutcome]:
        """Boot-time load of every dataset, then timers. Raises if a required dataset failed."""
        outcomes = await self.refresh_all()

        failed = {
            name: outcome.error or "failed"
            for name, outcome in outcomes.items()
            if outcome.status == "failed" and self._refreshers[name].spec.required
        }
        if failed:
            raise StartupRefreshError(failed)

        for name, outcome in outcomes.items():
            if outcome.status == "failed":
                log.warning("optional dataset %s failed its first load: %s", name, outcome.error)

        for refresher in self._refreshers.values():
            refresher.start()
        self.started = True
        return outcomes

    async def stop(self) -> None:
        await asyncio.gather(*(r.stop() for r in self._refreshers.values()))
        self.started = False

    def status(self) -> dict[str, dict[str, Any]]:
        return {name: refresher.status() for name, refresher in self._refreshers.items()}
