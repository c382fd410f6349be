from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

log = logging.getLogger("sheetportal.snapshot")

Record = Mapping[str, Any]


def freeze_record(data: Mapping[str, Any]) -> Record:
    # Read-only view over a private copy so published rows can't be edited in place
    return MappingProxyType(dict(data))


@dataclass(frozen=True)
class Snapshot:
    dataset: str
    records: Tuple[Record, ...] = ()
    partitions: Mapping[str, Tuple[Record, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    refreshed_at: Optional[datetime] = None  # start of the fetch that produced it
    generation: int = 0
    skipped: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.records

    def __len__(self) -> int:
        return len(self.records)

    def partition(self, name: str) -> Tuple[Record, ...]:
        return self.partitions.get(name, ())


def empty_snapshot(dataset: str) -> Snapshot:
    return Snapshot(dataset=dataset)


class SnapshotStore:
    """
    Holds the one current snapshot for a dataset.

    Reads are a plain attribute load and never wait. Publishes swap the
    reference under a lock and only move forward in generation, so a reader
    sees either the old snapshot or the new one, never a blend.
    """

    def __init__(self, dataset: str) -> None:
        self.dataset = dataset
        self._current: Snapshot = empty_snapshot(dataset)
        self._lock = asyncio.Lock()
        self._loaded = False

    def get(self) -> Snapshot:
        return self._current

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def publish(self, snapshot: Snapshot) -> bool:
        if snapshot.dataset != self.dataset:
            raise ValueError(
                f"snapshot for {snapshot.dataset!r} published into store {self.dataset!r}"
            )

        async with self._lock:
            current = self._current
            if snapshot.generation <= current.generation:
                log.warning(
                    "dropping stale snapshot dataset=%s generation=%d current=%d",
                    self.dataset,
                    snapshot.generation,
                    current.generation,
                )
                return False
            self._current = snapshot
            self._loaded = True

        log.info(
            "published dataset=%s generation=%d records=%d",
            self.dataset,
            snapshot.generation,
            len(snapshot.records),
        )
        return True
