from __future__ import annotations

import copy
from typing import Iterable, Mapping, Sequence

from .base import Row, SheetRows, SourceFetch


class StaticSource:
    """In-memory source. Used by tests and by local runs without sheet credentials."""

    def __init__(self, sheets: Mapping[str, Sequence[Row]] | None = None, label: str = "static") -> None:
        self.label = label
        self._sheets: dict[str, list[Row]] = {}
        self.fetch_count = 0
        if sheets:
            self.replace(sheets)

    def replace(self, sheets: Mapping[str, Iterable[Row]]) -> None:
        self._sheets = {title: [dict(row) for row in rows] for title, rows in sheets.items()}

    def describe(self) -> str:
        return f"static:{self.label}"

    def fetch_all_rows(self) -> SourceFetch:
        self.fetch_count += 1
        # Hand out copies so callers can't reach back into the fixture
        return tuple(
            SheetRows(title=title, rows=copy.deepcopy(rows))
            for title, rows in self._sheets.items()
        )
