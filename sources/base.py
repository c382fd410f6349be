# sources/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, Tuple

Row = Dict[str, Any]

@dataclass(frozen=True)
class SheetRows:
    title: str              # sheet/tab name, used as the provenance tag
    rows: List[Row] = field(default_factory=list)

SourceFetch = Tuple[SheetRows, ...]

class Source(Protocol):
    def describe(self) -> str:
        """Short label for logs."""
        ...

    def fetch_all_rows(self) -> SourceFetch:
        """
        Blocking fetch of every row this source covers.
        Raise SourceUnavailable on failure; the refresher runs this in a thread.
        """
        ...
