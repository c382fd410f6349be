# sources/__init__.py
from __future__ import annotations

from .base import Row, SheetRows, Source, SourceFetch
from .google_sheets import GoogleSheetsSource
from .static import StaticSource

__all__ = [
    "GoogleSheetsSource",
    "Row",
    "SheetRows",
    "Source",
    "SourceFetch",
    "StaticSource",
]
