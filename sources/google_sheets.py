from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from core.errors import EmptySource, SourceUnavailable

from .base import Row, SheetRows, SourceFetch

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def rows_from_grid(grid: list[list[Any]], header_row: int = 0) -> list[Row]:
    """
    Turn a values grid into row dicts.

    `header_row` is the 0-based index of the header line; everything after it
    is data. Columns with a blank header are ignored and fully blank rows are
    dropped.
    """
    if len(grid) <= header_row:
        return []

    headers = [_cell_text(cell) for cell in grid[header_row]]
    rows: list[Row] = []
    for raw in grid[header_row + 1:]:
        row: Row = {}
        blank = True
        for idx, header in enumerate(headers):
            if not header:
                continue
            value = raw[idx] if idx < len(raw) else ""
            if _cell_text(value):
                blank = False
            row[header] = value
        if not blank:
            rows.append(row)
    return rows


@dataclass(frozen=True)
class GoogleSheetsSource:
    """
    Reads a workbook through the Sheets v4 REST API.

    With `sheet_index=None` every tab is read and returned in workbook order;
    otherwise only that tab. Auth is either an API key (publicly shared
    sheets) or an OAuth access token supplied by the deployment.
    """

    spreadsheet_id: str
    api_key: Optional[str] = None
    access_token: Optional[str] = None
    sheet_index: Optional[int] = None
    header_row: int = 0
    timeout_s: float = 20.0

    def describe(self) -> str:
        scope = "all sheets" if self.sheet_index is None else f"sheet #{self.sheet_index}"
        return f"gsheets:{self.spreadsheet_id} ({scope})"

    def _get_json(self, url: str, params: dict[str, str]) -> dict:
        if self.api_key:
            params = {**params, "key": self.api_key}
        headers = {"Accept": "application/json", "User-Agent": "sheetportal/0.1"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        query = urlencode(params)
        req = Request(f"{url}?{query}" if query else url, headers=headers, method="GET")
        try:
            with urlopen(req, timeout=self.timeout_s) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except HTTPError as e:
            raise SourceUnavailable(f"sheets HTTP {e.code}: {e.reason}") from e
        except URLError as e:
            raise SourceUnavailable(f"sheets unreachable: {getattr(e, 'reason', e)}") from e
        except (ValueError, OSError) as e:
            raise SourceUnavailable(f"sheets fetch failed: {e}") from e

        if not isinstance(payload, dict):
            raise SourceUnavailable(f"Expected JSON object, got {type(payload).__name__}")
        return payload

    def sheet_titles(self) -> list[str]:
        meta = self._get_json(
            f"{SHEETS_API}/{quote(self.spreadsheet_id, safe='')}",
            {"fields": "sheets.properties(title,index)"},
        )
        sheets = meta.get("sheets") or []
        try:
            props = sorted((s["properties"] for s in sheets), key=lambda p: p.get("index", 0))
            return [str(p["title"]) for p in props]
        except (KeyError, TypeError) as e:
            raise SourceUnavailable(f"malformed spreadsheet metadata: {e}") from e

    def sheet_values(self, title: str) -> list[list[Any]]:
        # Quote the title so names with spaces/punctuation form a valid A1 range
        a1 = "'" + title.replace("'", "''") + "'"
        payload = self._get_json(
            f"{SHEETS_API}/{quote(self.spreadsheet_id, safe='')}/values/{quote(a1, safe='')}",
            {"majorDimension": "ROWS", "valueRenderOption": "FORMATTED_VALUE"},
        )
        values = payload.get("values", [])
        if not isinstance(values, list):
            raise SourceUnavailable(f"malformed values for sheet {title!r}")
        return values

    def fetch_all_rows(self) -> SourceFetch:
        titles = self.sheet_titles()
        if not titles:
            raise EmptySource(f"{self.describe()} has no sheets")

        if self.sheet_index is not None:
            if self.sheet_index >= len(titles):
                raise SourceUnavailable(
                    f"{self.describe()} has only {len(titles)} sheet(s)"
                )
            titles = [titles[self.sheet_index]]

        return tuple(
            SheetRows(title=title, rows=rows_from_grid(self.sheet_values(title), self.header_row))
            for title in titles
        )
