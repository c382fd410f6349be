from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

from core.errors import TransformError
from core.snapshot import Record, freeze_record
from sources.base import Row, SourceFetch

log = logging.getLogger("sheetportal.transform")

UNKNOWN = "unknown"


def new_record_id() -> str:
    return uuid.uuid4().hex


def parse_number(value: Any) -> int | float:
    """Parse a sheet cell as a number. Accepts "1,200", " 42 ", "3.5", and "42세"-style suffixes."""
    if isinstance(value, bool):
        raise TransformError(f"not a number: {value!r}")
    if isinstance(value, (int, float)):
        return value

    text = str(value or "").strip().replace(",", "")
    while text and not (text[-1].isdigit() or text[-1] == "."):
        text = text[:-1].rstrip()
    if not text:
        raise TransformError(f"not a number: {value!r}")
    try:
        number = float(text)
    except ValueError as exc:
        raise TransformError(f"not a number: {value!r}") from exc
    return int(number) if number.is_integer() else number


@dataclass(frozen=True)
class FieldMapping:
    """
    How raw sheet rows become records for one dataset.

    rename      source header -> record field
    defaults    value used when a field is missing or blank
    numeric     fields parsed as numbers; failures become UNKNOWN
    provenance  field that receives the source sheet title (None to skip)
    """

    rename: Mapping[str, str] = field(default_factory=dict)
    defaults: Mapping[str, Any] = field(default_factory=dict)
    numeric: Tuple[str, ...] = ()
    id_field: str = "id"
    provenance: Optional[str] = None


@dataclass(frozen=True)
class TransformResult:
    records: Tuple[Record, ...]
    partitions: Mapping[str, Tuple[Record, ...]]
    skipped: int = 0


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def transform_row(
    row: Row,
    mapping: FieldMapping,
    *,
    sheet_title: str,
    make_id: Callable[[], str] = new_record_id,
) -> dict[str, Any]:
    if not isinstance(row, Mapping):
        raise TransformError(f"row is {type(row).__name__}, expected a mapping")

    out: dict[str, Any] = {}
    for key, value in row.items():
        out[mapping.rename.get(str(key), str(key))] = value

    for name, default in mapping.defaults.items():
        if _is_blank(out.get(name)):
            out[name] = default

    for name in mapping.numeric:
        if name not in out:
            continue
        try:
            out[name] = parse_number(out[name])
        except TransformError:
            out[name] = UNKNOWN

    if mapping.provenance:
        out[mapping.provenance] = sheet_title
    out[mapping.id_field] = make_id()
    return out


def partition_by_position(
    records: Sequence[Record],
    layout: Sequence[Tuple[str, int]],
) -> Mapping[str, Tuple[Record, ...]]:
    """
    Split records into consecutive slices by row count.

    `layout` is ((name, size), ...); the last entry's size is ignored and it
    takes everything that is left. Position decides, never content.
    """
    parts: dict[str, Tuple[Record, ...]] = {}
    start = 0
    for idx, (name, size) in enumerate(layout):
        if idx == len(layout) - 1:
            parts[name] = tuple(records[start:])
        else:
            parts[name] = tuple(records[start:start + size])
            start += size
    return MappingProxyType(parts)


def transform_fetch(
    fetched: SourceFetch,
    mapping: FieldMapping,
    *,
    partition_layout: Sequence[Tuple[str, int]] = (),
    make_id: Callable[[], str] = new_record_id,
) -> TransformResult:
    records: list[Record] = []
    skipped = 0

    for sheet in fetched:
        for row in sheet.rows:
            try:
                records.append(freeze_record(
                    transform_row(row, mapping, sheet_title=sheet.title, make_id=make_id)
                ))
            except TransformError as exc:
                skipped += 1
                log.warning("skipping row in sheet %r: %s", sheet.title, exc)

    frozen = tuple(records)
    partitions = (
        partition_by_position(frozen, partition_layout)
        if partition_layout
        else MappingProxyType({})
    )
    return TransformResult(records=frozen, partitions=partitions, skipped=skipped)
