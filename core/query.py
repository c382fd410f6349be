from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Tuple

from core.snapshot import Record, Snapshot

Predicate = Callable[[Record], bool]

MATCH_ALL = {"", "any", "unknown", "all", "전체"}
TRUE_VALUES = {"true", "yes", "y", "1", "예"}
FALSE_VALUES = {"false", "no", "n", "0", "아니오"}

YES_MARK = "예"
NO_MARK = "아니오"


def _is_match_all(value: Optional[str]) -> bool:
    return value is None or value.strip().lower() in MATCH_ALL


def _text(record: Record, name: str) -> str:
    value = record.get(name)
    return value if isinstance(value, str) else ""


@dataclass(frozen=True)
class QueryConfig:
    """
    Which request parameters a dataset understands.

    keyword_fields  fields searched by `keyword`; empty means every string field
    flags           request param -> field holding 예/아니오
    categories      request param -> field compared by equality
    age_param/age_field  optional age bucket filter
    """

    keyword_fields: Tuple[str, ...] = ()
    case_sensitive: bool = True
    flags: Mapping[str, str] = field(default_factory=dict)
    categories: Mapping[str, str] = field(default_factory=dict)
    age_param: Optional[str] = None
    age_field: Optional[str] = None

    def filter_params(self) -> Tuple[str, ...]:
        names = [*self.flags, *self.categories]
        if self.age_param:
            names.append(self.age_param)
        return tuple(names)


def search(
    records: Sequence[Record],
    keyword: Optional[str],
    fields: Sequence[str] = (),
    *,
    case_sensitive: bool = True,
) -> Sequence[Record]:
    """Substring search. No keyword returns `records` itself, untouched."""
    if not keyword:
        return records

    needle = keyword
    if not case_sensitive:
        needle = needle.casefold()

    def haystacks(record: Record) -> Iterable[str]:
        if fields:
            values = (_text(record, name) for name in fields)
        else:
            values = (v for v in record.values() if isinstance(v, str))
        if case_sensitive:
            return values
        return (v.casefold() for v in values)

    return tuple(r for r in records if any(needle in h for h in haystacks(r)))


class FlagFilter:
    """예/아니오 flag. true keeps rows containing 예, false keeps rows containing 아니오."""

    def __init__(self, field_name: str, value: Optional[str]) -> None:
        self.field_name = field_name
        self.mark: Optional[str] = None
        if _is_match_all(value):
            return
        normalized = value.strip().lower()
        if normalized in TRUE_VALUES:
            self.mark = YES_MARK
        elif normalized in FALSE_VALUES:
            self.mark = NO_MARK
        else:
            raise ValueError(f"{field_name}: expected true/false/any, got {value!r}")

    @property
    def active(self) -> bool:
        return self.mark is not None

    def __call__(self, record: Record) -> bool:
        if self.mark is None:
            return True
        return self.mark in _text(record, self.field_name)


class CategoryFilter:
    def __init__(self, field_name: str, value: Optional[str]) -> None:
        self.field_name = field_name
        self.value = None if _is_match_all(value) else value.strip()

    @property
    def active(self) -> bool:
        return self.value is not None

    def __call__(self, record: Record) -> bool:
        if self.value is None:
            return True
        raw = record.get(self.field_name)
        return raw is not None and str(raw).strip() == self.value


_RANGE = re.compile(r"^(\d+)\s*-\s*(\d+)$")
_OPEN = re.compile(r"^(\d+)\s*\+$")
_DECADE = re.compile(r"^(\d+)\s*(?:대|s)$")


def parse_age_bucket(bucket: str) -> Tuple[int, Optional[int]]:
    """'20-29' -> (20, 29), '60+' -> (60, None), '30대' / '30s' -> (30, 39)."""
    text = bucket.strip().lower()
    if m := _RANGE.match(text):
        lo, hi = int(m.group(1)), int(m.group(2))
        if hi < lo:
            raise ValueError(f"age range is backwards: {bucket!r}")
        return lo, hi
    if m := _OPEN.match(text):
        return int(m.group(1)), None
    if m := _DECADE.match(text):
        lo = int(m.group(1))
        return lo, lo + 9
    raise ValueError(f"unrecognised age bucket: {bucket!r}")


def _age_of(record: Record, field_name: str) -> Optional[float]:
    value = record.get(field_name)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip()) if value is not None else None
    except ValueError:
        return None


class AgeBucketFilter:
    """
    Numeric bucket filter.

    Records whose age is missing or unparseable are kept by every bucket.
    The UI relies on this: an unknown age is never reason enough to hide a row.
    """

    def __init__(self, field_name: str, bucket: Optional[str]) -> None:
        self.field_name = field_name
        self.bounds = None if _is_match_all(bucket) else parse_age_bucket(bucket)

    @property
    def active(self) -> bool:
        return self.bounds is not None

    def __call__(self, record: Record) -> bool:
        if self.bounds is None:
            return True
        age = _age_of(record, self.field_name)
        if age is None:
            return True
        lo, hi = self.bounds
        return age >= lo and (hi is None or age <= hi)


def apply_filters(records: Sequence[Record], predicates: Sequence[Predicate]) -> Sequence[Record]:
    active = [p for p in predicates if getattr(p, "active", True)]
    if not active:
        return records
    return tuple(r for r in records if all(p(r) for p in active))


def build_predicates(config: QueryConfig, params: Mapping[str, Any]) -> list[Predicate]:
    """Raises ValueError for a filter value that can't be interpreted."""
    predicates: list[Predicate] = []
    for param, field_name in config.flags.items():
        predicates.append(FlagFilter(field_name, params.get(param)))
    for param, field_name in config.categories.items():
        predicates.append(CategoryFilter(field_name, params.get(param)))
    if config.age_param and config.age_field:
        predicates.append(AgeBucketFilter(config.age_field, params.get(config.age_param)))
    return predicates


def run_query(
    snapshot: Snapshot,
    config: QueryConfig,
    keyword: Optional[str] = None,
    params: Optional[Mapping[str, Any]] = None,
) -> Sequence[Record]:
    predicates = build_predicates(config, params or {})
    matched = search(
        snapshot.records,
        keyword,
        config.keyword_fields,
        case_sensitive=config.case_sensitive,
    )
    return apply_filters(matched, predicates)
