from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from core.query import QueryConfig
from core.refresher import DatasetSpec, EmptyPolicy
from core.transform import FieldMapping
from sources.google_sheets import GoogleSheetsSource

# Row layout of the carrier contact sheet: headers on the third row,
# non-life carriers first, then life carriers.
CONTACT_HEADER_ROW = 2
CONTACT_PARTITION_BOUNDARY = 29

PATIENT_QUERY = QueryConfig(
    keyword_fields=("병명", "특이사항1", "특이사항2"),
    flags={"hospitalized": "입원유무", "surgery": "수술유무"},
    categories={"carrier": "보험회사"},
)


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = _env_str(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    patient_spreadsheet_id: Optional[str] = None
    patient2_spreadsheet_id: Optional[str] = None
    contact_spreadsheet_id: Optional[str] = None
    standard_spreadsheet_id: Optional[str] = None
    sheets_api_key: Optional[str] = None
    sheets_access_token: Optional[str] = None

    patient_refresh_s: float = 600.0
    contact_refresh_s: float = 180.0
    standard_refresh_s: float = 600.0
    fetch_timeout_s: float = 30.0
    contact_partition_boundary: int = CONTACT_PARTITION_BOUNDARY
    search_case_sensitive: bool = True
    empty_source_policy: EmptyPolicy = "retain"

    host: str = "0.0.0.0"
    port: int = 4000
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.empty_source_policy not in ("retain", "collapse"):
            raise ValueError(
                f"EMPTY_SOURCE_POLICY must be 'retain' or 'collapse', got {self.empty_source_policy!r}"
            )
        if self.contact_partition_boundary < 0:
            raise ValueError("CONTACT_PARTITION_BOUNDARY must be >= 0")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            patient_spreadsheet_id=_env_str("PATIENT_SPREADSHEET_ID"),
            patient2_spreadsheet_id=_env_str("PATIENT2_SPREADSHEET_ID"),
            contact_spreadsheet_id=_env_str("CONTACT_SPREADSHEET_ID"),
            standard_spreadsheet_id=_env_str("STANDARD_SPREADSHEET_ID"),
            sheets_api_key=_env_str("SHEETS_API_KEY"),
            sheets_access_token=_env_str("SHEETS_ACCESS_TOKEN"),
            patient_refresh_s=_env_float("PATIENT_REFRESH_S", 600.0),
            contact_refresh_s=_env_float("CONTACT_REFRESH_S", 180.0),
            standard_refresh_s=_env_float("STANDARD_REFRESH_S", 600.0),
            fetch_timeout_s=_env_float("FETCH_TIMEOUT_S", 30.0),
            contact_partition_boundary=_env_int("CONTACT_PARTITION_BOUNDARY", CONTACT_PARTITION_BOUNDARY),
            search_case_sensitive=_env_bool("SEARCH_CASE_SENSITIVE", True),
            empty_source_policy=_env_str("EMPTY_SOURCE_POLICY", "retain").lower(),  # type: ignore[arg-type]
            host=_env_str("HOST", "0.0.0.0"),
            port=_env_int("PORT", 4000),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )

    def sheets_source(self, spreadsheet_id: str, **kwargs) -> GoogleSheetsSource:
        return GoogleSheetsSource(
            spreadsheet_id=spreadsheet_id,
            api_key=self.sheets_api_key,
            access_token=self.sheets_access_token,
            timeout_s=self.fetch_timeout_s,
            **kwargs,
        )


def build_datasets(settings: Settings) -> list[DatasetSpec]:
    """Static dataset catalogue. Datasets without a spreadsheet id are left out."""
    patient_query = QueryConfig(
        keyword_fields=PATIENT_QUERY.keyword_fields,
        case_sensitive=settings.search_case_sensitive,
        flags=PATIENT_QUERY.flags,
        categories=PATIENT_QUERY.categories,
    )
    patient_mapping = FieldMapping(provenance="보험회사")

    specs: list[DatasetSpec] = []
    for name, sheet_id in (
        ("patients-1", settings.patient_spreadsheet_id),
        ("patients-2", settings.patient2_spreadsheet_id),
    ):
        if not sheet_id:
            continue
        specs.append(DatasetSpec(
            name=name,
            source=settings.sheets_source(sheet_id),
            mapping=patient_mapping,
            query=patient_query,
            period_s=settings.patient_refresh_s,
            timeout_s=settings.fetch_timeout_s,
            on_empty=settings.empty_source_policy,
        ))

    if settings.contact_spreadsheet_id:
        specs.append(DatasetSpec(
            name="contacts",
            source=settings.sheets_source(
                settings.contact_spreadsheet_id,
                sheet_index=0,
                header_row=CONTACT_HEADER_ROW,
            ),
            query=QueryConfig(case_sensitive=settings.search_case_sensitive),
            partition_layout=(
                ("non_life", settings.contact_partition_boundary),
                ("life", 0),
            ),
            period_s=settings.contact_refresh_s,
            timeout_s=settings.fetch_timeout_s,
            on_empty=settings.empty_source_policy,
            required=False,
        ))

    if settings.standard_spreadsheet_id:
        specs.append(DatasetSpec(
            name="standard",
            source=settings.sheets_source(settings.standard_spreadsheet_id),
            mapping=FieldMapping(provenance="sheet", numeric=("나이",)),
            query=QueryConfig(
                keyword_fields=("병명",),
                case_sensitive=settings.search_case_sensitive,
                categories={"carrier": "보험회사"},
                age_param="age",
                age_field="나이",
            ),
            period_s=settings.standard_refresh_s,
            timeout_s=settings.fetch_timeout_s,
            on_empty=settings.empty_source_policy,
            required=False,
        ))

    return specs
