from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SearchQuery(BaseModel):
    keyword: Optional[str] = None
    filters: dict[str, str] = Field(default_factory=dict)

    @field_validator("keyword")
    @classmethod
    def validate_keyword(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if len(value) > 100:
            raise ValueError("keyword must be <= 100 characters")
        # Matched as typed; whitespace is a valid needle
        return value or None


class SearchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    dataset: str
    cached_at: Optional[str] = Field(default=None, alias="cachedAt")
    count: int
    records: list[dict[str, Any]]
