from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ContactsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    cached_at: Optional[str] = Field(default=None, alias="cachedAt")
    # Wire keys are the ones the portal UI reads (손해 / 생명)
    non_life: list[dict[str, Any]] = Field(default_factory=list, alias="sonhae")
    life: list[dict[str, Any]] = Field(default_factory=list, alias="saengmyeong")
