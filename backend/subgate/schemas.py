from __future__ import annotations

import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


def _lenient_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return _lenient_int(float(text))
    except ValueError:
        return 0


class ErrorResponse(BaseModel):
    error: str
    retry_after: Optional[int] = None
    message: Optional[str] = None


class JmsTrafficPayload(BaseModel):
    """Usage report with a monthly byte allowance and a reset day."""

    model_config = ConfigDict(extra="ignore")

    monthly_bw_limit_b: int
    bw_counter_b: int
    bw_reset_day_of_month: int = 1

    @field_validator("monthly_bw_limit_b", "bw_counter_b", mode="before")
    @classmethod
    def _coerce_counter(cls, value: Any) -> int:
        return _lenient_int(value)

    @field_validator("bw_reset_day_of_month", mode="before")
    @classmethod
    def _coerce_reset_day(cls, value: Any) -> int:
        return _lenient_int(value) or 1


class GenericTrafficPayload(BaseModel):
    """Usage report already split into upload/download/total."""

    model_config = ConfigDict(extra="ignore")

    upload: int
    download: int
    total: int = 0
    expire: Any = None

    @field_validator("upload", "download", "total", mode="before")
    @classmethod
    def _coerce_counter(cls, value: Any) -> int:
        return _lenient_int(value)
