"""Shared Pydantic base models and utilities."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RitualBase(BaseModel):
    """Base model with shared config for all Daily Ritual schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ---------- Response envelope ----------


class APIResponse(BaseModel):
    """``{success, data, message}`` wrapper returned by JSON endpoints."""

    success: bool = True
    data: Any = None
    message: str | None = None
