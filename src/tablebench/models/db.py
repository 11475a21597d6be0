# Copyright (c) Syntropy Systems
"""Pydantic models for results-log records."""

from __future__ import annotations

from typing import Optional, cast

from pydantic import Field, TypeAdapter, field_validator

from .base import BenchBaseModel, JSONObject

_LIST_STR_ADAPTER = TypeAdapter(list[str])
_JSON_OBJECT_ADAPTER = TypeAdapter(JSONObject)


class SessionRecord(BenchBaseModel):
    """Database session record."""

    id: str
    name: Optional[str] = None
    baseline: str
    config: Optional[JSONObject] = None
    variants: list[str] = Field(default_factory=list)
    templates: list[str] = Field(default_factory=list)
    status: str
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    host: Optional[JSONObject] = None

    @field_validator("variants", "templates", mode="before")
    @classmethod
    def _parse_str_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return _LIST_STR_ADAPTER.validate_json(value)
        return cast("list[str]", value)

    @field_validator("config", "host", mode="before")
    @classmethod
    def _parse_object(cls, value: object) -> Optional[JSONObject]:
        if value is None:
            return None
        if isinstance(value, str):
            return _JSON_OBJECT_ADAPTER.validate_json(value)
        return cast("JSONObject", value)
