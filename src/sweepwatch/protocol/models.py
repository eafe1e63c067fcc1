# src/sweepwatch/protocol/models.py
from __future__ import annotations

"""
Wire models for the two data channels
=====================================

The status endpoint returns a flat JSON object; the logs endpoint returns
either a list of strings, `{"logs": [...]}`, `{"logs": "a\\nb"}` or raw text.

Design principles:
- Pydantic v2 models, `extra="ignore"`: the server is not ours and may grow
  fields; unknown keys must not break polling.
- Python-side names follow the engine's vocabulary; the server's wire names
  are accepted through validation aliases.
- Missing or null counters read as 0, missing flags as False.
- Anything that cannot be coerced raises `MalformedPayload`.
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import MalformedPayload


class LastCheck(BaseModel):
    """Summary of the most recently completed run, as reported by the server."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    time: str = ""
    duration_seconds: int = Field(0, validation_alias=AliasChoices("duration", "durationSeconds", "duration_seconds"))
    total: int
    available: int = 0

    @field_validator("time", mode="before")
    @classmethod
    def _time_str(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("duration_seconds", "available", mode="before")
    @classmethod
    def _none_is_zero(cls, v: Any) -> Any:
        return 0 if v is None else v


class JobStatusSnapshot(BaseModel):
    """
    Authoritative, coarse job status. Fetched wholesale on each status poll;
    always replaces the previous snapshot.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    checking: bool = False
    processed_count: int = Field(0, validation_alias=AliasChoices("progress", "processedCount", "processed_count"))
    total_count: int = Field(0, validation_alias=AliasChoices("proxyCount", "totalCount", "total_count"))
    available_count: int = Field(0, validation_alias=AliasChoices("available", "availableCount", "available_count"))
    last_check: LastCheck | None = Field(None, validation_alias=AliasChoices("lastCheck", "last_check"))
    force_close: bool = Field(False, validation_alias=AliasChoices("forceClose", "force_close"))
    success_limited: bool = Field(
        False, validation_alias=AliasChoices("successlimited", "successLimited", "success_limited")
    )
    processing_results: bool = Field(
        False, validation_alias=AliasChoices("processResults", "processingResults", "processing_results")
    )

    @field_validator("checking", "force_close", "success_limited", "processing_results", mode="before")
    @classmethod
    def _truthy(cls, v: Any) -> bool:
        return bool(v)

    @field_validator("processed_count", "total_count", "available_count", mode="before")
    @classmethod
    def _count(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("last_check", mode="before")
    @classmethod
    def _last_check(cls, v: Any) -> Any:
        # The server sends {} when no run has completed yet; a non-numeric
        # total means the same thing.
        if not isinstance(v, dict):
            return None
        total = v.get("total")
        if isinstance(total, bool) or not isinstance(total, int | float):
            return None
        return v

    @property
    def finishing(self) -> bool:
        return self.force_close or self.success_limited or self.processing_results

    @classmethod
    def from_payload(cls, payload: Any) -> JobStatusSnapshot:
        if not isinstance(payload, dict):
            raise MalformedPayload(f"status payload must be an object, got {type(payload).__name__}")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise MalformedPayload(f"invalid status payload: {e.error_count()} error(s)") from e


def parse_log_payload(payload: Any) -> list[str]:
    """Normalize any accepted logs payload into a list of lines."""
    if isinstance(payload, list):
        return [str(x) for x in payload]
    if isinstance(payload, str):
        return payload.split("\n")
    if isinstance(payload, dict):
        logs = payload.get("logs")
        if isinstance(logs, list):
            return [str(x) for x in logs]
        if isinstance(logs, str):
            return logs.split("\n")
        raise MalformedPayload("logs payload object has no 'logs' list or string")
    raise MalformedPayload(f"unsupported logs payload type: {type(payload).__name__}")
