"""
Pydantic schemas for stored rule set records.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SCHEMA_VERSION = 1


class RuleSetRecord(BaseModel):
    """Envelope stored for each model."""

    model_config = ConfigDict(protected_namespaces=())

    model_id: str = Field(..., min_length=1)
    schema_version: int = Field(default=SCHEMA_VERSION)
    active_version: int = Field(default=0, ge=0)
    state: str
    payload: Dict[str, Any]
    saved_at: Optional[datetime] = None

    @field_validator("schema_version")
    @classmethod
    def validate_schema_version(cls, v):
        if v != SCHEMA_VERSION:
            raise ValueError(f"Unsupported rule set schema version {v}")
        return v

    @field_validator("payload")
    @classmethod
    def validate_payload(cls, v):
        slots = v.get("slots")
        if not isinstance(slots, list) or len(slots) != 2:
            raise ValueError("payload must contain exactly two rule set slots")
        if v.get("active_index") not in (0, 1):
            raise ValueError("payload active_index must be 0 or 1")
        if slots[v["active_index"]] is None:
            raise ValueError("active rule set slot is empty")
        return v


class AppliedPatchSummary(BaseModel):
    """Flat view of an applied patch for listings."""

    id: str
    patch_type: str
    priority: str
    applied_at: datetime
    rolled_back_at: Optional[datetime] = None


def summarize_log(payload: Dict[str, Any]) -> List[AppliedPatchSummary]:
    return [AppliedPatchSummary.model_validate(entry) for entry in payload.get("log", [])]
