"""
Boundary Model Base

Upstream payloads are loosely typed JSON. Every collaborator schema derives from
BoundaryModel so that null or missing optional fields fall back to the field
default in one place instead of at each call site.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, model_validator


def ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BoundaryModel(BaseModel):
    """Base for schemas validated at the edge of an external collaborator."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        cleaned = {key: value for key, value in data.items() if value is not None}
        return cls._prepare(cleaned)

    @classmethod
    def _prepare(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Hook for subclasses to reshape raw payloads before validation."""
        return data
