"""Host-injected data models (immediate context and precomputed payload)."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class DataTier(StrEnum):
    """Acquisition tier that served a value."""

    IMMEDIATE = "immediate"
    ENHANCED = "enhanced"
    DYNAMIC = "dynamic"
    FALLBACK = "fallback"


# Higher wins when two candidates are equally fresh.
TIER_SPECIFICITY: dict[DataTier, int] = {
    DataTier.FALLBACK: 0,
    DataTier.IMMEDIATE: 1,
    DataTier.ENHANCED: 2,
    DataTier.DYNAMIC: 3,
}

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})


def _as_utc(value: datetime) -> datetime:
    """Read offset-less host timestamps as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class HostModel(BaseModel):
    """Base model for host-injected payloads."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class HostContext(HostModel):
    """Tier 1 identity and capability snapshot injected by the host."""

    user_id: str = Field(
        default="",
        alias="userId",
        validation_alias=AliasChoices("userId", "user_id", "sys_id"),
    )
    user_name: str = Field(
        default="",
        alias="userName",
        validation_alias=AliasChoices("userName", "user_name"),
    )
    display_name: str = Field(
        default="User",
        alias="displayName",
        validation_alias=AliasChoices("displayName", "display_name"),
    )
    roles: tuple[str, ...] = ()
    is_admin: bool = Field(
        default=False,
        alias="isAdmin",
        validation_alias=AliasChoices("isAdmin", "is_admin", "has_admin_role"),
    )
    can_export: bool = Field(
        default=False,
        alias="canExport",
        validation_alias=AliasChoices("canExport", "can_export"),
    )
    can_bulk_update: bool = Field(
        default=False,
        alias="canBulkUpdate",
        validation_alias=AliasChoices("canBulkUpdate", "can_bulk_update"),
    )
    max_export_records: int = Field(
        default=1000,
        alias="maxExportRecords",
        validation_alias=AliasChoices("maxExportRecords", "max_export_records"),
    )
    captured_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=UTC),
        alias="capturedAt",
        validation_alias=AliasChoices("capturedAt", "captured_at", "injectionTime"),
    )
    provenance: DataTier = DataTier.IMMEDIATE

    @field_validator("is_admin", "can_export", "can_bulk_update", mode="before")
    @classmethod
    def parse_flag(cls, value: object) -> object:
        """Hosts often inject flags as strings."""

        if isinstance(value, str):
            return value.strip().lower() in _TRUE_STRINGS
        return value

    @field_validator("roles", mode="before")
    @classmethod
    def parse_roles(cls, value: object) -> object:
        """Support comma-separated role lists."""

        if isinstance(value, str):
            return tuple(item.strip() for item in value.split(",") if item.strip())
        return value

    @field_validator("captured_at")
    @classmethod
    def normalize_captured_at(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @classmethod
    def fallback(cls) -> HostContext:
        """Documented stand-in used when the host never injected a context."""

        return cls(provenance=DataTier.FALLBACK)

    def has_role(self, role: str) -> bool:
        """Return role membership."""

        return self.is_admin or role in self.roles


class EnhancedPayload(HostModel):
    """Tier 2 server-precomputed aggregates delivered alongside the host context."""

    counts: dict[str, int] = Field(default_factory=dict)
    rates: dict[str, float] = Field(default_factory=dict)
    recent_activity: list[dict[str, Any]] = Field(
        default_factory=list,
        alias="recentActivity",
        validation_alias=AliasChoices("recentActivity", "recent_activity"),
    )
    calculated_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=UTC),
        alias="calculatedAt",
        validation_alias=AliasChoices("calculatedAt", "calculated_at"),
    )
    source: str = "server"

    @field_validator("counts", mode="before")
    @classmethod
    def parse_counts(cls, value: object) -> object:
        """Precomputed counts arrive as numeric strings from some hosts."""

        if not isinstance(value, dict):
            return value
        parsed: dict[str, object] = {}
        for key, raw in value.items():
            if isinstance(raw, str):
                stripped = raw.strip()
                parsed[str(key)] = int(stripped) if stripped else 0
            else:
                parsed[str(key)] = raw
        return parsed

    @field_validator("calculated_at")
    @classmethod
    def normalize_calculated_at(cls, value: datetime) -> datetime:
        return _as_utc(value)


__all__ = [
    "DataTier",
    "EnhancedPayload",
    "HostContext",
    "HostModel",
    "TIER_SPECIFICITY",
]
