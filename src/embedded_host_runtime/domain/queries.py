"""Dynamic (tier 3) query models."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from embedded_host_runtime.domain.host_context import DataTier

_KEY_SEPARATOR = ":"


class QueryDescriptor(BaseModel):
    """Filter and pagination parameters identifying one dynamic query."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    record_type: str = Field(
        alias="recordType",
        validation_alias=AliasChoices("recordType", "record_type", "type"),
        min_length=1,
    )
    filters: dict[str, Any] = Field(default_factory=dict)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(
        default=100,
        alias="pageSize",
        validation_alias=AliasChoices("pageSize", "page_size"),
        ge=1,
    )
    fields: tuple[str, ...] = ()

    @property
    def offset(self) -> int:
        """Zero-based offset of the first record on this page."""

        return (self.page - 1) * self.page_size

    def cache_key(self) -> str:
        """Normalized key; filter ordering never changes the key."""

        canonical = json.dumps(
            {
                "filters": self.filters,
                "page": self.page,
                "pageSize": self.page_size,
                "fields": sorted(self.fields),
            },
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        return f"{self.key_prefix(self.record_type)}{canonical}"

    @staticmethod
    def key_prefix(record_type: str) -> str:
        """Prefix shared by every cache key of one record type."""

        return f"{record_type.strip()}{_KEY_SEPARATOR}"


@dataclass(slots=True, frozen=True)
class QueryPage:
    """Raw page returned by the query endpoint."""

    items: list[dict[str, Any]]
    total: int


@dataclass(slots=True, frozen=True)
class QueryResult:
    """Cached dynamic query result; replaced, never mutated, on refetch."""

    key: str
    items: list[dict[str, Any]]
    total: int
    fetched_at: datetime
    stale_after_seconds: float
    tier: DataTier = DataTier.DYNAMIC


@dataclass(slots=True, frozen=True)
class QueryStateSnapshot:
    """Last known good result plus fetch/error indicators for one key."""

    key: str
    result: QueryResult | None = None
    is_fetching: bool = False
    is_stale: bool = True
    last_error: str | None = None


@dataclass(slots=True, frozen=True)
class ServedValue:
    """A fact value together with the tier that served it."""

    name: str
    value: Any
    tier: DataTier
    as_of: datetime | None = None
    alternatives: dict[str, Any] = field(default_factory=dict)


__all__ = [
    "QueryDescriptor",
    "QueryPage",
    "QueryResult",
    "QueryStateSnapshot",
    "ServedValue",
]
