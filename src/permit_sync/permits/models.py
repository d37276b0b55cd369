"""Permit data models."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

# Upstream feed vocabulary (upper-case, string-valued, any key may be absent).
RAW_FIELDS: Tuple[str, ...] = (
    "PERMIT_NUM",
    "REVISION_NUM",
    "PERMIT_TYPE",
    "STRUCTURE_TYPE",
    "WORK",
    "STREET_NUM",
    "STREET_NAME",
    "STREET_TYPE",
    "STREET_DIRECTION",
    "CITY",
    "POSTAL",
    "GEO_ID",
    "BUILDING_TYPE",
    "CATEGORY",
    "APPLICATION_DATE",
    "ISSUED_DATE",
    "COMPLETED_DATE",
    "STATUS",
    "DESCRIPTION",
    "EST_CONST_COST",
    "BUILDER_NAME",
    "OWNER",
    "DWELLING_UNITS_CREATED",
    "DWELLING_UNITS_LOST",
    "WARD",
    "WARD_GRID",
    "COUNCIL_DISTRICT",
    "CURRENT_USE",
    "PROPOSED_USE",
    "HOUSING_UNITS",
    "STOREYS",
)

RawPermitRecord = Mapping[str, Any]

NaturalKey = Tuple[str, str]

# Columns maintained by the store, never part of permit content.
BOOKKEEPING_FIELDS = frozenset({"data_hash", "first_seen_at", "last_seen_at"})


class CanonicalPermit(BaseModel):
    """Typed permit revision; (permit_num, revision_num) is the natural key."""

    model_config = ConfigDict(extra="ignore")

    permit_num: str
    revision_num: str
    permit_type: Optional[str] = None
    structure_type: Optional[str] = None
    work: Optional[str] = None
    street_num: Optional[str] = None
    street_name: Optional[str] = None
    street_type: Optional[str] = None
    street_direction: Optional[str] = None
    city: Optional[str] = None
    postal: Optional[str] = None
    geo_id: Optional[str] = None
    building_type: Optional[str] = None
    category: Optional[str] = None
    application_date: Optional[datetime] = None
    issued_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    status: Optional[str] = None
    description: Optional[str] = None
    est_const_cost: Optional[float] = None
    builder_name: Optional[str] = None
    owner: Optional[str] = None
    dwelling_units_created: int = 0
    dwelling_units_lost: int = 0
    ward: Optional[str] = None
    council_district: Optional[str] = None
    current_use: Optional[str] = None
    proposed_use: Optional[str] = None
    housing_units: int = 0
    storeys: int = 0

    @property
    def key(self) -> NaturalKey:
        return (self.permit_num, self.revision_num)


PERMIT_FIELDS: Tuple[str, ...] = tuple(CanonicalPermit.model_fields)


class SyncStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PermitChange:
    """One changed field of one permit revision."""

    permit_num: str
    revision_num: str
    field_name: str
    old_value: Optional[str]
    new_value: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncStats:
    total: int = 0
    new_count: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0


@dataclass
class SyncRun:
    id: Optional[int] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    status: SyncStatus = SyncStatus.PENDING
    records_total: int = 0
    records_new: int = 0
    records_updated: int = 0
    records_unchanged: int = 0
    records_errors: int = 0
    error_message: Optional[str] = None
    snapshot_path: Optional[str] = None
    duration_ms: Optional[int] = None

    @property
    def is_final(self) -> bool:
        return self.status in (SyncStatus.COMPLETED, SyncStatus.FAILED)

    def apply_stats(self, stats: SyncStats) -> None:
        """Fold one batch worth of counters into the run."""

        if self.is_final:
            raise RuntimeError(f"sync run {self.id} is already {self.status}")
        self.records_total += stats.total
        self.records_new += stats.new_count
        self.records_updated += stats.updated
        self.records_unchanged += stats.unchanged
        self.records_errors += stats.errors

    def counters_balanced(self) -> bool:
        return (
            self.records_new
            + self.records_updated
            + self.records_unchanged
            + self.records_errors
            == self.records_total
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = str(self.status)
        return data
