from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ReportStatus(str, Enum):
    PENDING = "pending"
    ON_HOLD = "onHold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CatType(str, Enum):
    STRAY = "stray"
    INJURED = "injured"
    SICK = "sick"
    KITTEN = "kitten"


class Role(str, Enum):
    REPORTER = "reporter"
    RESCUER = "rescuer"
    ADMIN = "admin"


TERMINAL_STATUSES: frozenset[ReportStatus] = frozenset({ReportStatus.COMPLETED, ReportStatus.CANCELLED})


@dataclass(frozen=True)
class Location:
    lat: float
    long: float
    description: str = ""


@dataclass(frozen=True)
class StatusChange:
    from_status: ReportStatus
    to_status: ReportStatus
    changed_at: datetime
    changed_by: str
    remark: str


@dataclass(frozen=True)
class Report:
    """One citizen-submitted sighting. Instances are never mutated; transitions return copies."""

    id: str
    owner_id: str
    number_of_cats: int
    type: CatType
    contact_phone: str
    location: Location
    created_at: datetime
    updated_at: datetime
    status: ReportStatus = ReportStatus.PENDING
    description: str | None = None
    images: tuple[str, ...] = ()
    status_history: tuple[StatusChange, ...] = field(default_factory=tuple)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# Fields a caller may change through updateDetails.
DETAIL_FIELDS: frozenset[str] = frozenset(
    {"number_of_cats", "type", "contact_phone", "description", "images", "location"}
)
