from __future__ import annotations

import dataclasses
import math
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from catrescue import errors
from catrescue.domain import (
    DETAIL_FIELDS,
    TERMINAL_STATUSES,
    CatType,
    Location,
    Report,
    ReportStatus,
    StatusChange,
)
from catrescue.timestamps import advance, ensure_utc, utcnow

ALLOWED_TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    ReportStatus.PENDING: frozenset({ReportStatus.ON_HOLD, ReportStatus.COMPLETED, ReportStatus.CANCELLED}),
    ReportStatus.ON_HOLD: frozenset({ReportStatus.PENDING}),
    ReportStatus.COMPLETED: frozenset(),
    ReportStatus.CANCELLED: frozenset(),
}

# Status-changing operation name -> target status.
TRANSITION_OPERATIONS: dict[str, ReportStatus] = {
    "putOnHold": ReportStatus.ON_HOLD,
    "resume": ReportStatus.PENDING,
    "complete": ReportStatus.COMPLETED,
    "cancel": ReportStatus.CANCELLED,
}


def new_report_id() -> str:
    return f"rpt_{uuid.uuid4().hex[:16]}"


def can_transition(current: ReportStatus, target: ReportStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def allowed_targets(current: ReportStatus) -> frozenset[ReportStatus]:
    return ALLOWED_TRANSITIONS.get(current, frozenset())


def is_terminal(status: ReportStatus) -> bool:
    return status in TERMINAL_STATUSES


def history_is_consistent(report: Report) -> bool:
    """Check that the audit trail forms a contiguous chain ending at the current status."""
    history = report.status_history
    if not history:
        return report.status == ReportStatus.PENDING
    if history[0].from_status != ReportStatus.PENDING:
        return False
    for prev, nxt in zip(history, history[1:]):
        if prev.to_status != nxt.from_status:
            return False
    return history[-1].to_status == report.status


def _coerce_location(value: Any) -> Location:
    if isinstance(value, Location):
        return value
    if isinstance(value, Mapping):
        try:
            lat = float(value["lat"])
            long = float(value["long"])
        except (KeyError, TypeError, ValueError):
            raise errors.validation_failed("location requires numeric lat and long") from None
        if not (math.isfinite(lat) and math.isfinite(long)):
            raise errors.validation_failed("location lat and long must be finite numbers")
        return Location(lat=lat, long=long, description=str(value.get("description") or ""))
    raise errors.validation_failed("location must be an object")


def _coerce_cat_type(value: Any) -> CatType:
    try:
        return CatType(value)
    except ValueError:
        raise errors.validation_failed(f"unknown cat type: {value}") from None


def _coerce_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise errors.validation_failed("numberOfCats must be a non-negative integer")
    return value


def _coerce_images(value: Iterable[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    return tuple(str(x) for x in value)


def create_report(
    *,
    owner_id: str,
    number_of_cats: int,
    type: CatType | str,
    contact_phone: str,
    location: Location | Mapping[str, Any],
    description: str | None = None,
    images: Iterable[str] | None = None,
    report_id: str | None = None,
    now: datetime | None = None,
) -> Report:
    if not owner_id.strip():
        raise errors.unauthenticated("report owner is required")
    timestamp = ensure_utc(now or utcnow())
    return Report(
        id=report_id or new_report_id(),
        owner_id=owner_id,
        number_of_cats=_coerce_count(number_of_cats),
        type=_coerce_cat_type(type),
        contact_phone=contact_phone,
        description=description,
        images=_coerce_images(images),
        location=_coerce_location(location),
        status=ReportStatus.PENDING,
        created_at=timestamp,
        updated_at=timestamp,
        status_history=(),
    )


def transition(
    report: Report,
    target: ReportStatus,
    *,
    changed_by: str,
    remark: str,
    now: datetime | None = None,
) -> Report:
    if not can_transition(report.status, target):
        raise errors.invalid_transition(report.status.value, target.value)
    changed_at = advance(report.updated_at, now or utcnow())
    entry = StatusChange(
        from_status=report.status,
        to_status=target,
        changed_at=changed_at,
        changed_by=changed_by,
        remark=remark,
    )
    return dataclasses.replace(
        report,
        status=target,
        updated_at=changed_at,
        status_history=report.status_history + (entry,),
    )


def put_on_hold(report: Report, *, changed_by: str, remark: str, now: datetime | None = None) -> Report:
    return transition(report, ReportStatus.ON_HOLD, changed_by=changed_by, remark=remark, now=now)


def resume(report: Report, *, changed_by: str, remark: str, now: datetime | None = None) -> Report:
    return transition(report, ReportStatus.PENDING, changed_by=changed_by, remark=remark, now=now)


def complete(report: Report, *, changed_by: str, remark: str, now: datetime | None = None) -> Report:
    return transition(report, ReportStatus.COMPLETED, changed_by=changed_by, remark=remark, now=now)


def cancel(report: Report, *, changed_by: str, remark: str, now: datetime | None = None) -> Report:
    return transition(report, ReportStatus.CANCELLED, changed_by=changed_by, remark=remark, now=now)


def update_details(
    report: Report,
    changes: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> Report:
    unknown = sorted(set(changes) - DETAIL_FIELDS)
    if unknown:
        raise errors.validation_failed(
            "only report details can be updated",
            details={"fields": unknown},
        )
    if not changes:
        raise errors.validation_failed("no report details to update")
    if report.is_terminal:
        raise errors.invalid_transition(
            report.status.value,
            report.status.value,
            message="cannot edit reports that are completed or cancelled",
        )

    normalized: dict[str, Any] = {}
    for name, value in changes.items():
        if name == "number_of_cats":
            normalized[name] = _coerce_count(value)
        elif name == "type":
            normalized[name] = _coerce_cat_type(value)
        elif name == "images":
            normalized[name] = _coerce_images(value)
        elif name == "location":
            normalized[name] = _coerce_location(value)
        elif name == "contact_phone":
            if value is None:
                raise errors.validation_failed("contactPhone cannot be cleared")
            normalized[name] = str(value)
        else:
            normalized[name] = None if value is None else str(value)
    return dataclasses.replace(
        report,
        updated_at=advance(report.updated_at, now or utcnow()),
        **normalized,
    )
