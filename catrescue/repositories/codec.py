"""Conversion between Report values and store records.

Records are plain JSON-safe dicts in the store's own field names; timestamps
use the ``{"seconds", "nanoseconds"}`` representation.
"""

from __future__ import annotations

import logging
from typing import Any

from catrescue import errors
from catrescue.domain import CatType, Location, Report, ReportStatus, StatusChange
from catrescue.state_machine import history_is_consistent
from catrescue.timestamps import from_store, to_store

logger = logging.getLogger(__name__)


def report_to_record(report: Report) -> dict[str, Any]:
    return {
        "id": report.id,
        "uid": report.owner_id,
        "numberOfCats": report.number_of_cats,
        "type": report.type.value,
        "contactPhone": report.contact_phone,
        "description": report.description,
        "images": list(report.images),
        "location": {
            "lat": report.location.lat,
            "long": report.location.long,
            "description": report.location.description,
        },
        "status": report.status.value,
        "createdAt": to_store(report.created_at),
        "updatedAt": to_store(report.updated_at),
        "statusHistory": [
            {
                "from": entry.from_status.value,
                "to": entry.to_status.value,
                "changedAt": to_store(entry.changed_at),
                "changedBy": entry.changed_by,
                "remark": entry.remark,
            }
            for entry in report.status_history
        ],
    }


def report_from_record(record: dict[str, Any]) -> Report:
    try:
        location_raw = record.get("location") or {}
        report = Report(
            id=str(record["id"]),
            owner_id=str(record["uid"]),
            number_of_cats=int(record.get("numberOfCats") or 0),
            type=CatType(record.get("type") or CatType.STRAY.value),
            contact_phone=str(record.get("contactPhone") or ""),
            description=record.get("description"),
            images=tuple(str(x) for x in record.get("images") or []),
            location=Location(
                lat=float(location_raw.get("lat", 0)),
                long=float(location_raw.get("long", 0)),
                description=str(location_raw.get("description") or ""),
            ),
            status=ReportStatus(record.get("status") or ReportStatus.PENDING.value),
            created_at=from_store(record["createdAt"]),
            updated_at=from_store(record["updatedAt"]),
            status_history=tuple(
                StatusChange(
                    from_status=ReportStatus(entry["from"]),
                    to_status=ReportStatus(entry["to"]),
                    changed_at=from_store(entry["changedAt"]),
                    changed_by=str(entry.get("changedBy") or ""),
                    remark=str(entry.get("remark") or ""),
                )
                for entry in record.get("statusHistory") or []
            ),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise errors.internal_error(f"stored report record is malformed: {exc}") from exc
    if not history_is_consistent(report):
        logger.warning("report_history_inconsistent id=%s status=%s", report.id, report.status.value)
    return report
