from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from catrescue.domain import CatType, Report, ReportStatus
from catrescue.timestamps import to_iso


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class LocationPayload(_CamelModel):
    lat: float = Field(allow_inf_nan=False)
    long: float = Field(allow_inf_nan=False)
    description: str = ""


class ReportDetails(_CamelModel):
    number_of_cats: int = Field(ge=0)
    type: CatType
    contact_phone: str
    description: str | None = None
    images: list[str] = Field(default_factory=list, max_length=3)
    location: LocationPayload


class CreateReportRequest(ReportDetails):
    pass


class ReportDetailsPatch(_CamelModel):
    """Partial edit: only the fields present in the request are changed."""

    number_of_cats: int | None = Field(default=None, ge=0)
    type: CatType | None = None
    contact_phone: str | None = None
    description: str | None = None
    images: list[str] | None = Field(default=None, max_length=3)
    location: LocationPayload | None = None


class UpdateReportRequest(_CamelModel):
    report_id: str = Field(min_length=1)
    data: ReportDetailsPatch


class StatusChangeRequest(_CamelModel):
    report_id: str = Field(min_length=1)
    remark: str


class ListReportsRequest(_CamelModel):
    status: ReportStatus | None = None
    type: CatType | None = None
    sort_by: Literal["createdAt", "id", "status", "type"] = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"


class CountReportsRequest(_CamelModel):
    status: ReportStatus | None = None
    type: CatType | None = None


def report_to_payload(report: Report) -> dict[str, Any]:
    return {
        "id": report.id,
        "ownerId": report.owner_id,
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
        "createdAt": to_iso(report.created_at),
        "updatedAt": to_iso(report.updated_at),
        "statusHistory": [
            {
                "from": entry.from_status.value,
                "to": entry.to_status.value,
                "changedAt": to_iso(entry.changed_at),
                "changedBy": entry.changed_by,
                "remark": entry.remark,
            }
            for entry in report.status_history
        ],
    }


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
