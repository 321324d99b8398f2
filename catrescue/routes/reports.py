from __future__ import annotations

from fastapi import APIRouter, Body, Header, Request
from fastapi.responses import JSONResponse

from catrescue.authz import Operation
from catrescue.routes._deps import auth_context_from_request, report_service, trace_id_from_request
from catrescue.schemas import (
    CountReportsRequest,
    CreateReportRequest,
    ListReportsRequest,
    StatusChangeRequest,
    UpdateReportRequest,
    report_to_payload,
    success_envelope,
)

router = APIRouter(prefix="/api/v1", tags=["reports"])


@router.post("/createReport")
def create_report(
    payload: CreateReportRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    data = report_service(request).create_report(
        auth_context_from_request(request),
        payload.model_dump(),
        idempotency_key=idempotency_key,
    )
    return JSONResponse(status_code=201, content=success_envelope(data, trace_id_from_request(request)))


@router.post("/listMyReports")
def list_my_reports(request: Request):
    reports = report_service(request).list_my_reports(auth_context_from_request(request))
    return success_envelope([report_to_payload(r) for r in reports], trace_id_from_request(request))


@router.post("/listReports")
def list_reports(request: Request, payload: ListReportsRequest | None = Body(default=None)):
    payload = payload or ListReportsRequest()
    reports = report_service(request).list_reports(
        auth_context_from_request(request),
        status=payload.status,
        type=payload.type,
        sort_by=payload.sort_by,
        sort_order=payload.sort_order,
    )
    return success_envelope([report_to_payload(r) for r in reports], trace_id_from_request(request))


@router.post("/countMyReports")
def count_my_reports(request: Request):
    count = report_service(request).count_my_reports(auth_context_from_request(request))
    return success_envelope({"count": count}, trace_id_from_request(request))


@router.post("/countAllReports")
def count_all_reports(request: Request, payload: CountReportsRequest | None = Body(default=None)):
    payload = payload or CountReportsRequest()
    count = report_service(request).count_all_reports(
        auth_context_from_request(request),
        status=payload.status,
        type=payload.type,
    )
    return success_envelope({"count": count}, trace_id_from_request(request))


@router.post("/updateReport")
def update_report(payload: UpdateReportRequest, request: Request):
    updated = report_service(request).update_report(
        auth_context_from_request(request),
        report_id=payload.report_id,
        changes=payload.data.model_dump(exclude_unset=True),
    )
    return success_envelope({"id": updated.id}, trace_id_from_request(request))


def _change_status(operation: Operation, payload: StatusChangeRequest, request: Request) -> dict:
    updated = report_service(request).change_status(
        auth_context_from_request(request),
        operation=operation,
        report_id=payload.report_id,
        remark=payload.remark,
    )
    return success_envelope(report_to_payload(updated), trace_id_from_request(request))


@router.post("/putOnHold")
def put_on_hold(payload: StatusChangeRequest, request: Request):
    return _change_status(Operation.PUT_ON_HOLD, payload, request)


@router.post("/resume")
def resume(payload: StatusChangeRequest, request: Request):
    return _change_status(Operation.RESUME, payload, request)


@router.post("/complete")
def complete(payload: StatusChangeRequest, request: Request):
    return _change_status(Operation.COMPLETE, payload, request)


@router.post("/cancel")
def cancel(payload: StatusChangeRequest, request: Request):
    return _change_status(Operation.CANCEL, payload, request)


@router.post("/getUserRole")
def get_user_role(request: Request):
    role = report_service(request).get_user_role(auth_context_from_request(request))
    return success_envelope({"role": role.value}, trace_id_from_request(request))
