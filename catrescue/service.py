from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from catrescue import errors, state_machine
from catrescue.authz import AuthorizationGate, Operation, Principal
from catrescue.domain import CatType, Report, ReportStatus, Role
from catrescue.query import ReportQuery
from catrescue.security import AuthContext, redact_sensitive
from catrescue.timestamps import utcnow

logger = logging.getLogger(__name__)

STATUS_OPERATIONS: dict[Operation, ReportStatus] = {
    Operation(name): target for name, target in state_machine.TRANSITION_OPERATIONS.items()
}

# Status changes that only the report owner may request.
OWNER_ONLY_OPERATIONS: frozenset[Operation] = frozenset({Operation.CANCEL, Operation.UPDATE_REPORT})


class ReportsRepository(Protocol):
    def create(self, *, report: Report) -> Report: ...

    def get(self, *, report_id: str) -> Report | None: ...

    def list(self, *, query: ReportQuery) -> list[Report]: ...

    def count(self, *, query: ReportQuery) -> int: ...

    def replace(self, *, report: Report, expected: Report) -> Report: ...


@dataclass
class IdempotencyRecord:
    fingerprint: str
    # None while the first request is still running.
    data: dict[str, Any] | None = None


class ReportService:
    def __init__(
        self,
        *,
        repository: ReportsRepository,
        gate: AuthorizationGate,
        clock: Callable[[], datetime] = utcnow,
        idempotency_capacity: int = 1024,
    ) -> None:
        if idempotency_capacity < 1:
            raise ValueError("idempotency_capacity must be positive")
        self.repository = repository
        self.gate = gate
        self._clock = clock
        self._idempotency_capacity = idempotency_capacity
        self._idempotency_records: OrderedDict[tuple[str, str], IdempotencyRecord] = OrderedDict()
        self._idempotency_lock = threading.Lock()

    @staticmethod
    def _fingerprint(payload: Mapping[str, Any]) -> str:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)

    def _load(self, report_id: str) -> Report:
        report = self.repository.get(report_id=report_id)
        if report is None:
            raise errors.report_not_found(report_id)
        return report

    @staticmethod
    def _require_owner(principal: Principal, report: Report, operation: Operation) -> None:
        if report.owner_id != principal.subject:
            verb = "edit" if operation == Operation.UPDATE_REPORT else operation.value
            raise errors.permission_denied(f"You can only {verb} your own reports")

    def get_user_role(self, auth_ctx: AuthContext | None) -> Role:
        return self.gate.authorize(Operation.GET_USER_ROLE, auth_ctx).role

    @staticmethod
    def _idempotency_error(code: str, message: str, *, retryable: bool) -> errors.ApiError:
        return errors.ApiError(
            code=code,
            message=message,
            error_class="business_rule",
            retryable=retryable,
            http_status=409,
        )

    def create_report(
        self,
        auth_ctx: AuthContext | None,
        details: Mapping[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        principal = self.gate.authorize(Operation.CREATE_REPORT, auth_ctx)
        logger.info("create_report subject=%s payload=%s", principal.subject, redact_sensitive(dict(details)))

        def _execute() -> dict[str, Any]:
            report = state_machine.create_report(owner_id=principal.subject, now=self._clock(), **details)
            self.repository.create(report=report)
            logger.info("report_created id=%s owner=%s", report.id, report.owner_id)
            return {"id": report.id}

        if not idempotency_key:
            return _execute()

        scope = (principal.subject, idempotency_key)
        fingerprint = self._fingerprint(details)
        with self._idempotency_lock:
            record = self._idempotency_records.get(scope)
            if record is not None:
                if record.fingerprint != fingerprint:
                    raise self._idempotency_error(
                        "IDEMPOTENCY_CONFLICT",
                        "Idempotency-Key reused with different payload",
                        retryable=False,
                    )
                if record.data is None:
                    raise self._idempotency_error(
                        "IDEMPOTENCY_IN_PROGRESS",
                        "request with this Idempotency-Key is still running",
                        retryable=True,
                    )
                self._idempotency_records.move_to_end(scope)
                return dict(record.data)
            self._idempotency_records[scope] = IdempotencyRecord(fingerprint=fingerprint)

        # The store write runs outside the lock; the pending record blocks concurrent replays.
        try:
            data = _execute()
        except Exception:
            with self._idempotency_lock:
                self._idempotency_records.pop(scope, None)
            raise

        with self._idempotency_lock:
            self._idempotency_records[scope] = IdempotencyRecord(fingerprint=fingerprint, data=data)
            while len(self._idempotency_records) > self._idempotency_capacity:
                evicted, _ = self._idempotency_records.popitem(last=False)
                logger.debug("idempotency_record_evicted subject=%s key=%s", *evicted)
        return dict(data)

    def list_my_reports(self, auth_ctx: AuthContext | None) -> list[Report]:
        principal = self.gate.authorize(Operation.LIST_MY_REPORTS, auth_ctx)
        reports = self.repository.list(query=ReportQuery.for_owner(principal.subject))
        logger.info("list_my_reports subject=%s count=%s", principal.subject, len(reports))
        return reports

    def count_my_reports(self, auth_ctx: AuthContext | None) -> int:
        principal = self.gate.authorize(Operation.COUNT_MY_REPORTS, auth_ctx)
        return self.repository.count(query=ReportQuery(owner_id=principal.subject))

    def list_reports(
        self,
        auth_ctx: AuthContext | None,
        *,
        status: ReportStatus | None = None,
        type: CatType | None = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> list[Report]:
        principal = self.gate.authorize(Operation.LIST_REPORTS, auth_ctx)
        try:
            query = ReportQuery(status=status, type=type, sort_by=sort_by, sort_order=sort_order)  # type: ignore[arg-type]
        except ValueError as exc:
            raise errors.validation_failed(str(exc)) from None
        reports = self.repository.list(query=query)
        logger.info(
            "list_reports subject=%s status=%s type=%s sort=%s:%s count=%s",
            principal.subject,
            status.value if status else None,
            type.value if type else None,
            sort_by,
            sort_order,
            len(reports),
        )
        return reports

    def count_all_reports(
        self,
        auth_ctx: AuthContext | None,
        *,
        status: ReportStatus | None = None,
        type: CatType | None = None,
    ) -> int:
        self.gate.authorize(Operation.COUNT_ALL_REPORTS, auth_ctx)
        return self.repository.count(query=ReportQuery(status=status, type=type))

    def update_report(
        self,
        auth_ctx: AuthContext | None,
        *,
        report_id: str,
        changes: Mapping[str, Any],
    ) -> Report:
        principal = self.gate.authorize(Operation.UPDATE_REPORT, auth_ctx)
        snapshot = self._load(report_id)
        self._require_owner(principal, snapshot, Operation.UPDATE_REPORT)
        updated = state_machine.update_details(snapshot, changes, now=self._clock())
        self.repository.replace(report=updated, expected=snapshot)
        logger.info("report_updated id=%s fields=%s", report_id, sorted(changes))
        return updated

    def change_status(
        self,
        auth_ctx: AuthContext | None,
        *,
        operation: Operation,
        report_id: str,
        remark: str,
    ) -> Report:
        target = STATUS_OPERATIONS.get(operation)
        if target is None:
            raise ValueError(f"{operation.value} is not a status-changing operation")
        principal = self.gate.authorize(operation, auth_ctx)
        snapshot = self._load(report_id)
        if operation in OWNER_ONLY_OPERATIONS:
            self._require_owner(principal, snapshot, operation)
        updated = state_machine.transition(
            snapshot,
            target,
            changed_by=principal.subject,
            remark=remark,
            now=self._clock(),
        )
        self.repository.replace(report=updated, expected=snapshot)
        logger.info(
            "report_status_changed id=%s from=%s to=%s by=%s",
            report_id,
            snapshot.status.value,
            updated.status.value,
            principal.subject,
        )
        return updated
