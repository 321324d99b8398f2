from __future__ import annotations

from typing import Any


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status
        self.details = details


def unauthenticated(message: str = "authentication required") -> ApiError:
    return ApiError(
        code="AUTH_UNAUTHORIZED",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=401,
    )


def permission_denied(message: str, *, required_roles: list[str] | None = None) -> ApiError:
    details = {"required_roles": required_roles} if required_roles is not None else None
    return ApiError(
        code="AUTH_FORBIDDEN",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=403,
        details=details,
    )


def invalid_transition(current: str, attempted: str, message: str | None = None) -> ApiError:
    return ApiError(
        code="REPORT_STATUS_TRANSITION_INVALID",
        message=message or f"invalid transition: {current} -> {attempted}",
        error_class="business_rule",
        retryable=False,
        http_status=409,
        details={"from": current, "to": attempted},
    )


def report_not_found(report_id: str) -> ApiError:
    return ApiError(
        code="REPORT_NOT_FOUND",
        message="report not found",
        error_class="validation",
        retryable=False,
        http_status=404,
        details={"report_id": report_id},
    )


def validation_failed(message: str = "invalid payload", *, details: dict[str, Any] | None = None) -> ApiError:
    return ApiError(
        code="REQ_VALIDATION_FAILED",
        message=message,
        error_class="validation",
        retryable=False,
        http_status=400,
        details=details,
    )


def concurrent_modification(report_id: str) -> ApiError:
    return ApiError(
        code="REPORT_CONCURRENT_MODIFICATION",
        message="report was modified concurrently; re-read and retry",
        error_class="transient",
        retryable=True,
        http_status=409,
        details={"report_id": report_id},
    )


def internal_error(message: str) -> ApiError:
    return ApiError(
        code="INTERNAL_ERROR",
        message=message,
        error_class="internal",
        retryable=True,
        http_status=500,
    )
