from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from catrescue.authz import AuthorizationGate, ClaimsRoleResolver, RoleResolver, validate_operation_policies
from catrescue.errors import ApiError
from catrescue.routes import reports as reports_routes
from catrescue.routes._deps import error_response, request_id_from_request, trace_id_from_request
from catrescue.schemas import success_envelope
from catrescue.security import JwtSecurityConfig, parse_and_validate_bearer_token
from catrescue.service import ReportService, ReportsRepository
from catrescue.settings import AppSettings, create_reports_repository
from catrescue.timestamps import utcnow

logger = logging.getLogger(__name__)

_SECURITY_CODES = {"AUTH_UNAUTHORIZED", "AUTH_FORBIDDEN"}
_PUBLIC_PATHS = {"/api/v1/health"}


def create_app(
    *,
    settings: AppSettings | None = None,
    repository: ReportsRepository | None = None,
    role_resolver: RoleResolver | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    validate_operation_policies()
    settings = settings or AppSettings.from_env()
    security_cfg = JwtSecurityConfig.from_env()
    if repository is None:
        repository = create_reports_repository(settings)
    if role_resolver is None:
        role_resolver = ClaimsRoleResolver(overrides=settings.role_overrides, role_claim=settings.role_claim)

    app = FastAPI(title="Cat Rescue Reports API", version="0.1.0")
    app.state.settings = settings
    app.state.security_cfg = security_cfg
    app.state.report_service = ReportService(
        repository=repository,
        gate=AuthorizationGate(role_resolver=role_resolver),
        clock=clock,
    )
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _log_blocked(request: Request, exc: ApiError) -> None:
        logger.warning(
            "security_blocked code=%s path=%s trace_id=%s detail=%s",
            exc.code,
            request.url.path,
            trace_id_from_request(request),
            exc.message,
        )

    @app.middleware("http")
    async def authenticate_and_trace(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        request.state.auth_ctx = None
        path = request.url.path
        try:
            authorization = request.headers.get("Authorization")
            if path.startswith("/api/v1/") and path not in _PUBLIC_PATHS and authorization:
                request.state.auth_ctx = parse_and_validate_bearer_token(
                    authorization=authorization,
                    cfg=security_cfg,
                )
            response = await call_next(request)
        except ApiError as exc:
            _log_blocked(request, exc)
            response = error_response(
                request,
                code=exc.code,
                message=exc.message,
                error_class=exc.error_class,
                retryable=exc.retryable,
                status_code=exc.http_status,
                details=exc.details,
            )
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.code in _SECURITY_CODES:
            _log_blocked(request, exc)
        elif exc.http_status >= 500:
            logger.error("request_failed code=%s path=%s message=%s", exc.code, request.url.path, exc.message)
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
            details=exc.details,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        problems = [
            {
                "loc": [str(x) for x in err.get("loc", ())],
                "msg": str(err.get("msg", "")),
                "type": str(err.get("type", "")),
            }
            for err in exc.errors()
        ]
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
            details={"errors": problems},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    @app.get("/api/v1/health")
    def health_api(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    app.include_router(reports_routes.router)
    return app


app = create_app()
