from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from catrescue import errors
from catrescue.domain import Role
from catrescue.security import AuthContext

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    CREATE_REPORT = "createReport"
    LIST_MY_REPORTS = "listMyReports"
    LIST_REPORTS = "listReports"
    COUNT_MY_REPORTS = "countMyReports"
    COUNT_ALL_REPORTS = "countAllReports"
    UPDATE_REPORT = "updateReport"
    PUT_ON_HOLD = "putOnHold"
    RESUME = "resume"
    COMPLETE = "complete"
    CANCEL = "cancel"
    GET_USER_ROLE = "getUserRole"


@dataclass(frozen=True)
class OperationPolicy:
    allowed_roles: frozenset[Role]


_EVERYONE = frozenset({Role.REPORTER, Role.RESCUER, Role.ADMIN})
_OPERATORS = frozenset({Role.RESCUER, Role.ADMIN})

OPERATION_POLICIES: dict[Operation, OperationPolicy] = {
    Operation.CREATE_REPORT: OperationPolicy(_EVERYONE),
    Operation.LIST_MY_REPORTS: OperationPolicy(_EVERYONE),
    Operation.COUNT_MY_REPORTS: OperationPolicy(_EVERYONE),
    Operation.UPDATE_REPORT: OperationPolicy(_EVERYONE),
    Operation.CANCEL: OperationPolicy(_EVERYONE),
    Operation.GET_USER_ROLE: OperationPolicy(_EVERYONE),
    Operation.LIST_REPORTS: OperationPolicy(_OPERATORS),
    Operation.COUNT_ALL_REPORTS: OperationPolicy(_OPERATORS),
    Operation.PUT_ON_HOLD: OperationPolicy(_OPERATORS),
    Operation.RESUME: OperationPolicy(_OPERATORS),
    Operation.COMPLETE: OperationPolicy(_OPERATORS),
}


def validate_operation_policies(policies: Mapping[Operation, OperationPolicy] | None = None) -> None:
    table = OPERATION_POLICIES if policies is None else policies
    missing = [op.value for op in Operation if op not in table]
    if missing:
        raise RuntimeError(f"operations without an authorization policy: {', '.join(missing)}")
    empty = [op.value for op, policy in table.items() if not policy.allowed_roles]
    if empty:
        raise RuntimeError(f"operations with an empty role set: {', '.join(empty)}")


@dataclass(frozen=True)
class Principal:
    subject: str
    role: Role
    email: str | None = None


class RoleResolver(Protocol):
    def resolve(self, *, subject: str, email: str | None, claims: Mapping[str, Any]) -> Role: ...


class ClaimsRoleResolver:
    """Override table keyed by email first, then the role claim, then ``reporter``."""

    def __init__(self, *, overrides: Mapping[str, Role] | None = None, role_claim: str = "role") -> None:
        self._overrides = {email.strip().lower(): Role(role) for email, role in (overrides or {}).items()}
        self._role_claim = role_claim

    def resolve(self, *, subject: str, email: str | None, claims: Mapping[str, Any]) -> Role:
        if email:
            override = self._overrides.get(email.strip().lower())
            if override is not None:
                return override
        raw = claims.get(self._role_claim)
        if raw is None or raw == "":
            return Role.REPORTER
        try:
            return Role(str(raw))
        except ValueError:
            logger.warning("unknown_role_claim subject=%s value=%r; using reporter", subject, raw)
            return Role.REPORTER


class AuthorizationGate:
    def __init__(
        self,
        *,
        role_resolver: RoleResolver,
        policies: Mapping[Operation, OperationPolicy] | None = None,
    ) -> None:
        self._role_resolver = role_resolver
        self._policies = dict(OPERATION_POLICIES if policies is None else policies)
        validate_operation_policies(self._policies)

    def resolve_role(self, auth_ctx: AuthContext) -> Role:
        return self._role_resolver.resolve(
            subject=auth_ctx.subject,
            email=auth_ctx.email,
            claims=auth_ctx.claims,
        )

    def authorize(self, operation: Operation, auth_ctx: AuthContext | None) -> Principal:
        policy = self._policies[operation]
        subject = (auth_ctx.subject if auth_ctx is not None else "").strip()
        if not subject:
            raise errors.unauthenticated()

        role = self.resolve_role(auth_ctx)
        if role not in policy.allowed_roles:
            required = sorted(r.value for r in policy.allowed_roles)
            raise errors.permission_denied(
                f"{operation.value} requires one of roles: {', '.join(required)}",
                required_roles=required,
            )
        return Principal(subject=subject, role=role, email=auth_ctx.email)
