from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

import jwt

from catrescue import errors


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _split_csv(raw: str) -> list[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


_SENSITIVE_KEYS = {
    "authorization",
    "token",
    "secret",
    "password",
    "api_key",
    "apikey",
    "access_token",
    "contactphone",
    "contact_phone",
    "phone",
}


def redact_sensitive(value: object) -> object:
    if isinstance(value, dict):
        redacted: dict[str, object] = {}
        for key, item in value.items():
            if str(key).lower() in _SENSITIVE_KEYS:
                redacted[str(key)] = "***REDACTED***"
            else:
                redacted[str(key)] = redact_sensitive(item)
        return redacted
    if isinstance(value, list | tuple):
        return [redact_sensitive(x) for x in value]
    if isinstance(value, str):
        if len(value) >= 24 and any(k in value.lower() for k in ("bearer ", "token", "eyj")):
            return "***REDACTED***"
    return value


@dataclass
class AuthContext:
    subject: str
    email: str | None
    claims: dict[str, Any]


@dataclass
class JwtSecurityConfig:
    issuer: str
    audience: str
    shared_secret: str
    required_claims: list[str]
    email_claim: str
    leeway_s: int
    log_redaction_enabled: bool

    @classmethod
    def from_env(cls) -> "JwtSecurityConfig":
        raw_leeway = os.environ.get("JWT_LEEWAY_S", "0").strip() or "0"
        try:
            leeway_s = max(0, int(raw_leeway))
        except ValueError:
            raise ValueError(f"JWT_LEEWAY_S must be an integer, got {raw_leeway!r}") from None
        return cls(
            issuer=os.environ.get("JWT_ISSUER", "").strip(),
            audience=os.environ.get("JWT_AUDIENCE", "").strip(),
            shared_secret=os.environ.get("JWT_SHARED_SECRET", "").strip(),
            required_claims=_split_csv(os.environ.get("JWT_REQUIRED_CLAIMS", "sub,exp")),
            email_claim=os.environ.get("JWT_EMAIL_CLAIM", "email").strip() or "email",
            leeway_s=leeway_s,
            log_redaction_enabled=_env_bool("SECURITY_LOG_REDACTION_ENABLED", True),
        )


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise errors.unauthenticated("missing Authorization bearer token")
    prefix = "Bearer "
    if not authorization.startswith(prefix):
        raise errors.unauthenticated("invalid Authorization header")
    token = authorization[len(prefix) :].strip()
    if not token:
        raise errors.unauthenticated("empty bearer token")
    return token


def parse_and_validate_bearer_token(*, authorization: str | None, cfg: JwtSecurityConfig) -> AuthContext:
    token = _bearer_token(authorization)
    if not cfg.shared_secret:
        raise errors.unauthenticated("jwt shared secret not configured")

    options: dict[str, Any] = {"require": list(cfg.required_claims)}
    if not cfg.audience:
        options["verify_aud"] = False
    try:
        claims = jwt.decode(
            token,
            cfg.shared_secret,
            algorithms=["HS256"],
            audience=cfg.audience or None,
            issuer=cfg.issuer or None,
            leeway=cfg.leeway_s,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise errors.unauthenticated("token expired") from None
    except jwt.ImmatureSignatureError:
        raise errors.unauthenticated("token not yet valid") from None
    except jwt.InvalidIssuerError:
        raise errors.unauthenticated("jwt issuer mismatch") from None
    except jwt.InvalidAudienceError:
        raise errors.unauthenticated("jwt audience mismatch") from None
    except jwt.MissingRequiredClaimError as exc:
        raise errors.unauthenticated(f"missing required claim: {exc.claim}") from None
    except jwt.InvalidSignatureError:
        raise errors.unauthenticated("invalid token signature") from None
    except jwt.InvalidTokenError:
        raise errors.unauthenticated("invalid token") from None

    subject = str(claims.get("sub") or "").strip()
    if not subject:
        raise errors.unauthenticated("missing subject claim")
    email = str(claims.get(cfg.email_claim) or "").strip() or None
    return AuthContext(subject=subject, email=email, claims=claims)
