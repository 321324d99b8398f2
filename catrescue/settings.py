from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from catrescue.db.postgres import PostgresTxRunner
from catrescue.domain import Role
from catrescue.repositories.reports import (
    InMemoryReportsRepository,
    PostgresReportsRepository,
    SqliteReportsRepository,
)

STORE_BACKENDS = ("memory", "sqlite", "postgres")


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_role_overrides(raw: str) -> dict[str, Role]:
    """Parse ``alice@example.org=admin,bob@example.org=rescuer``."""
    overrides: dict[str, Role] = {}
    for item in (x.strip() for x in raw.split(",")):
        if not item:
            continue
        email, sep, role = item.partition("=")
        if not sep or not email.strip():
            raise ValueError(f"invalid ROLE_OVERRIDES entry: {item!r}")
        try:
            overrides[email.strip().lower()] = Role(role.strip())
        except ValueError:
            raise ValueError(f"unknown role in ROLE_OVERRIDES: {role.strip()!r}") from None
    return overrides


@dataclass
class AppSettings:
    store_backend: str = "memory"
    sqlite_path: str = ".local/catrescue.sqlite3"
    postgres_dsn: str = ""
    reports_table: str = "reports"
    require_durable_store: bool = False
    role_claim: str = "role"
    role_overrides: dict[str, Role] = field(default_factory=dict)
    cors_origins: list[str] = field(default_factory=list)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppSettings":
        env = os.environ if environ is None else environ
        backend = env.get("CATRESCUE_STORE_BACKEND", "memory").strip().lower() or "memory"
        if backend not in STORE_BACKENDS:
            raise ValueError(f"CATRESCUE_STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}")
        cors_raw = env.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
        return cls(
            store_backend=backend,
            sqlite_path=env.get("CATRESCUE_STORE_SQLITE_PATH", ".local/catrescue.sqlite3"),
            postgres_dsn=env.get("POSTGRES_DSN", "").strip(),
            reports_table=env.get("CATRESCUE_REPORTS_TABLE", "reports").strip() or "reports",
            require_durable_store=_as_bool(env.get("CATRESCUE_REQUIRE_DURABLE_STORE", "false")),
            role_claim=env.get("JWT_ROLE_CLAIM", "role").strip() or "role",
            role_overrides=parse_role_overrides(env.get("ROLE_OVERRIDES", "")),
            cors_origins=[x.strip() for x in cors_raw.split(",") if x.strip()],
            log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )


def create_reports_repository(
    settings: AppSettings,
) -> InMemoryReportsRepository | SqliteReportsRepository | PostgresReportsRepository:
    if settings.require_durable_store and settings.store_backend == "memory":
        raise RuntimeError("CATRESCUE_STORE_BACKEND must be sqlite or postgres when a durable store is required")
    if settings.store_backend == "sqlite":
        return SqliteReportsRepository(settings.sqlite_path, table_name=settings.reports_table)
    if settings.store_backend == "postgres":
        if not settings.postgres_dsn:
            raise ValueError("POSTGRES_DSN must be set when CATRESCUE_STORE_BACKEND=postgres")
        repo = PostgresReportsRepository(
            tx_runner=PostgresTxRunner(settings.postgres_dsn),
            table_name=settings.reports_table,
        )
        repo.ensure_schema()
        return repo
    return InMemoryReportsRepository()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
