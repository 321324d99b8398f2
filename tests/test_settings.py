from __future__ import annotations

import pytest

from catrescue.domain import Role
from catrescue.repositories import InMemoryReportsRepository, SqliteReportsRepository
from catrescue.settings import AppSettings, create_reports_repository, parse_role_overrides


def test_parse_role_overrides_normalizes_emails():
    overrides = parse_role_overrides(" Boss@Example.org=admin , ops@example.org=rescuer,, ")
    assert overrides == {"boss@example.org": Role.ADMIN, "ops@example.org": Role.RESCUER}


@pytest.mark.parametrize("raw", ["boss@example.org", "=admin", "boss@example.org=overlord"])
def test_parse_role_overrides_rejects_bad_entries(raw):
    with pytest.raises(ValueError):
        parse_role_overrides(raw)


def test_settings_defaults_without_environment():
    settings = AppSettings.from_env({})
    assert settings.store_backend == "memory"
    assert settings.reports_table == "reports"
    assert settings.require_durable_store is False
    assert settings.role_claim == "role"
    assert settings.role_overrides == {}
    assert settings.log_level == "INFO"


def test_settings_read_environment():
    settings = AppSettings.from_env(
        {
            "CATRESCUE_STORE_BACKEND": "SQLite",
            "CATRESCUE_STORE_SQLITE_PATH": "/tmp/cats.db",
            "CATRESCUE_REQUIRE_DURABLE_STORE": "true",
            "JWT_ROLE_CLAIM": "app_role",
            "ROLE_OVERRIDES": "a@example.org=admin",
            "CORS_ALLOW_ORIGINS": "https://cats.example.org",
            "LOG_LEVEL": "debug",
        }
    )
    assert settings.store_backend == "sqlite"
    assert settings.sqlite_path == "/tmp/cats.db"
    assert settings.require_durable_store is True
    assert settings.role_claim == "app_role"
    assert settings.role_overrides == {"a@example.org": Role.ADMIN}
    assert settings.cors_origins == ["https://cats.example.org"]
    assert settings.log_level == "DEBUG"


def test_settings_reject_unknown_backend():
    with pytest.raises(ValueError, match="CATRESCUE_STORE_BACKEND"):
        AppSettings.from_env({"CATRESCUE_STORE_BACKEND": "redis"})


def test_repository_factory_builds_configured_backend(tmp_path):
    assert isinstance(create_reports_repository(AppSettings()), InMemoryReportsRepository)
    sqlite_settings = AppSettings(store_backend="sqlite", sqlite_path=str(tmp_path / "r.sqlite3"))
    assert isinstance(create_reports_repository(sqlite_settings), SqliteReportsRepository)


def test_repository_factory_refuses_memory_when_durable_store_required():
    with pytest.raises(RuntimeError, match="durable store"):
        create_reports_repository(AppSettings(require_durable_store=True))


def test_repository_factory_requires_postgres_dsn():
    with pytest.raises(ValueError, match="POSTGRES_DSN"):
        create_reports_repository(AppSettings(store_backend="postgres"))
