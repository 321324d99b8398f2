from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from catrescue import errors

logger = logging.getLogger(__name__)


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


class PostgresTxRunner:
    """Run callback logic in one PostgreSQL transaction."""

    def __init__(self, dsn: str) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn.strip()

    def run_in_tx(self, *, fn: Callable[[Any], Any]) -> Any:
        psycopg = _import_psycopg()
        try:
            with psycopg.connect(self._dsn) as conn:
                result = fn(conn)
                conn.commit()
                return result
        except psycopg.Error as exc:
            logger.error("postgres_tx_failed error=%s", type(exc).__name__)
            raise errors.internal_error("document store unavailable") from exc
