from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
from contextlib import closing
from pathlib import Path
from typing import Any

from catrescue import errors
from catrescue.db.postgres import PostgresTxRunner
from catrescue.domain import CatType, Report, ReportStatus
from catrescue.query import ReportQuery, order_by_clause, run_query, where_clause
from catrescue.repositories.codec import report_from_record, report_to_record
from catrescue.timestamps import to_epoch_us

logger = logging.getLogger(__name__)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _payload_json(report: Report) -> str:
    return json.dumps(report_to_record(report), ensure_ascii=True, sort_keys=True)


def _record_matches(record: dict[str, Any], query: ReportQuery) -> bool:
    if query.owner_id is not None and record.get("uid") != query.owner_id:
        return False
    if query.status is not None and (record.get("status") or ReportStatus.PENDING.value) != query.status.value:
        return False
    if query.type is not None and (record.get("type") or CatType.STRAY.value) != query.type.value:
        return False
    return True


class InMemoryReportsRepository:
    """Dict-backed document store; writes are compare-and-set under one lock."""

    def __init__(self, records: dict[str, dict[str, Any]] | None = None) -> None:
        self._records = {} if records is None else records
        self._lock = threading.RLock()

    def create(self, *, report: Report) -> Report:
        with self._lock:
            if report.id in self._records:
                raise errors.concurrent_modification(report.id)
            self._records[report.id] = report_to_record(report)
        return report

    def get(self, *, report_id: str) -> Report | None:
        with self._lock:
            record = self._records.get(report_id)
            if record is None:
                return None
            return report_from_record(dict(record))

    def _all(self) -> list[Report]:
        with self._lock:
            records = [dict(x) for x in self._records.values()]
        return [report_from_record(x) for x in records]

    def list(self, *, query: ReportQuery) -> list[Report]:
        return run_query(self._all(), query)

    def count(self, *, query: ReportQuery) -> int:
        with self._lock:
            return sum(1 for record in self._records.values() if _record_matches(record, query))

    def replace(self, *, report: Report, expected: Report) -> Report:
        with self._lock:
            current = self._records.get(report.id)
            if current is None:
                raise errors.report_not_found(report.id)
            stored = report_from_record(dict(current))
            if stored.status != expected.status or stored.updated_at != expected.updated_at:
                raise errors.concurrent_modification(report.id)
            self._records[report.id] = report_to_record(report)
        return report

    def reset(self) -> None:
        with self._lock:
            self._records.clear()


class SqliteReportsRepository:
    """Reports table in a local SQLite file; one connection per operation."""

    def __init__(self, db_path: str, *, table_name: str = "reports") -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._table_name = _validate_identifier(table_name)
        self._lock = threading.RLock()
        self._initialize_database()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._db_path))

    def _run(self, fn: Any) -> Any:
        try:
            with self._lock, closing(self._connect()) as conn:
                with conn:
                    return fn(conn)
        except sqlite3.Error as exc:
            logger.error("sqlite_store_failed path=%s error=%s", self._db_path, exc)
            raise errors.internal_error("document store unavailable") from exc

    def _initialize_database(self) -> None:
        def _op(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table_name} (
                  report_id TEXT PRIMARY KEY,
                  owner_id TEXT NOT NULL,
                  status TEXT NOT NULL,
                  cat_type TEXT NOT NULL,
                  created_at_us INTEGER NOT NULL,
                  updated_at_us INTEGER NOT NULL,
                  payload TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {self._table_name}_owner_idx ON {self._table_name} (owner_id)"
            )

        self._run(_op)

    def create(self, *, report: Report) -> Report:
        sql = f"""
            INSERT INTO {self._table_name} (
                report_id, owner_id, status, cat_type, created_at_us, updated_at_us, payload
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """

        def _op(conn: sqlite3.Connection) -> Report:
            try:
                conn.execute(
                    sql,
                    (
                        report.id,
                        report.owner_id,
                        report.status.value,
                        report.type.value,
                        to_epoch_us(report.created_at),
                        to_epoch_us(report.updated_at),
                        _payload_json(report),
                    ),
                )
            except sqlite3.IntegrityError:
                raise errors.concurrent_modification(report.id) from None
            return report

        return self._run(_op)

    def get(self, *, report_id: str) -> Report | None:
        sql = f"SELECT payload FROM {self._table_name} WHERE report_id = ? LIMIT 1"

        def _op(conn: sqlite3.Connection) -> Report | None:
            row = conn.execute(sql, (report_id,)).fetchone()
            if row is None:
                return None
            return report_from_record(json.loads(row[0]))

        return self._run(_op)

    def list(self, *, query: ReportQuery) -> list[Report]:
        where, params = where_clause(query, placeholder="?")
        sql = f"SELECT payload FROM {self._table_name} {where} {order_by_clause(query)}"

        def _op(conn: sqlite3.Connection) -> list[Report]:
            rows = conn.execute(sql, params).fetchall()
            return [report_from_record(json.loads(row[0])) for row in rows]

        return self._run(_op)

    def count(self, *, query: ReportQuery) -> int:
        where, params = where_clause(query, placeholder="?")
        sql = f"SELECT COUNT(*) FROM {self._table_name} {where}"

        def _op(conn: sqlite3.Connection) -> int:
            row = conn.execute(sql, params).fetchone()
            return int(row[0]) if row else 0

        return self._run(_op)

    def replace(self, *, report: Report, expected: Report) -> Report:
        sql = f"""
            UPDATE {self._table_name}
            SET status = ?, cat_type = ?, updated_at_us = ?, payload = ?
            WHERE report_id = ? AND status = ? AND updated_at_us = ?
        """

        def _op(conn: sqlite3.Connection) -> Report:
            cur = conn.execute(
                sql,
                (
                    report.status.value,
                    report.type.value,
                    to_epoch_us(report.updated_at),
                    _payload_json(report),
                    report.id,
                    expected.status.value,
                    to_epoch_us(expected.updated_at),
                ),
            )
            if cur.rowcount == 1:
                return report
            exists = conn.execute(
                f"SELECT 1 FROM {self._table_name} WHERE report_id = ?",
                (report.id,),
            ).fetchone()
            if exists is None:
                raise errors.report_not_found(report.id)
            raise errors.concurrent_modification(report.id)

        return self._run(_op)

    def reset(self) -> None:
        self._run(lambda conn: conn.execute(f"DELETE FROM {self._table_name}"))


class PostgresReportsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "reports") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    def ensure_schema(self) -> None:
        sql = f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
              report_id TEXT PRIMARY KEY,
              owner_id TEXT NOT NULL,
              status TEXT NOT NULL,
              cat_type TEXT NOT NULL,
              created_at_us BIGINT NOT NULL,
              updated_at_us BIGINT NOT NULL,
              payload JSONB NOT NULL
            )
        """
        index_sql = f"CREATE INDEX IF NOT EXISTS {self._table_name}_owner_idx ON {self._table_name} (owner_id)"

        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(sql)
                cur.execute(index_sql)

        self._tx_runner.run_in_tx(fn=_op)

    @staticmethod
    def _decode(payload: Any) -> Report:
        if isinstance(payload, str):
            payload = json.loads(payload)
        if not isinstance(payload, dict):
            raise errors.internal_error("stored report payload is not an object")
        return report_from_record(payload)

    def create(self, *, report: Report) -> Report:
        sql = f"""
            INSERT INTO {self._table_name} (
                report_id, owner_id, status, cat_type, created_at_us, updated_at_us, payload
            ) VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb)
            ON CONFLICT (report_id) DO NOTHING
        """

        def _op(conn: Any) -> Report:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        report.id,
                        report.owner_id,
                        report.status.value,
                        report.type.value,
                        to_epoch_us(report.created_at),
                        to_epoch_us(report.updated_at),
                        _payload_json(report),
                    ),
                )
                if cur.rowcount == 0:
                    raise errors.concurrent_modification(report.id)
            return report

        return self._tx_runner.run_in_tx(fn=_op)

    def get(self, *, report_id: str) -> Report | None:
        sql = f"""
            SELECT payload
            FROM {self._table_name}
            WHERE report_id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> Report | None:
            with conn.cursor() as cur:
                cur.execute(sql, (report_id,))
                row = cur.fetchone()
            if row is None:
                return None
            return self._decode(row[0])

        return self._tx_runner.run_in_tx(fn=_op)

    def list(self, *, query: ReportQuery) -> list[Report]:
        where, params = where_clause(query, placeholder="%s")
        sql = f"SELECT payload FROM {self._table_name} {where} {order_by_clause(query, text_collation='C')}"

        def _op(conn: Any) -> list[Report]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall() or []
            return [self._decode(row[0]) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def count(self, *, query: ReportQuery) -> int:
        where, params = where_clause(query, placeholder="%s")
        sql = f"SELECT COUNT(*) FROM {self._table_name} {where}"

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                row = cur.fetchone()
            return int(row[0]) if row else 0

        return self._tx_runner.run_in_tx(fn=_op)

    def replace(self, *, report: Report, expected: Report) -> Report:
        sql = f"""
            UPDATE {self._table_name}
            SET status = %s, cat_type = %s, updated_at_us = %s, payload = %s::jsonb
            WHERE report_id = %s AND status = %s AND updated_at_us = %s
        """
        exists_sql = f"SELECT 1 FROM {self._table_name} WHERE report_id = %s"

        def _op(conn: Any) -> Report:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        report.status.value,
                        report.type.value,
                        to_epoch_us(report.updated_at),
                        _payload_json(report),
                        report.id,
                        expected.status.value,
                        to_epoch_us(expected.updated_at),
                    ),
                )
                if cur.rowcount == 1:
                    return report
                cur.execute(exists_sql, (report.id,))
                exists = cur.fetchone()
            if exists is None:
                raise errors.report_not_found(report.id)
            raise errors.concurrent_modification(report.id)

        return self._tx_runner.run_in_tx(fn=_op)
