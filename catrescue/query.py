"""Filter, sort and count over report collections.

Filters compose by AND; an omitted filter imposes no constraint. Sorting is a
total order: the requested key in the requested direction, then ``id`` ascending
for reports with equal keys. The SQL adapters express the same rules through
:func:`order_by_clause`.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Literal

from catrescue.domain import CatType, Report, ReportStatus

SortKey = Literal["createdAt", "id", "status", "type"]
SortOrder = Literal["asc", "desc"]

SORT_KEYS: tuple[str, ...] = ("createdAt", "id", "status", "type")
SORT_ORDERS: tuple[str, ...] = ("asc", "desc")


@dataclass(frozen=True)
class ReportQuery:
    owner_id: str | None = None
    status: ReportStatus | None = None
    type: CatType | None = None
    sort_by: SortKey = "createdAt"
    sort_order: SortOrder = "desc"

    def __post_init__(self) -> None:
        if self.sort_by not in SORT_KEYS:
            raise ValueError(f"unsupported sort key: {self.sort_by}")
        if self.sort_order not in SORT_ORDERS:
            raise ValueError(f"unsupported sort order: {self.sort_order}")

    @classmethod
    def for_owner(cls, owner_id: str) -> "ReportQuery":
        return cls(owner_id=owner_id, sort_by="createdAt", sort_order="desc")


def matches(report: Report, query: ReportQuery) -> bool:
    if query.owner_id is not None and report.owner_id != query.owner_id:
        return False
    if query.status is not None and report.status != query.status:
        return False
    if query.type is not None and report.type != query.type:
        return False
    return True


def _sort_value(report: Report, sort_by: str) -> Any:
    if sort_by == "createdAt":
        return report.created_at
    if sort_by == "status":
        return report.status.value
    if sort_by == "type":
        return report.type.value
    return report.id


def sort_reports(reports: Iterable[Report], *, sort_by: str, sort_order: str) -> list[Report]:
    # Python's sort is stable, also with reverse=True, so the id pre-sort survives as tie-break.
    ordered = sorted(reports, key=lambda r: r.id)
    ordered.sort(key=lambda r: _sort_value(r, sort_by), reverse=sort_order == "desc")
    return ordered


def run_query(reports: Iterable[Report], query: ReportQuery) -> list[Report]:
    return sort_reports(
        (r for r in reports if matches(r, query)),
        sort_by=query.sort_by,
        sort_order=query.sort_order,
    )


def count_matching(reports: Iterable[Report], query: ReportQuery) -> int:
    return sum(1 for r in reports if matches(r, query))


# SQL column for each sort key; created_at is stored as epoch microseconds.
SQL_SORT_COLUMNS: dict[str, str] = {
    "createdAt": "created_at_us",
    "id": "report_id",
    "status": "status",
    "type": "cat_type",
}


def where_clause(query: ReportQuery, *, placeholder: str) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if query.owner_id is not None:
        clauses.append(f"owner_id = {placeholder}")
        params.append(query.owner_id)
    if query.status is not None:
        clauses.append(f"status = {placeholder}")
        params.append(query.status.value)
    if query.type is not None:
        clauses.append(f"cat_type = {placeholder}")
        params.append(query.type.value)
    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


def order_by_clause(query: ReportQuery, *, text_collation: str = "") -> str:
    column = SQL_SORT_COLUMNS[query.sort_by]
    direction = "DESC" if query.sort_order == "desc" else "ASC"
    collate = f' COLLATE "{text_collation}"' if text_collation else ""
    if column == "report_id":
        return f"ORDER BY report_id{collate} {direction}"
    if column == "created_at_us":
        return f"ORDER BY created_at_us {direction}, report_id{collate} ASC"
    return f"ORDER BY {column}{collate} {direction}, report_id{collate} ASC"
