from catrescue.repositories.codec import report_from_record, report_to_record
from catrescue.repositories.reports import (
    InMemoryReportsRepository,
    PostgresReportsRepository,
    SqliteReportsRepository,
)

__all__ = [
    "InMemoryReportsRepository",
    "PostgresReportsRepository",
    "SqliteReportsRepository",
    "report_from_record",
    "report_to_record",
]
