"""Record sinks: where imported records go after the pipeline.

The pipeline does not own transaction storage; it hands finished records to
a :class:`RecordSink` and asks it for the fingerprints of what is already
stored. :class:`MemoryRecordSink` keeps everything in a list;
:class:`SqlRecordSink` writes to the ``imported_records`` table owned by
``libs/db`` (``ledger_db``).
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from ledger_db.client import create_schema, session_scope
from ledger_db.models.ledger import ImportedRecord
from sqlalchemy import select

from .fingerprint import import_fingerprint, record_fingerprint
from .logging_setup import get_logger
from .models import Direction, FinancialRecord, ImportFormat

_logger = get_logger("kakeibo_import.persistence")


@runtime_checkable
class RecordSink(Protocol):
    def existing_fingerprints(self) -> set[str]:
        """Import-time fingerprints of stored records."""
        ...

    def existing_record_fingerprints(self) -> set[str]:
        """Post-categorization fingerprints of stored records."""
        ...

    def persist(
        self,
        records: Sequence[FinancialRecord],
        *,
        import_id: str,
        import_format: ImportFormat | None,
    ) -> list[str]:
        """Store ``records``; return the record ids actually written."""
        ...


class MemoryRecordSink:
    def __init__(self) -> None:
        self.records: list[FinancialRecord] = []
        self.imports: list[str] = []

    def existing_fingerprints(self) -> set[str]:
        return {import_fingerprint(r) for r in self.records}

    def existing_record_fingerprints(self) -> set[str]:
        return {record_fingerprint(r) for r in self.records}

    def persist(
        self,
        records: Sequence[FinancialRecord],
        *,
        import_id: str,
        import_format: ImportFormat | None,
    ) -> list[str]:
        self.records.extend(records)
        self.imports.append(import_id)
        return [r.record_id for r in records]


def _to_row(
    record: FinancialRecord, *, import_id: str, import_format: ImportFormat | None
) -> ImportedRecord:
    return ImportedRecord(
        record_id=record.record_id,
        import_id=import_id,
        date=record.date,
        direction=record.direction.code,
        amount=record.amount,
        memo=record.memo,
        category_id=record.category_id,
        category_label=record.category_label,
        source=record.source,
        source_id=record.source_id,
        account_id=record.account_id,
        to_account_id=record.to_account_id,
        format_code=import_format.code if import_format is not None else None,
        import_fingerprint=import_fingerprint(record),
        record_fingerprint=record_fingerprint(record),
    )


def row_to_record(row: ImportedRecord) -> FinancialRecord:
    return FinancialRecord(
        date=row.date,
        direction=Direction.from_code(row.direction),
        amount=row.amount,
        memo=row.memo or "",
        category_label=row.category_label,
        category_id=row.category_id,
        source=row.source,
        source_id=row.source_id,
        account_id=row.account_id,
        to_account_id=row.to_account_id,
        record_id=row.record_id,
    )


class SqlRecordSink:
    """SQLAlchemy-backed sink; one transaction per :meth:`persist` call."""

    def __init__(self, database_url: str, *, create: bool = True) -> None:
        self.database_url = database_url
        if create:
            create_schema(database_url=database_url)

    def existing_fingerprints(self) -> set[str]:
        with session_scope(database_url=self.database_url) as session:
            return set(session.scalars(select(ImportedRecord.import_fingerprint)))

    def existing_record_fingerprints(self) -> set[str]:
        with session_scope(database_url=self.database_url) as session:
            return set(session.scalars(select(ImportedRecord.record_fingerprint)))

    def persist(
        self,
        records: Sequence[FinancialRecord],
        *,
        import_id: str,
        import_format: ImportFormat | None,
    ) -> list[str]:
        if not records:
            return []
        with session_scope(database_url=self.database_url) as session:
            session.add_all(
                [_to_row(r, import_id=import_id, import_format=import_format) for r in records]
            )
        _logger.info("persist:done import_id=%s num_records=%d", import_id, len(records))
        return [r.record_id for r in records]

    def load_records(self, *, import_id: str | None = None) -> list[FinancialRecord]:
        stmt = select(ImportedRecord).order_by(ImportedRecord.id)
        if import_id is not None:
            stmt = stmt.where(ImportedRecord.import_id == import_id)
        with session_scope(database_url=self.database_url) as session:
            return [row_to_record(row) for row in session.scalars(stmt)]


__all__ = ["MemoryRecordSink", "RecordSink", "SqlRecordSink", "row_to_record"]
