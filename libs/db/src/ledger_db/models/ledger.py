from __future__ import annotations

import datetime as dt

from sqlalchemy import (
    CHAR,
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: imported_records
# ---------------------------


class ImportedRecord(Base):
    __tablename__ = "imported_records"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_imported_records_amount_nonneg"),
        CheckConstraint(
            "direction IN ('expense', 'income', 'transfer')",
            name="ck_imported_records_direction",
        ),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    record_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    import_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    # Persistence codes of Direction / ImportFormat (see kakeibo_import.models).
    direction: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    memo: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category_id: Mapped[str | None] = mapped_column(String, nullable=True)
    category_label: Mapped[str | None] = mapped_column(String, nullable=True)
    source: Mapped[str | None] = mapped_column(String, nullable=True)
    source_id: Mapped[str | None] = mapped_column(String, nullable=True)
    account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    to_account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    format_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    import_fingerprint: Mapped[str] = mapped_column(CHAR(64), nullable=False, index=True)
    record_fingerprint: Mapped[str] = mapped_column(CHAR(64), nullable=False, index=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.current_timestamp()
    )
