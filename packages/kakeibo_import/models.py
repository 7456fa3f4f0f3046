"""Data models shared across the import pipeline.

In-memory logic selects on closed enums (:class:`Direction`,
:class:`ImportFormat`, :class:`DetectionConfidence`). Their string codes are
only used at the persistence boundary via ``code``/``from_code``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum, IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .errors import ClassificationError

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Direction(Enum):
    """Money flow of a record.

    ``TRANSFER`` only comes out of wallet exports (e.g. a top-up) and is never
    classified.
    """

    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"

    @property
    def code(self) -> str:
        return self.value

    @classmethod
    def from_code(cls, code: str) -> Direction:
        try:
            return cls(code.strip().lower())
        except ValueError as exc:
            raise ValueError(f"unknown direction code: {code!r}") from exc


class ImportFormat(Enum):
    """Known export layouts. Member order is the detector listing order."""

    APP_EXPORT = "app_export"
    PAYPAY = "paypay"
    RESONA_BANK = "resona_bank"
    AMAZON_CARD = "amazon_card"
    BANK_GENERIC = "bank_generic"
    CARD_GENERIC = "card_generic"

    @property
    def code(self) -> str:
        return self.value

    @classmethod
    def from_code(cls, code: str) -> ImportFormat:
        c = code.strip().lower().replace("-", "_")
        for member in cls:
            if member.value == c:
                return member
        raise ValueError(f"unknown import format code: {code!r}")

    @property
    def display_name(self) -> str:
        return _FORMAT_DISPLAY_NAMES[self]

    @property
    def is_card_style(self) -> bool:
        """Card-style layouts carry a single amount column that means expense."""

        return self in (ImportFormat.AMAZON_CARD, ImportFormat.CARD_GENERIC)

    @property
    def is_generic(self) -> bool:
        return self in (ImportFormat.BANK_GENERIC, ImportFormat.CARD_GENERIC)


_FORMAT_DISPLAY_NAMES: dict[ImportFormat, str] = {
    ImportFormat.APP_EXPORT: "App export",
    ImportFormat.PAYPAY: "PayPay",
    ImportFormat.RESONA_BANK: "Resona Bank",
    ImportFormat.AMAZON_CARD: "Amazon Mastercard (SMBC)",
    ImportFormat.BANK_GENERIC: "Bank statement (generic)",
    ImportFormat.CARD_GENERIC: "Card statement (generic)",
}


class DetectionConfidence(IntEnum):
    """Ranking only; never persisted."""

    UNKNOWN = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


@dataclass(frozen=True, slots=True)
class DetectionResult:
    format: ImportFormat
    confidence: DetectionConfidence
    reason: str


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def new_record_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class FinancialRecord:
    """A transaction candidate extracted from one export row.

    ``amount`` is a non-negative integer in the smallest currency unit; the
    sign lives in ``direction``. ``category_label`` is the category text the
    export itself carried (if any); ``category_id`` is the resolved internal
    category.
    """

    date: date
    direction: Direction
    amount: int
    memo: str = ""
    category_label: str | None = None
    category_id: str | None = None
    source: str | None = None
    source_id: str | None = None
    account_id: str | None = None
    to_account_id: str | None = None
    record_id: str = field(default_factory=new_record_id)

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError("FinancialRecord.amount must be an integer")
        if self.amount < 0:
            raise ValueError("FinancialRecord.amount must be non-negative")

    def with_category(self, category_id: str | None) -> FinancialRecord:
        return replace(self, category_id=category_id)


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    records: list[FinancialRecord]
    invalid: int = 0
    errors: list[str] = field(default_factory=list)
    skipped_artifacts: int = 0


# ---------------------------------------------------------------------------
# Classification outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Assignment:
    category_id: str
    reason: str


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Counters and staged updates from the remote classification stage.

    ``error`` is set when a run stopped early; everything accumulated before
    the failing batch is still present.
    """

    processed: int = 0
    confirmed: int = 0
    skipped: int = 0
    errored: int = 0
    updates: dict[str, Assignment] = field(default_factory=dict)
    error: ClassificationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def summary(self) -> str:
        if self.error is not None:
            return f"classification stopped: {self.error}"
        return f"classified {self.confirmed} of {self.processed} records"


# ---------------------------------------------------------------------------
# Import outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImportResult:
    """Summary handed back to the caller after one import run."""

    import_id: str
    import_format: ImportFormat | None
    detections: tuple[DetectionResult, ...] = ()
    added: int = 0
    duplicate_skipped: int = 0
    invalid_skipped: int = 0
    errors: tuple[str, ...] = ()
    added_record_ids: tuple[str, ...] = ()
    unclassified_samples: tuple[str, ...] = ()
    records: tuple[FinancialRecord, ...] = ()
    classification: ClassificationResult | None = None

    @property
    def skipped(self) -> int:
        return self.duplicate_skipped + self.invalid_skipped

    @property
    def total_processed(self) -> int:
        return self.added + self.skipped

    @property
    def success_rate(self) -> float:
        total = self.total_processed
        return self.added / total if total else 0.0

    @property
    def summary(self) -> str:
        parts = [f"added={self.added}"]
        if self.duplicate_skipped:
            parts.append(f"duplicates={self.duplicate_skipped}")
        if self.invalid_skipped:
            parts.append(f"invalid={self.invalid_skipped}")
        return " ".join(parts)


__all__ = [
    "Assignment",
    "ClassificationResult",
    "DetectionConfidence",
    "DetectionResult",
    "Direction",
    "ExtractionResult",
    "FinancialRecord",
    "ImportFormat",
    "ImportResult",
    "new_record_id",
]
