"""Record extraction: tokenized rows to :class:`FinancialRecord` candidates.

Each supported layout has a private row builder (``_build_<format>``) that
either returns a record or raises :class:`RowError` with a short reason; the
dispatcher :func:`extract_records` counts those as invalid rows and keeps the first
:data:`MAX_ERRORS` reasons for display. Layout artifacts (cardholder banner,
running-total rows) are skipped before extraction and are not invalid.

Category handling here is limited to carrying the export's own category text
in ``category_label``; resolution to internal categories happens in the
pipeline.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from .columns import (
    DIRECTION_STRATEGIES,
    ColumnMap,
    ManualMapping,
    NamedStrategy,
    Resolution,
    StrategyOutcome,
    build_column_map,
    resolve_by_debit_credit,
    resolve_by_type_column,
    resolve_direction,
)
from .detectors import is_personal_info_row, is_total_row, looks_like_header
from .logging_setup import get_logger
from .models import Direction, ExtractionResult, FinancialRecord, ImportFormat
from .text import normalize
from .tokenizer import Row
from .values import parse_amount, parse_date

_logger = get_logger("kakeibo_import.extract")

MAX_ERRORS: int = 30
DEFAULT_CATEGORY_NAME: str = "その他"

AMAZON_STORE_MARKER: str = "amazon.co.jp"
AMAZON_MEMO: str = "Amazonでの購入"
PAYPAY_CHARGE: str = "チャージ"
PAYPAY_FALLBACK_MEMO: str = "PayPay取引"
PAYPAY_TX_ID_HEADER: str = "取引番号"

# Source tags recorded for layouts that come from a known issuer.
FORMAT_SOURCES: dict[ImportFormat, str] = {
    ImportFormat.PAYPAY: "paypay",
    ImportFormat.RESONA_BANK: "resona",
    ImportFormat.AMAZON_CARD: "amazon_card",
}

_RESONA_LEGACY_MIN_COLUMNS = 20
_RESONA_INCOME_MARKERS: tuple[str, ...] = ("入金", "預入", "受取")


class RowError(Exception):
    """Raised inside row builders; caught by the dispatcher and counted."""


@dataclass(frozen=True, slots=True)
class _Context:
    fmt: ImportFormat | None
    cmap: ColumnMap
    source: str | None
    header: Row


def _cell(row: Row, index: int | None) -> str:
    if index is None or not (0 <= index < len(row)):
        return ""
    return row[index].strip()


def _resona_default_expense(row: Row, cmap: ColumnMap, fmt: ImportFormat | None) -> StrategyOutcome:
    amount = parse_amount(_cell(row, cmap.amount)) if cmap.amount is not None else None
    if amount is None:
        return None
    return Resolution(Direction.EXPENSE, abs(amount))


# Resona's column-map fallback never trusts the amount sign: an amount with
# no recognizable type wording is an expense.
RESONA_STRATEGIES: tuple[NamedStrategy, ...] = (
    NamedStrategy("debit_credit", resolve_by_debit_credit),
    NamedStrategy("type_column", resolve_by_type_column),
    NamedStrategy("resona_default", _resona_default_expense),
)


def _require_date(text: str, what: str = "date") -> date:
    d = parse_date(text)
    if d is None:
        raise RowError(f"invalid {what}: {text!r}")
    return d


# ---------------------------------------------------------------------------
# Per-layout row builders
# ---------------------------------------------------------------------------


def _build_app_export(row: Row, ctx: _Context) -> FinancialRecord:
    if len(row) < 3:
        raise RowError("too few columns (need at least 3)")
    d = _require_date(row[0])
    raw_amount = parse_amount(row[2])
    if raw_amount is None:
        raise RowError(f"invalid amount or type: {row[1]!r} / {row[2]!r}")
    kind = row[1].strip()
    if "収入" in kind or "income" in kind.lower():
        direction = Direction.INCOME
    elif "支出" in kind or "expense" in kind.lower():
        direction = Direction.EXPENSE
    else:
        direction = Direction.EXPENSE if raw_amount < 0 else Direction.INCOME
    label = _cell(row, 3) or DEFAULT_CATEGORY_NAME
    return FinancialRecord(
        date=d,
        direction=direction,
        amount=abs(raw_amount),
        memo=_cell(row, 4),
        category_label=label,
        source=ctx.source,
    )


def _build_generic(row: Row, ctx: _Context) -> FinancialRecord:
    date_text = _cell(row, ctx.cmap.date)
    d = parse_date(date_text) if ctx.cmap.date is not None else None
    if d is None:
        raise RowError("date column missing or unparseable")
    resolved = resolve_direction(row, ctx.cmap, ctx.fmt, DIRECTION_STRATEGIES)
    if resolved is None:
        raise RowError("could not determine amount or direction")
    return FinancialRecord(
        date=d,
        direction=resolved.direction,
        amount=resolved.amount,
        memo=_cell(row, ctx.cmap.memo),
        category_label=_cell(row, ctx.cmap.category) or None,
        source=ctx.source,
    )


def _build_amazon_card(row: Row, ctx: _Context) -> FinancialRecord:
    if len(row) < 3:
        raise RowError("too few columns")
    d = _require_date(row[0])
    amount = parse_amount(row[2])
    if amount is None or amount <= 0:
        raise RowError(f"invalid amount: {row[2]!r}")
    memo = normalize(row[1])
    if AMAZON_STORE_MARKER in memo:
        memo = AMAZON_MEMO
    return FinancialRecord(
        date=d,
        direction=Direction.EXPENSE,
        amount=amount,
        memo=memo,
        source=ctx.source,
    )


def _build_resona_legacy(row: Row, ctx: _Context) -> FinancialRecord | None:
    """Old fixed layout: Y/M/D split over columns 14-16, amount in 17."""

    if len(row) < _RESONA_LEGACY_MIN_COLUMNS:
        return None
    d = parse_date(f"{row[14].strip()}/{row[15].strip()}/{row[16].strip()}")
    amount = parse_amount(row[17])
    if d is None or amount is None or amount <= 0:
        return None
    kind = row[13].strip()
    direction = (
        Direction.INCOME if any(m in kind for m in _RESONA_INCOME_MARKERS) else Direction.EXPENSE
    )
    return FinancialRecord(
        date=d,
        direction=direction,
        amount=amount,
        memo=normalize(row[19]),
        source=ctx.source,
    )


def _build_resona(row: Row, ctx: _Context) -> FinancialRecord:
    legacy = _build_resona_legacy(row, ctx)
    if legacy is not None:
        return legacy
    d = parse_date(_cell(row, ctx.cmap.date)) if ctx.cmap.date is not None else None
    if d is None:
        raise RowError("resona: date not found")
    resolved = resolve_direction(row, ctx.cmap, ctx.fmt, RESONA_STRATEGIES)
    if resolved is None:
        raise RowError("resona: amount not found")
    return FinancialRecord(
        date=d,
        direction=resolved.direction,
        amount=resolved.amount,
        memo=normalize(_cell(row, ctx.cmap.memo)),
        category_label=_cell(row, ctx.cmap.category) or None,
        source=ctx.source,
    )


def _paypay_tx_id_column(header: Row) -> int | None:
    for idx, cell in enumerate(header):
        if PAYPAY_TX_ID_HEADER in cell:
            return idx
    return None


def _build_paypay(row: Row, ctx: _Context) -> FinancialRecord:
    if len(row) <= 8:
        raise RowError("paypay: too few columns")
    d = _require_date(row[0], "paypay date")
    out_amount = parse_amount(row[1])
    in_amount = parse_amount(row[2])
    if out_amount is not None and out_amount > 0:
        direction, amount = Direction.EXPENSE, out_amount
    elif in_amount is not None and in_amount > 0:
        direction, amount = Direction.INCOME, in_amount
    else:
        raise RowError("paypay: amount not found")
    content = row[7].strip()
    partner = row[8].strip()
    if content == PAYPAY_CHARGE:
        direction = Direction.TRANSFER

    if partner:
        memo = f"{partner} ({content})" if content else partner
    else:
        memo = content or PAYPAY_FALLBACK_MEMO

    tx_col = _paypay_tx_id_column(ctx.header)
    source_id = _cell(row, tx_col) or None
    return FinancialRecord(
        date=d,
        direction=direction,
        amount=amount,
        memo=memo,
        source=ctx.source,
        source_id=source_id,
    )


_BUILDERS = {
    ImportFormat.APP_EXPORT: _build_app_export,
    ImportFormat.PAYPAY: _build_paypay,
    ImportFormat.RESONA_BANK: _build_resona,
    ImportFormat.AMAZON_CARD: _build_amazon_card,
    ImportFormat.BANK_GENERIC: _build_generic,
    ImportFormat.CARD_GENERIC: _build_generic,
}


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


def _data_start(rows: Sequence[Row], fmt: ImportFormat | None) -> tuple[Row, int]:
    """Return ``(header, first_data_index)`` for ``fmt``."""

    first = rows[0]
    if fmt is ImportFormat.AMAZON_CARD:
        return (), (1 if is_personal_info_row(first) else 0)
    if fmt is not None and not fmt.is_generic:
        return first, 1
    if looks_like_header(first):
        return first, 1
    return (), 0


def extract_records(
    rows: Sequence[Row],
    fmt: ImportFormat | None,
    *,
    manual_mapping: ManualMapping | None = None,
    source: str | None = None,
) -> ExtractionResult:
    """Extract records from ``rows`` laid out as ``fmt``.

    ``fmt`` of ``None`` means no detector matched; rows are then read through
    the header-driven mapper (or the fixed date/memo/amount fallback when the
    first row is not a header), which is the same path as a generic layout.
    """

    if not rows:
        return ExtractionResult(records=[], invalid=0, errors=["input has no rows"])

    header, start = _data_start(rows, fmt)
    cmap = build_column_map(header, fmt).apply(manual_mapping)
    if source is None and fmt is not None:
        source = FORMAT_SOURCES.get(fmt)
    ctx = _Context(fmt=fmt, cmap=cmap, source=source, header=header)
    builder = _BUILDERS.get(fmt, _build_generic) if fmt is not None else _build_generic

    records: list[FinancialRecord] = []
    errors: list[str] = []
    invalid = 0
    artifacts = 0
    for i in range(start, len(rows)):
        row = rows[i]
        if fmt is ImportFormat.AMAZON_CARD and (is_total_row(row) or is_personal_info_row(row)):
            artifacts += 1
            continue
        try:
            records.append(builder(row, ctx))
        except RowError as e:
            invalid += 1
            if len(errors) < MAX_ERRORS:
                errors.append(f"row {i + 1}: {e}")

    _logger.info(
        "extract:done format=%s rows=%d records=%d invalid=%d artifacts=%d",
        fmt.code if fmt else "-",
        len(rows) - start,
        len(records),
        invalid,
        artifacts,
    )
    return ExtractionResult(
        records=records, invalid=invalid, errors=errors, skipped_artifacts=artifacts
    )


__all__ = [
    "DEFAULT_CATEGORY_NAME",
    "FORMAT_SOURCES",
    "MAX_ERRORS",
    "RESONA_STRATEGIES",
    "RowError",
    "extract_records",
]
