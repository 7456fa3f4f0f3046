"""Format detectors for the supported export layouts.

Each detector is a pure predicate over tokenized rows. They are listed most
specific first; :func:`detect_with_confidence` runs all of them and returns
the verdicts ranked by confidence (stable, so listing order breaks ties).

Public API:
    - :func:`detect_with_confidence` / :func:`best_format`
    - :func:`resolve_format` - reconcile a caller-requested format with what
      the text actually looks like.
    - :func:`looks_like_header`, :func:`is_personal_info_row`,
      :func:`is_total_row` - row predicates shared with extraction.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import NamedTuple

from .logging_setup import get_logger
from .models import DetectionConfidence, DetectionResult, ImportFormat
from .text import normalize
from .tokenizer import Row
from .values import parse_amount, parse_date

_logger = get_logger("kakeibo_import.detectors")

APP_EXPORT_HEADER: tuple[str, ...] = ("日付", "種類", "金額", "カテゴリ", "メモ")

PAYPAY_REQUIRED: tuple[str, ...] = ("取引日", "出金金額（円）", "取引番号")
RESONA_REQUIRED_SETS: tuple[tuple[str, ...], ...] = (("取扱日付", "摘要"), ("日付", "入払区分"))

MASK_GLYPH_RUN: str = "****"
CARD_ISSUER_KEYWORDS: tuple[str, ...] = ("amazon", "master", "visa", "三井住友", "smbc")
HONORIFICS: tuple[str, ...] = ("様", "さま")

GENERIC_DATE_KEYWORDS: tuple[str, ...] = ("日付", "利用日", "date")
GENERIC_AMOUNT_KEYWORDS: tuple[str, ...] = ("金額", "支払", "amount")
GENERIC_DEBIT_KEYWORDS: tuple[str, ...] = ("出金", "支払")
GENERIC_CREDIT_KEYWORDS: tuple[str, ...] = ("入金", "預入")

HEADER_KEYWORDS: tuple[str, ...] = ("日付", "種類", "金額", "カテゴリ", "メモ", "category", "date")


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------


def _header(rows: Sequence[Row]) -> Row:
    return rows[0] if rows else ()


def _header_has(header: Row, keyword: str) -> bool:
    k = normalize(keyword)
    return any(k in normalize(cell) for cell in header)


def _header_has_any(header: Row, keywords: Sequence[str]) -> bool:
    return any(_header_has(header, k) for k in keywords)


def _has_mask(row: Row) -> bool:
    # NFKC folds the full-width asterisk onto "*".
    return any(MASK_GLYPH_RUN in normalize(cell) for cell in row)


def _cell(row: Row, index: int) -> str:
    return row[index] if 0 <= index < len(row) else ""


def looks_like_header(row: Row) -> bool:
    """Heuristic used when a layout may or may not carry a header row."""

    return _header_has_any(row, HEADER_KEYWORDS)


def is_personal_info_row(row: Row) -> bool:
    """Cardholder banner rows (masked card number or honorific)."""

    if len(row) < 2:
        return False
    return _has_mask(row) or any(h in cell for cell in row for h in HONORIFICS)


def is_total_row(row: Row) -> bool:
    """Running-total rows: blank date cell with an amount in the total column."""

    return len(row) >= 6 and not row[0].strip() and parse_amount(row[5]) is not None


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------


def detect_app_export(rows: Sequence[Row]) -> bool:
    header = tuple(c.strip() for c in _header(rows))
    return header == APP_EXPORT_HEADER


def detect_paypay(rows: Sequence[Row]) -> bool:
    header = _header(rows)
    return all(_header_has(header, k) for k in PAYPAY_REQUIRED)


def detect_resona(rows: Sequence[Row]) -> bool:
    header = _header(rows)
    return any(all(_header_has(header, k) for k in req) for req in RESONA_REQUIRED_SETS)


def detect_amazon_card(rows: Sequence[Row]) -> bool:
    """Structural detector for the header-less card statement.

    Row 1 is a cardholder banner (masked number, or issuer keyword plus an
    honorific). Without that, row 2 must look like a line item whose
    sub-total and total columns agree.
    """

    if not rows:
        return False
    first = rows[0]
    if len(first) >= 3:
        if _has_mask(first):
            return True
        joined = normalize(" ".join(first))
        has_issuer = any(normalize(k) in joined for k in CARD_ISSUER_KEYWORDS)
        has_honorific = any(h in " ".join(first) for h in HONORIFICS)
        if has_issuer and has_honorific:
            return True
    if len(rows) >= 2:
        second = rows[1]
        if len(second) >= 6 and parse_date(second[0]) is not None:
            sub_total = parse_amount(second[2])
            total = parse_amount(second[5])
            if sub_total is not None and sub_total == total:
                return True
    return False


def _generic_has_date_and_amount(header: Row) -> bool:
    return _header_has_any(header, GENERIC_DATE_KEYWORDS) and _header_has_any(
        header, GENERIC_AMOUNT_KEYWORDS
    )


def _generic_has_debit_and_credit(header: Row) -> bool:
    return _header_has_any(header, GENERIC_DEBIT_KEYWORDS) and _header_has_any(
        header, GENERIC_CREDIT_KEYWORDS
    )


def detect_bank_generic(rows: Sequence[Row]) -> bool:
    header = _header(rows)
    return _generic_has_date_and_amount(header) and _generic_has_debit_and_credit(header)


def detect_card_generic(rows: Sequence[Row]) -> bool:
    header = _header(rows)
    return _generic_has_date_and_amount(header) and not _generic_has_debit_and_credit(header)


class FormatDetector(NamedTuple):
    format: ImportFormat
    confidence: DetectionConfidence
    detect: Callable[[Sequence[Row]], bool]
    reason: str


# Listing order is the tie-break order.
DETECTORS: tuple[FormatDetector, ...] = (
    FormatDetector(
        ImportFormat.APP_EXPORT,
        DetectionConfidence.HIGH,
        detect_app_export,
        "header matches the app export columns exactly",
    ),
    FormatDetector(
        ImportFormat.PAYPAY,
        DetectionConfidence.HIGH,
        detect_paypay,
        "header has PayPay transaction columns",
    ),
    FormatDetector(
        ImportFormat.RESONA_BANK,
        DetectionConfidence.HIGH,
        detect_resona,
        "header has Resona statement columns",
    ),
    FormatDetector(
        ImportFormat.AMAZON_CARD,
        DetectionConfidence.HIGH,
        detect_amazon_card,
        "cardholder banner or matching sub-total/total columns",
    ),
    FormatDetector(
        ImportFormat.BANK_GENERIC,
        DetectionConfidence.MEDIUM,
        detect_bank_generic,
        "date and amount columns with separate debit/credit columns",
    ),
    FormatDetector(
        ImportFormat.CARD_GENERIC,
        DetectionConfidence.MEDIUM,
        detect_card_generic,
        "date and single amount column",
    ),
)


def detect_with_confidence(rows: Sequence[Row]) -> list[DetectionResult]:
    """Return every matching verdict, highest confidence first."""

    results = [
        DetectionResult(format=d.format, confidence=d.confidence, reason=d.reason)
        for d in DETECTORS
        if d.detect(rows)
    ]
    # ``sorted`` is stable, so equal confidences keep listing order.
    results = sorted(results, key=lambda r: r.confidence, reverse=True)
    _logger.debug(
        "detect:results formats=%s",
        ",".join(f"{r.format.code}:{r.confidence.name}" for r in results) or "-",
    )
    return results


def best_format(rows: Sequence[Row]) -> DetectionResult | None:
    results = detect_with_confidence(rows)
    return results[0] if results else None


def resolve_format(rows: Sequence[Row], requested: ImportFormat | None) -> ImportFormat | None:
    """Pick the format to extract with.

    A specific requested format is honored as-is. A generic (or missing)
    request is upgraded when a specific detector fires on the text.
    """

    if requested is not None and not requested.is_generic:
        return requested
    best = best_format(rows)
    if best is None:
        return requested
    if requested is None:
        return best.format
    if not best.format.is_generic:
        _logger.info("detect:upgraded requested=%s detected=%s", requested.code, best.format.code)
        return best.format
    return requested


__all__ = [
    "APP_EXPORT_HEADER",
    "DETECTORS",
    "FormatDetector",
    "best_format",
    "detect_amazon_card",
    "detect_app_export",
    "detect_bank_generic",
    "detect_card_generic",
    "detect_paypay",
    "detect_resona",
    "detect_with_confidence",
    "is_personal_info_row",
    "is_total_row",
    "looks_like_header",
    "resolve_format",
]
