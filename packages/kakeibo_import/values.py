"""Date and amount parsers tolerant of Japanese export conventions.

Neither parser raises: unparseable input yields ``None`` so extraction can
count the row as invalid and move on.
"""

from __future__ import annotations

import re
from datetime import date, datetime

from .text import normalize_digits

# Most specific first; ``strptime`` also accepts single-digit month/day, so
# ``%Y/%m/%d`` covers ``2025/7/4``.
DATE_FORMATS: tuple[str, ...] = (
    "%Y/%m/%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%Y-%m-%d",
    "%Y.%m.%d",
    "%Y年%m月%d日",
    "%Y%m%d",
    "%m/%d/%Y",
)

_COMPACT_DATE_RE = re.compile(r"^\d{8}$")
_DIGITS_RE = re.compile(r"^[0-9]+$")

_MINUS_SIGNS: tuple[str, ...] = ("-", "－", "−")
_CURRENCY_GLYPHS: tuple[str, ...] = ("¥", "￥", "円", "$", "€")
# Characters removed before the digit check (sign already captured).
_STRIP_CHARS: str = "¥￥円$€,， \u00a0\u3000\t\"'()（）+＋-－−"
_STRIP_TABLE: dict[int, None] = {ord(c): None for c in _STRIP_CHARS}


def parse_date(text: str | None) -> date | None:
    """Parse ``text`` with the first matching pattern in :data:`DATE_FORMATS`."""

    s = normalize_digits(text).strip()
    if not s:
        return None
    for fmt in DATE_FORMATS:
        if fmt == "%Y%m%d" and not _COMPACT_DATE_RE.match(s):
            continue
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def format_date(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def _strip_leading_currency(s: str) -> str:
    changed = True
    while changed and s:
        changed = False
        for glyph in _CURRENCY_GLYPHS:
            if s.startswith(glyph):
                s = s[len(glyph) :].lstrip()
                changed = True
    return s


def _is_parenthesized(s: str) -> bool:
    return len(s) >= 2 and (
        (s.startswith("(") and s.endswith(")")) or (s.startswith("（") and s.endswith("）"))
    )


def parse_amount(text: str | None) -> int | None:
    """Parse a signed integer amount in the smallest currency unit.

    Negativity comes from a leading minus (ASCII, full-width, or math minus)
    or from full parenthesization, and is detected before any stripping.
    Currency glyphs, thousands separators, whitespace (including NBSP),
    quotes, parentheses and sign characters are then removed; what remains
    must be a pure digit sequence.
    """

    s = normalize_digits(text).strip().strip("\"'").strip()
    if not s:
        return None
    head = _strip_leading_currency(s)
    negative = head.startswith(_MINUS_SIGNS) or _is_parenthesized(head)
    digits = s.translate(_STRIP_TABLE)
    if not digits or not _DIGITS_RE.match(digits):
        return None
    value = int(digits)
    return -value if negative else value


def is_negative(text: str | None) -> bool:
    """Cheap sign check usable without a full parse."""

    if not text:
        return False
    s = text.strip()
    return any(m in s for m in _MINUS_SIGNS) or _is_parenthesized(s)


__all__ = ["DATE_FORMATS", "format_date", "is_negative", "parse_amount", "parse_date"]
