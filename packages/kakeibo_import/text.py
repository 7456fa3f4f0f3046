"""Text canonicalization shared by every matching and parsing step.

Public API:
    - :func:`normalize` - full canonical form used for keyword matching,
      header search, and fingerprints.
    - :func:`normalize_digits` - folds only full-width decimal digits; used
      before date/amount parsing where a full fold would also rewrite
      separators.

Both functions are pure and keep no state between calls.
"""

from __future__ import annotations

import unicodedata

# Long-vowel marks and dash look-alikes that survive NFKC unchanged.
_DASH_VARIANTS: str = "\u30fc\u2010\u2011\u2012\u2013\u2014\u2015\u2212\u2500\u2501"
_DASH_TABLE: dict[int, str] = {ord(c): "-" for c in _DASH_VARIANTS}

_FULLWIDTH_DIGITS: dict[int, str] = {0xFF10 + i: str(i) for i in range(10)}


def normalize(text: str | None) -> str:
    """Return the canonical matching form of ``text``.

    - NFKC fold (full-width ASCII to half-width, half-width katakana to
      full-width, ideographic space to space).
    - Case-fold.
    - Every long-vowel/dash variant becomes ``-``.
    - Whitespace runs collapse to a single space; ends are trimmed.
    """

    if not text:
        return ""
    s = unicodedata.normalize("NFKC", text).casefold()
    s = s.translate(_DASH_TABLE)
    return " ".join(s.split())


def normalize_digits(text: str | None) -> str:
    """Convert full-width decimal digits to ASCII and leave everything else."""

    if not text:
        return ""
    return text.translate(_FULLWIDTH_DIGITS)


def contains_normalized(haystack: str, needle: str) -> bool:
    """Return True when ``needle`` occurs in ``haystack`` after normalization."""

    n = normalize(needle)
    return bool(n) and n in normalize(haystack)


__all__ = ["normalize", "normalize_digits", "contains_normalized"]
