"""Tabular tokenizer for comma-separated export text.

The parser is a small character state machine rather than :mod:`csv` because
the exports it targets need two behaviors the stdlib reader does not offer:
unquoted fields are trimmed while quoted fields are kept verbatim, and an
unterminated quote must never raise (the rest of the input simply becomes the
last field).

Public API:
    - :func:`parse` - text to rows.
    - :func:`prepare_text` - BOM/newline/tab clean-up callers apply first.
    - :func:`quote_field` / :func:`format_row` - inverse used for the app's
      own export.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

DELIMITER = ","
QUOTE = '"'

type Row = tuple[str, ...]
"""One tokenized line. Column index is the addressing scheme."""

_BOM = "\ufeff"


def prepare_text(raw: str) -> str:
    """Return ``raw`` ready for :func:`parse`.

    Strips a leading byte-order mark, converts ``\\r\\n``/``\\r`` to ``\\n``,
    and treats the text as tab-separated when it has tabs but no commas.
    """

    s = raw[1:] if raw.startswith(_BOM) else raw
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    if "\t" in s and DELIMITER not in s:
        s = s.replace("\t", DELIMITER)
    return s


def parse(text: str) -> list[Row]:
    """Split ``text`` into rows of string fields.

    Rules:
    - ``,`` separates fields and ``\\n`` separates rows.
    - A field that starts with ``"`` is quoted; it may contain ``,`` and
      ``\\n``, and ``""`` inside it is a literal quote.
    - Unquoted fields are trimmed; quoted content is preserved as written.
    - Rows whose fields are all empty are dropped.
    """

    rows: list[Row] = []
    fields: list[str] = []
    buf: list[str] = []
    in_quotes = False
    was_quoted = False

    def _end_field() -> None:
        nonlocal buf, was_quoted
        value = "".join(buf)
        fields.append(value if was_quoted else value.strip())
        buf = []
        was_quoted = False

    def _end_row() -> None:
        nonlocal fields
        _end_field()
        if any(f for f in fields):
            rows.append(tuple(fields))
        fields = []

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_quotes:
            if ch == QUOTE:
                if i + 1 < n and text[i + 1] == QUOTE:
                    buf.append(QUOTE)
                    i += 1
                else:
                    in_quotes = False
            else:
                buf.append(ch)
        elif ch == QUOTE and not was_quoted and not "".join(buf).strip():
            # Opening quote; leading blanks before it are not content.
            buf = []
            in_quotes = True
            was_quoted = True
        elif ch == DELIMITER:
            _end_field()
        elif ch == "\n":
            _end_row()
        elif was_quoted and ch.isspace():
            # Blanks between a closing quote and the delimiter.
            pass
        else:
            buf.append(ch)
        i += 1

    if buf or fields or was_quoted:
        _end_row()
    return rows


def quote_field(field: str) -> str:
    """Quote ``field`` when parsing it back would otherwise change it."""

    needs = (
        DELIMITER in field
        or QUOTE in field
        or "\n" in field
        or "\r" in field
        or field != field.strip()
    )
    if not needs:
        return field
    return QUOTE + field.replace(QUOTE, QUOTE * 2) + QUOTE


def format_row(fields: Iterable[str]) -> str:
    return DELIMITER.join(quote_field(f) for f in fields)


def format_rows(rows: Sequence[Iterable[str]]) -> str:
    return "\n".join(format_row(r) for r in rows)


__all__ = [
    "DELIMITER",
    "QUOTE",
    "Row",
    "format_row",
    "format_rows",
    "parse",
    "prepare_text",
    "quote_field",
]
