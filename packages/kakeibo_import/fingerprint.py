"""Deduplication fingerprints for imported records.

Two keys exist because duplicates are checked at two points:

- :func:`import_fingerprint` is computed before categorization, from what the
  export itself says (day, direction, amount, memo, source identity).
- :func:`record_fingerprint` is computed after categorization and adds the
  resolved category (and, for transfers, the accounts involved), so the same
  purchase filed under two different categories is kept twice.

Both are SHA-256 hex digests over a compact, key-sorted JSON payload.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from typing import Any

from .models import Direction, FinancialRecord
from .text import normalize


def _digest(payload: dict[str, Any]) -> str:
    # Ensure deterministic JSON serialization
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _norm_opt(value: str | None) -> str | None:
    if value is None:
        return None
    s = normalize(value)
    return s or None


def import_fingerprint(record: FinancialRecord) -> str:
    """Fingerprint over day, direction, amount, memo and source identity."""

    payload: dict[str, Any] = {
        "date": record.date.isoformat(),
        "direction": record.direction.code,
        "amount": record.amount,
        "memo": normalize(record.memo),
    }
    source = _norm_opt(record.source)
    if source is not None:
        payload["source"] = source
        source_id = _norm_opt(record.source_id)
        if source_id is not None:
            payload["source_id"] = source_id
    return _digest(payload)


def record_fingerprint(record: FinancialRecord, *, category_name: str | None = None) -> str:
    """Fingerprint over the stored transaction, including its category.

    The category is the resolved id when present, else ``category_name`` (or
    the record's imported label), normalized. The source tag and source id
    join the payload when set, as in :func:`import_fingerprint`.
    """

    if record.category_id is not None:
        category = record.category_id
    else:
        category = _norm_opt(category_name if category_name is not None else record.category_label)
    payload: dict[str, Any] = {
        "date": record.date.isoformat(),
        "direction": record.direction.code,
        "amount": record.amount,
        "memo": normalize(record.memo),
        "category": category,
    }
    if record.direction is Direction.TRANSFER:
        payload["from_account"] = record.account_id
        payload["to_account"] = record.to_account_id
    else:
        payload["account"] = record.account_id
    source = _norm_opt(record.source)
    if source is not None:
        payload["source"] = source
    source_id = _norm_opt(record.source_id)
    if source_id is not None:
        payload["source_id"] = source_id
    return _digest(payload)


def dedupe(
    records: Iterable[FinancialRecord],
    existing: Iterable[str] = (),
    *,
    key=import_fingerprint,
) -> tuple[list[FinancialRecord], int]:
    """Drop records whose ``key`` is already known; first occurrence wins.

    Returns ``(kept, duplicate_count)``. ``existing`` holds fingerprints of
    previously stored records and is not modified.
    """

    seen = set(existing)
    kept: list[FinancialRecord] = []
    duplicates = 0
    for record in records:
        fp = key(record)
        if fp in seen:
            duplicates += 1
            continue
        seen.add(fp)
        kept.append(record)
    return kept, duplicates


__all__ = ["dedupe", "import_fingerprint", "record_fingerprint"]
