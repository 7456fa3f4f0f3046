"""Public API and orchestration for the ``kakeibo_import`` package.

Public API:
    - :func:`detect_format` - ranked format verdicts for a text
    - :func:`import_text` - the full import run
    - :func:`read_export_text` - decode an export file from disk

:func:`import_text` stages, in order: prepare and tokenize the text, detect
the layout (honoring a caller override), extract records, drop duplicates by
import-time fingerprint, resolve categories with the rule store and catalog,
optionally run a remote classifier over what is still unresolved, drop
duplicates by post-categorization fingerprint, and hand the survivors to the
sink.
"""

from __future__ import annotations

import codecs
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from pathlib import Path

from .categories import OTHER_CATEGORY_NAME, CategoryCatalog, CategoryHint
from .columns import ManualMapping
from .detectors import detect_with_confidence, resolve_format
from .extract import extract_records
from .fingerprint import dedupe, import_fingerprint, record_fingerprint
from .logging_setup import get_logger
from .models import (
    ClassificationResult,
    DetectionResult,
    Direction,
    FinancialRecord,
    ImportFormat,
    ImportResult,
)
from .persistence import RecordSink
from .remote import apply_updates, eligible_records
from .rules import RuleStore
from .tokenizer import parse, prepare_text

_logger = get_logger("kakeibo_import.api")

MAX_UNCLASSIFIED_SAMPLES: int = 50
MAX_CATEGORY_HINTS: int = 20
EMPTY_INPUT_ERROR = "input is empty"

type Classifier = Callable[[Sequence[FinancialRecord]], ClassificationResult]

# Tried in order; UTF-16 only when the file starts with its BOM.
FALLBACK_ENCODINGS: tuple[str, ...] = ("utf-8-sig", "cp932", "euc_jp")


def read_export_text(path: Path) -> str:
    """Decode an export file: UTF-8, UTF-16 (with BOM), Shift_JIS, then EUC-JP."""

    data = path.read_bytes()
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return data.decode("utf-16")
    for encoding in FALLBACK_ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise ValueError(f"could not decode {path} as UTF-8, Shift_JIS or EUC-JP")


def detect_format(text: str) -> list[DetectionResult]:
    """Return every matching format verdict for ``text``, best first."""

    return detect_with_confidence(parse(prepare_text(text)))


def _categorize(
    record: FinancialRecord, *, catalog: CategoryCatalog, rules: RuleStore
) -> FinancialRecord:
    if record.direction is Direction.TRANSFER or record.category_id is not None:
        return record
    texts = [t for t in (record.memo, record.category_label) if t]
    cat_id = rules.suggest_category_from(texts, record.direction, catalog)
    if cat_id is None and record.category_label:
        cat = catalog.find_category(record.category_label, record.direction)
        cat_id = cat.id if cat is not None else None
    return record.with_category(cat_id) if cat_id is not None else record


def _is_unclassified(record: FinancialRecord, catalog: CategoryCatalog) -> bool:
    if record.direction is Direction.TRANSFER:
        return False
    if record.category_id is None:
        return True
    cat = catalog.get(record.category_id)
    return cat is not None and cat.name == OTHER_CATEGORY_NAME


def unclassified_samples(
    records: Iterable[FinancialRecord],
    catalog: CategoryCatalog,
    limit: int = MAX_UNCLASSIFIED_SAMPLES,
) -> list[str]:
    """Distinct memos (or an amount placeholder) of records left unclassified."""

    samples: dict[str, None] = {}
    for r in records:
        if len(samples) >= limit:
            break
        if not _is_unclassified(r, catalog):
            continue
        memo = r.memo.strip()
        samples.setdefault(memo or f"(メモなし) {r.amount}円", None)
    return list(samples)


def collect_hints(
    records: Iterable[FinancialRecord],
    catalog: CategoryCatalog,
    limit: int = MAX_CATEGORY_HINTS,
) -> list[CategoryHint]:
    """Few-shot examples for the remote classifier from already-categorized records.

    Newest records first. Transfers and blank memos are skipped, as are records
    whose category is not in ``catalog``. One hint per memo and category name.
    """

    hints: list[CategoryHint] = []
    seen: set[str] = set()
    for r in sorted(records, key=lambda r: r.date, reverse=True):
        if len(hints) >= limit:
            break
        if r.direction is Direction.TRANSFER or r.category_id is None:
            continue
        memo = r.memo.strip()
        cat = catalog.get(r.category_id)
        if not memo or cat is None:
            continue
        key = f"{memo}|{cat.name}"
        if key in seen:
            continue
        seen.add(key)
        hints.append(CategoryHint(category_name=cat.name, description=memo, group=cat.group))
    return hints


def import_text(
    text: str,
    *,
    catalog: CategoryCatalog,
    rules: RuleStore,
    sink: RecordSink | None = None,
    existing: Iterable[FinancialRecord] = (),
    format_override: ImportFormat | None = None,
    manual_mapping: ManualMapping | None = None,
    source: str | None = None,
    account_id: str | None = None,
    classifier: Classifier | None = None,
    import_id: str | None = None,
) -> ImportResult:
    """Import one export text and return the run summary.

    ``existing`` are records already stored elsewhere; together with the
    sink's stored fingerprints they are the baseline for duplicate checks.
    Without a sink nothing is stored and ``added_record_ids`` lists what
    would have been.
    """

    import_id = import_id or uuid.uuid4().hex
    rows = parse(prepare_text(text))
    if not rows:
        return ImportResult(import_id=import_id, import_format=None, errors=(EMPTY_INPUT_ERROR,))

    detections = tuple(detect_with_confidence(rows))
    fmt = resolve_format(rows, format_override)
    _logger.info(
        "import:start import_id=%s format=%s rows=%d",
        import_id,
        fmt.code if fmt else "-",
        len(rows),
    )

    extraction = extract_records(rows, fmt, manual_mapping=manual_mapping, source=source)
    records = extraction.records
    if account_id is not None:
        records = [replace(r, account_id=account_id) for r in records]

    existing = list(existing)
    known_import = {import_fingerprint(r) for r in existing}
    known_record = {record_fingerprint(r) for r in existing}
    if sink is not None:
        known_import |= sink.existing_fingerprints()
        known_record |= sink.existing_record_fingerprints()

    records, dup_import = dedupe(records, known_import)
    records = [_categorize(r, catalog=catalog, rules=rules) for r in records]

    classification: ClassificationResult | None = None
    if classifier is not None and eligible_records(records):
        classification = classifier(records)
        records = apply_updates(records, classification.updates)
        if classification.error is not None:
            _logger.warning(
                "import:classification_stopped import_id=%s kind=%s",
                import_id,
                classification.error.kind.value,
            )

    records, dup_record = dedupe(records, known_record, key=record_fingerprint)

    if sink is not None:
        added_ids = sink.persist(records, import_id=import_id, import_format=fmt)
    else:
        added_ids = [r.record_id for r in records]

    result = ImportResult(
        import_id=import_id,
        import_format=fmt,
        detections=detections,
        added=len(added_ids),
        duplicate_skipped=dup_import + dup_record,
        invalid_skipped=extraction.invalid,
        errors=tuple(extraction.errors),
        added_record_ids=tuple(added_ids),
        unclassified_samples=tuple(unclassified_samples(records, catalog)),
        records=tuple(records),
        classification=classification,
    )
    _logger.info("import:done import_id=%s %s", import_id, result.summary)
    return result


__all__ = [
    "EMPTY_INPUT_ERROR",
    "MAX_CATEGORY_HINTS",
    "MAX_UNCLASSIFIED_SAMPLES",
    "Classifier",
    "collect_hints",
    "detect_format",
    "import_text",
    "read_export_text",
    "unclassified_samples",
]
