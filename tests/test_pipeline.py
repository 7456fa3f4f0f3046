# ruff: noqa: E501
from datetime import date
from functools import partial

import pytest

from kakeibo_import.api import (
    EMPTY_INPUT_ERROR,
    MAX_CATEGORY_HINTS,
    collect_hints,
    detect_format,
    import_text,
    read_export_text,
    unclassified_samples,
)
from kakeibo_import.categories import InMemoryCatalog
from kakeibo_import.config import ClassifierSettings
from kakeibo_import.errors import ClassificationErrorKind
from kakeibo_import.models import (
    Assignment,
    ClassificationResult,
    DetectionConfidence,
    Direction,
    FinancialRecord,
    ImportFormat,
)
from kakeibo_import.persistence import MemoryRecordSink
from kakeibo_import.remote import classify_unresolved
from kakeibo_import.rules import ClassificationRule, RuleStore
from tests.helpers.openai_stub import OpenAIRawStub, request_transactions, result, results_body

APP_TEXT = "日付,種類,金額,カテゴリ,メモ\n2025/01/01,支出,1000,食費,コンビニ\n2025/01/02,収入,200000,給与,1月分"


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog.default()


def _cat(catalog: InMemoryCatalog, name: str, direction: Direction = Direction.EXPENSE) -> str:
    return catalog.find_category(name, direction).id


def _store(catalog: InMemoryCatalog) -> RuleStore:
    return RuleStore(
        [ClassificationRule(keyword="コンビニ", target_category_id=_cat(catalog, "コンビニ"))]
    )


# ---- End to end ----------------------------------------------------------------


def test_app_export_is_detected_extracted_and_categorized(catalog):
    out = import_text(APP_TEXT, catalog=catalog, rules=_store(catalog))

    assert out.import_format is ImportFormat.APP_EXPORT
    assert out.detections[0].format is ImportFormat.APP_EXPORT
    assert out.detections[0].confidence is DetectionConfidence.HIGH
    assert out.added == 2 and out.summary == "added=2"
    assert out.errors == ()

    expense, income = out.records
    assert (expense.date, expense.direction, expense.amount, expense.memo) == (
        date(2025, 1, 1),
        Direction.EXPENSE,
        1000,
        "コンビニ",
    )
    assert expense.category_id == _cat(catalog, "コンビニ")
    assert income.direction is Direction.INCOME and income.amount == 200000
    assert income.category_id == _cat(catalog, "給与", Direction.INCOME)
    assert out.unclassified_samples == ()
    assert out.added_record_ids == (expense.record_id, income.record_id)


def test_detect_format_ranks_app_export_first():
    results = detect_format(APP_TEXT)
    assert results[0].format is ImportFormat.APP_EXPORT
    assert [r.format for r in results if r.confidence is DetectionConfidence.HIGH] == [
        ImportFormat.APP_EXPORT
    ]


def test_empty_input_reports_an_error(catalog):
    out = import_text("", catalog=catalog, rules=RuleStore())
    assert out.import_format is None
    assert out.added == 0
    assert out.errors == (EMPTY_INPUT_ERROR,)
    assert out.success_rate == 0.0


def test_invalid_rows_are_counted_and_reported(catalog):
    text = APP_TEXT + "\nbad,支出,1000,食費,x"
    out = import_text(text, catalog=catalog, rules=RuleStore())
    assert (out.added, out.invalid_skipped) == (2, 1)
    assert out.errors == ("row 4: invalid date: 'bad'",)
    assert out.summary == "added=2 invalid=1"
    assert out.success_rate == pytest.approx(2 / 3)


def test_account_id_is_stamped_on_every_record(catalog):
    out = import_text(APP_TEXT, catalog=catalog, rules=RuleStore(), account_id="wallet-1")
    assert {r.account_id for r in out.records} == {"wallet-1"}


# ---- Duplicates ----------------------------------------------------------------


def test_reimporting_the_same_text_adds_nothing(catalog):
    sink = MemoryRecordSink()
    first = import_text(APP_TEXT, catalog=catalog, rules=_store(catalog), sink=sink)
    second = import_text(APP_TEXT, catalog=catalog, rules=_store(catalog), sink=sink)

    assert first.added == 2
    assert (second.added, second.duplicate_skipped) == (0, 2)
    assert second.summary == "added=0 duplicates=2"
    assert len(sink.records) == 2
    assert sink.imports == [first.import_id, second.import_id]


def test_duplicate_rows_within_one_file_are_dropped(catalog):
    text = APP_TEXT + "\n2025/01/01,支出,1000,食費,コンビニ"
    out = import_text(text, catalog=catalog, rules=RuleStore())
    assert (out.added, out.duplicate_skipped) == (2, 1)


PAYPAY_TEXT = (
    "取引日,出金金額（円）,入金金額（円）,海外出金金額,通貨,変換レート,利用国,取引内容,取引先,取引方法,支払い区分,利用者,取引番号\n"
    "2025/01/05 10:00:00,500,-,-,-,-,-,支払い,喫茶店A,PayPay残高,-,-,TX0001\n"
    "2025/01/05 15:00:00,500,-,-,-,-,-,支払い,喫茶店A,PayPay残高,-,-,TX0002"
)


def test_distinct_transaction_numbers_are_kept_apart(catalog):
    sink = MemoryRecordSink()
    out = import_text(PAYPAY_TEXT, catalog=catalog, rules=RuleStore(), sink=sink)

    assert out.import_format is ImportFormat.PAYPAY
    assert (out.added, out.duplicate_skipped) == (2, 0)
    assert [r.source_id for r in sink.records] == ["TX0001", "TX0002"]

    again = import_text(PAYPAY_TEXT, catalog=catalog, rules=RuleStore(), sink=sink)
    assert (again.added, again.duplicate_skipped) == (0, 2)


def test_existing_records_count_as_stored(catalog):
    stored = FinancialRecord(
        date=date(2025, 1, 1), direction=Direction.EXPENSE, amount=1000, memo="コンビニ"
    )
    out = import_text(APP_TEXT, catalog=catalog, rules=RuleStore(), existing=[stored])
    assert (out.added, out.duplicate_skipped) == (1, 1)


# ---- Classification --------------------------------------------------------------

UNRESOLVED_TEXT = APP_TEXT + "\n2025/01/03,支出,800,謎カテゴリ,謎の店"


def test_unresolved_records_are_sampled(catalog):
    out = import_text(UNRESOLVED_TEXT, catalog=catalog, rules=_store(catalog))
    assert out.unclassified_samples == ("謎の店",)
    assert out.classification is None


def test_classifier_updates_are_applied_before_storing(catalog):
    cafe = _cat(catalog, "カフェ")
    seen: list[list[FinancialRecord]] = []

    def classifier(records):
        seen.append(list(records))
        pending = [r for r in records if r.category_id is None]
        return ClassificationResult(
            processed=len(pending),
            confirmed=len(pending),
            updates={r.record_id: Assignment(cafe, "喫茶店") for r in pending},
        )

    sink = MemoryRecordSink()
    out = import_text(
        UNRESOLVED_TEXT, catalog=catalog, rules=_store(catalog), sink=sink, classifier=classifier
    )

    assert len(seen) == 1
    assert out.classification.confirmed == 1
    assert sink.records[-1].memo == "謎の店"
    assert sink.records[-1].category_id == cafe
    assert out.unclassified_samples == ()


def test_classifier_is_skipped_when_everything_is_resolved(catalog):
    def classifier(records):
        raise AssertionError("should not be called")

    out = import_text(APP_TEXT, catalog=catalog, rules=_store(catalog), classifier=classifier)
    assert out.classification is None


def test_remote_classifier_end_to_end(catalog):
    cafe = _cat(catalog, "カフェ")

    def reply(kwargs):
        return results_body([result(t["id"], cafe) for t in request_transactions(kwargs)])

    stub = OpenAIRawStub([reply])
    classifier = partial(
        classify_unresolved,
        catalog=catalog,
        settings=ClassifierSettings(),
        api_key_provider=lambda: "sk-test",
        client_factory=stub.factory,
    )
    out = import_text(UNRESOLVED_TEXT, catalog=catalog, rules=_store(catalog), classifier=classifier)

    (sent,) = request_transactions(stub.calls[0])
    assert (sent["description"], sent["memo"], sent["direction"]) == ("謎の店", "謎カテゴリ", "out")
    assert out.records[-1].category_id == cafe
    assert out.classification.summary == "classified 1 of 1 records"


def test_failed_classification_still_imports(catalog):
    classifier = partial(
        classify_unresolved,
        catalog=catalog,
        settings=ClassifierSettings(),
        api_key_provider=lambda: None,
    )
    out = import_text(UNRESOLVED_TEXT, catalog=catalog, rules=_store(catalog), classifier=classifier)

    assert out.added == 3
    assert out.classification.error.kind is ClassificationErrorKind.API_KEY_NOT_SET
    assert out.unclassified_samples == ("謎の店",)


# ---- Category hints ----------------------------------------------------------------


def _spent(day: int, memo: str, category_id: str | None, **kw) -> FinancialRecord:
    kw.setdefault("direction", Direction.EXPENSE)
    return FinancialRecord(
        date=date(2025, 1, day), amount=100, memo=memo, category_id=category_id, **kw
    )


def test_collect_hints_newest_first_and_unique_per_memo_and_category(catalog):
    cafe = _cat(catalog, "カフェ")
    dining = _cat(catalog, "外食")
    records = [
        _spent(1, "喫茶店A", cafe),
        _spent(3, "喫茶店A", cafe),
        _spent(2, "喫茶店A", dining),
        _spent(4, "給料日", _cat(catalog, "給与", Direction.INCOME), direction=Direction.INCOME),
    ]

    hints = collect_hints(records, catalog)

    assert [(h.description, h.category_name) for h in hints] == [
        ("給料日", "給与"),
        ("喫茶店A", "カフェ"),
        ("喫茶店A", "外食"),
    ]
    assert hints[1].group == catalog.get(cafe).group
    assert hints[0].group == "収入"


def test_collect_hints_skips_unusable_records(catalog):
    cafe = _cat(catalog, "カフェ")
    records = [
        _spent(1, "チャージ", cafe, direction=Direction.TRANSFER),
        _spent(2, "未分類の店", None),
        _spent(3, "  ", cafe),
        _spent(4, "削除済み", "deleted-id"),
    ]
    assert collect_hints(records, catalog) == []


def test_collect_hints_stops_at_the_limit(catalog):
    cafe = _cat(catalog, "カフェ")
    records = [_spent(1 + i % 28, f"店{i}", cafe) for i in range(MAX_CATEGORY_HINTS + 5)]

    assert len(collect_hints(records, catalog)) == MAX_CATEGORY_HINTS
    assert len(collect_hints(records, catalog, limit=3)) == 3


# ---- Unclassified samples ----------------------------------------------------------


def test_unclassified_samples_rules(catalog):
    other = _cat(catalog, "その他")
    day = date(2025, 1, 1)
    records = [
        FinancialRecord(date=day, direction=Direction.EXPENSE, amount=100, memo="店A"),
        FinancialRecord(date=day, direction=Direction.EXPENSE, amount=200, memo="店A"),
        FinancialRecord(date=day, direction=Direction.EXPENSE, amount=300, memo=""),
        FinancialRecord(
            date=day, direction=Direction.EXPENSE, amount=400, memo="店B", category_id=other
        ),
        FinancialRecord(
            date=day,
            direction=Direction.EXPENSE,
            amount=500,
            memo="店C",
            category_id=_cat(catalog, "カフェ"),
        ),
        FinancialRecord(date=day, direction=Direction.TRANSFER, amount=600, memo="チャージ"),
    ]
    assert unclassified_samples(records, catalog) == ["店A", "(メモなし) 300円", "店B"]
    assert unclassified_samples(records, catalog, limit=1) == ["店A"]


# ---- Reading files -----------------------------------------------------------------


@pytest.mark.parametrize("encoding", ["utf-8", "utf-8-sig", "cp932", "utf-16"])
def test_read_export_text_decodes_common_encodings(tmp_path, encoding):
    path = tmp_path / "export.csv"
    path.write_bytes(APP_TEXT.encode(encoding))
    assert read_export_text(path) == APP_TEXT
