import pytest
from pydantic import ValidationError

from kakeibo_import.columns import (
    DIRECTION_STRATEGIES,
    EMPTY_HEADER_MAP,
    FIXED_CARD_MAP,
    ColumnMap,
    ManualMapping,
    Resolution,
    build_column_map,
    resolve_direction,
)
from kakeibo_import.models import Direction, ImportFormat

BANK_HEADER = ("日付", "摘要", "出金額", "入金額", "残高")
TYPE_HEADER = ("日付", "区分", "金額", "内容")


def test_strategy_order_is_fixed():
    assert [s.name for s in DIRECTION_STRATEGIES] == [
        "debit_credit",
        "type_column",
        "amount_sign",
        "layout_default",
    ]


def test_bank_header_mapping():
    cmap = build_column_map(BANK_HEADER, ImportFormat.BANK_GENERIC)
    assert (cmap.date, cmap.memo, cmap.debit, cmap.credit) == (0, 1, 2, 3)
    assert cmap.type is None
    assert cmap.has_debit_and_credit


def test_leftmost_matching_column_wins():
    cmap = build_column_map(("摘要", "日付", "金額", "メモ"), ImportFormat.CARD_GENERIC)
    assert cmap.memo == 0
    assert cmap.date == 1

    cmap = build_column_map(("日付", "内容", "金額", "メモ"), ImportFormat.CARD_GENERIC)
    assert (cmap.date, cmap.memo, cmap.amount) == (0, 1, 2)


def test_fixed_and_fallback_maps():
    assert build_column_map(("whatever",), ImportFormat.AMAZON_CARD) == FIXED_CARD_MAP
    assert build_column_map((), None) == EMPTY_HEADER_MAP
    assert build_column_map(("", " "), ImportFormat.CARD_GENERIC) == EMPTY_HEADER_MAP


# ---- direction resolution ---------------------------------------------------------


def test_debit_column_means_expense_and_credit_means_income():
    cmap = build_column_map(BANK_HEADER, ImportFormat.BANK_GENERIC)
    fmt = ImportFormat.BANK_GENERIC
    debit_row = ("2025/01/01", "ATM", "3,000", "", "10000")
    credit_row = ("2025/01/02", "給与", "", "250,000", "260000")
    assert resolve_direction(debit_row, cmap, fmt) == Resolution(Direction.EXPENSE, 3000)
    assert resolve_direction(credit_row, cmap, fmt) == Resolution(Direction.INCOME, 250000)


def test_debit_and_credit_both_empty_is_unparseable():
    cmap = build_column_map(BANK_HEADER, ImportFormat.BANK_GENERIC)
    row = ("2025/01/01", "x", "", "", "1")
    assert resolve_direction(row, cmap, ImportFormat.BANK_GENERIC) is None


@pytest.mark.parametrize(
    ("kind", "fmt", "expected"),
    [
        ("出金", ImportFormat.BANK_GENERIC, Direction.EXPENSE),
        ("お支払い", ImportFormat.BANK_GENERIC, Direction.EXPENSE),
        ("入金", ImportFormat.CARD_GENERIC, Direction.INCOME),
        ("利息", ImportFormat.CARD_GENERIC, Direction.INCOME),
        # Transfer wording matches neither vocabulary and falls through to the
        # layout default.
        ("振込", ImportFormat.BANK_GENERIC, Direction.INCOME),
        ("振込", ImportFormat.CARD_GENERIC, Direction.EXPENSE),
    ],
)
def test_type_column(kind: str, fmt: ImportFormat, expected: Direction):
    cmap = build_column_map(TYPE_HEADER, fmt)
    assert cmap.type == 1
    assert resolve_direction(("2025/01/01", kind, "1,000", "memo"), cmap, fmt) == Resolution(
        expected, 1000
    )


def test_negative_amount_is_expense_and_positive_uses_layout_default():
    cmap = ColumnMap(date=0, amount=1)
    row_neg = ("2025/01/01", "-500")
    row_pos = ("2025/01/01", "500")
    assert resolve_direction(row_neg, cmap, ImportFormat.BANK_GENERIC) == Resolution(
        Direction.EXPENSE, 500
    )
    assert resolve_direction(row_pos, cmap, ImportFormat.BANK_GENERIC) == Resolution(
        Direction.INCOME, 500
    )
    assert resolve_direction(row_pos, cmap, ImportFormat.CARD_GENERIC) == Resolution(
        Direction.EXPENSE, 500
    )


def test_unparseable_amount_stops_resolution():
    cmap = ColumnMap(date=0, amount=1)
    assert resolve_direction(("2025/01/01", "abc"), cmap, ImportFormat.CARD_GENERIC) is None


def test_lone_debit_column_carries_direction():
    cmap = ColumnMap(date=0, debit=1)
    expected = Resolution(Direction.EXPENSE, 300)
    assert resolve_direction(("2025/01/01", "300"), cmap, None) == expected


# ---- manual mapping ------------------------------------------------------------


def test_manual_mapping_overlays_indices():
    manual = ManualMapping.model_validate({"dateColumn": 1, "amountColumn": 3, "name": "mine"})
    cmap = ColumnMap(date=0, memo=1, amount=2).apply(manual)
    assert (cmap.date, cmap.memo, cmap.amount) == (1, 1, 3)
    assert ColumnMap(date=0).apply(None) == ColumnMap(date=0)


def test_manual_mapping_rejects_negative_indices():
    with pytest.raises(ValidationError):
        ManualMapping.model_validate({"dateColumn": -1})


def test_manual_mapping_template():
    t = ManualMapping.template(ImportFormat.BANK_GENERIC)
    assert (t.date, t.memo, t.debit, t.credit) == (0, 1, 2, 3)
    assert t.format_hint == "bank_generic"
    assert ManualMapping.template(ImportFormat.CARD_GENERIC).amount == 2
