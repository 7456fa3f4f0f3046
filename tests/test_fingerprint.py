from datetime import date

from kakeibo_import.fingerprint import dedupe, import_fingerprint, record_fingerprint
from kakeibo_import.models import Direction, FinancialRecord


def _rec(**kw) -> FinancialRecord:
    base = {
        "date": date(2025, 7, 1),
        "direction": Direction.EXPENSE,
        "amount": 500,
        "memo": "coffee",
    }
    base.update(kw)
    return FinancialRecord(**base)


def test_import_fingerprint_ignores_record_identity_and_text_form():
    a = _rec(memo="ＣＯＦＦＥＥ　SHOP")
    b = _rec(memo="coffee shop")
    assert a.record_id != b.record_id
    assert import_fingerprint(a) == import_fingerprint(b)
    assert len(import_fingerprint(a)) == 64


def test_import_fingerprint_separates_day_direction_and_amount():
    base = import_fingerprint(_rec())
    assert import_fingerprint(_rec(date=date(2025, 7, 2))) != base
    assert import_fingerprint(_rec(direction=Direction.INCOME)) != base
    assert import_fingerprint(_rec(amount=501)) != base


def test_source_id_only_counts_with_a_source():
    assert import_fingerprint(_rec(source_id="TX1")) == import_fingerprint(_rec(source_id="TX2"))
    assert import_fingerprint(_rec(source="paypay", source_id="TX1")) != import_fingerprint(
        _rec(source="paypay", source_id="TX2")
    )


def test_record_fingerprint_includes_category_and_accounts():
    plain = _rec()
    assert record_fingerprint(plain.with_category("cat-a")) != record_fingerprint(
        plain.with_category("cat-b")
    )
    assert record_fingerprint(_rec(category_label="食費")) == record_fingerprint(
        _rec(), category_name="食費"
    )
    assert record_fingerprint(_rec(account_id="wallet")) != record_fingerprint(plain)

    t1 = _rec(direction=Direction.TRANSFER, account_id="bank", to_account_id="paypay")
    t2 = _rec(direction=Direction.TRANSFER, account_id="bank", to_account_id="suica")
    assert record_fingerprint(t1) != record_fingerprint(t2)


def test_record_fingerprint_separates_source_ids():
    a = _rec(source="paypay", source_id="TX0001")
    b = _rec(source="PayPay", source_id="TX0002")
    assert record_fingerprint(a) != record_fingerprint(b)
    assert record_fingerprint(a) == record_fingerprint(_rec(source="ＰａｙＰａｙ", source_id="TX0001"))
    assert record_fingerprint(_rec(source="paypay")) != record_fingerprint(_rec())


def test_dedupe_within_batch_and_against_existing():
    first = _rec()
    again = _rec()
    other = _rec(amount=900)
    stored = _rec(memo="already stored")

    kept, dups = dedupe([first, again, other, stored], {import_fingerprint(stored)})
    assert kept == [first, other]
    assert dups == 2


def test_dedupe_with_record_key():
    a = _rec().with_category("x")
    b = _rec().with_category("y")
    kept, dups = dedupe([a, b], key=record_fingerprint)
    assert kept == [a, b]
    assert dups == 0
