import json
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from kakeibo_import.categories import InMemoryCatalog
from kakeibo_import.models import Direction, FinancialRecord
from kakeibo_import.rules import (
    DEFAULT_RULE_PRIORITY,
    DEFAULT_RULES,
    LEARNED_RULE_PRIORITY,
    ClassificationRule,
    MatchType,
    RuleStore,
)
from kakeibo_import.text import normalize

E = Direction.EXPENSE
I = Direction.INCOME


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog.default()


def _cat_id(catalog: InMemoryCatalog, name: str, direction: Direction = E) -> str:
    cat = catalog.find_category(name, direction)
    assert cat is not None, name
    return cat.id


def _rule(keyword: str, target: str | None, *, priority: int = 0, **kw) -> ClassificationRule:
    return ClassificationRule(
        keyword=keyword, target_category_id=target, priority=priority, **kw
    )


# ---- rule model ----------------------------------------------------------------


def test_rule_validation():
    with pytest.raises(ValidationError):
        ClassificationRule(keyword="  ", target_category_id="x")
    with pytest.raises(ValidationError):
        ClassificationRule(keyword="x", direction=Direction.TRANSFER)
    # A disabled rule may be blank.
    assert not ClassificationRule(keyword="", enabled=False).matches("anything")


@pytest.mark.parametrize(
    ("match_type", "text", "expected"),
    [
        (MatchType.CONTAINS, "ｾﾌﾞﾝｲﾚﾌﾞﾝ 新宿", True),
        (MatchType.PREFIX, "セブンイレブン 新宿", True),
        (MatchType.PREFIX, "新宿セブンイレブン", False),
        (MatchType.SUFFIX, "新宿 セブンイレブン", True),
        (MatchType.EXACT, "セブンイレブン", True),
        (MatchType.EXACT, "セブンイレブン 新宿", False),
    ],
)
def test_match_types(match_type: MatchType, text: str, expected: bool):
    rule = ClassificationRule(keyword="セブンイレブン", match_type=match_type)
    assert rule.matches(text) is expected


# ---- matching ------------------------------------------------------------------


@pytest.mark.parametrize("low_first", [True, False])
def test_higher_priority_wins_regardless_of_insertion_order(low_first: bool):
    low = _rule("セブン", "low", priority=10)
    high = _rule("セブンイレブン", "high", priority=90)
    store = RuleStore([low, high] if low_first else [high, low])
    assert store.find_matching_rule("セブンイレブン 渋谷", E) is high


def test_equal_priority_keeps_insertion_order():
    first = _rule("セブン", "a", priority=5)
    second = _rule("イレブン", "b", priority=5)
    store = RuleStore([first, second])
    assert store.find_matching_rule("セブンイレブン", E) is first


def test_disabled_and_other_direction_rules_are_ignored():
    store = RuleStore(
        [
            _rule("給与", "x", enabled=False),
            _rule("給与", "y", direction=I),
        ]
    )
    assert store.find_matching_rule("給与振込", E) is None
    assert store.find_matching_rule("給与振込", I).target_category_id == "y"


def test_suggest_category_uses_rules_then_heuristics(catalog):
    store = RuleStore([_rule("珈琲館", _cat_id(catalog, "カフェ"))])
    assert store.suggest_category("珈琲館 新宿店", E, catalog) == _cat_id(catalog, "カフェ")
    assert store.suggest_category("ローソン 新宿", E, catalog) == _cat_id(catalog, "コンビニ")
    # Rules only without a catalog.
    assert store.suggest_category("ローソン 新宿", E) is None
    assert store.suggest_category("ローソン", Direction.TRANSFER, catalog) is None


def test_dangling_rule_falls_through_to_heuristics(catalog):
    store = RuleStore([_rule("セブン", None, priority=99), _rule("ローソン", "deleted-id")])
    assert store.suggest_category("セブンイレブン", E, catalog) == _cat_id(catalog, "コンビニ")
    assert store.suggest_category("ローソン", E, catalog) == _cat_id(catalog, "コンビニ")


def test_heuristic_override_only_for_low_priority_rules_when_enabled(catalog):
    cafe = _cat_id(catalog, "カフェ")
    dining = _cat_id(catalog, "外食")
    low = RuleStore([_rule("マクドナルド", cafe, priority=LEARNED_RULE_PRIORITY)])
    assert low.suggest_category("マクドナルド", E, catalog) == cafe

    low.allow_heuristic_override = True
    assert low.suggest_category("マクドナルド", E, catalog) == dining

    high = RuleStore(
        [_rule("マクドナルド", cafe, priority=DEFAULT_RULE_PRIORITY + 10)],
        allow_heuristic_override=True,
    )
    assert high.suggest_category("マクドナルド", E, catalog) == cafe


def test_suggest_category_from_tries_texts_in_order(catalog):
    store = RuleStore()
    found = store.suggest_category_from(["謎", "ファミマ"], E, catalog)
    assert found == _cat_id(catalog, "コンビニ")
    assert store.suggest_category_from([], E, catalog) is None


# ---- editing -------------------------------------------------------------------


def test_add_with_check_reports_conflicts_and_overwrite_replaces():
    store = RuleStore()
    original = _rule("seven", "a")
    assert store.add_with_check(original) == (True, None)

    clash = _rule("ＳＥＶＥＮ", "b")
    added, existing = store.add_with_check(clash)
    assert not added
    assert existing is original
    assert len(store) == 1

    # The same keyword for the other direction is not a conflict.
    assert store.add_with_check(_rule("seven", "c", direction=I))[0]

    assert store.overwrite(original.id, clash)
    assert store.get(clash.id) is clash
    assert store.get(original.id) is None
    assert not store.overwrite("missing", clash)


def test_update_and_delete():
    rule = _rule("a", "x")
    store = RuleStore([rule])
    assert store.update(rule.model_copy(update={"priority": 7}))
    assert store.get(rule.id).priority == 7
    assert not store.update(_rule("b", "y"))
    assert store.delete(rule.id)
    assert not store.delete(rule.id)


def test_reorder_assigns_descending_priorities():
    a, b, c = _rule("a", "1"), _rule("b", "2"), _rule("c", "3")
    store = RuleStore([a, b, c])
    store.reorder([c.id, a.id, b.id])
    assert [(r.id, r.priority) for r in store.rules] == [(c.id, 3), (a.id, 2), (b.id, 1)]

    with pytest.raises(ValueError):
        store.reorder([a.id, b.id])
    with pytest.raises(ValueError):
        store.reorder([a.id, a.id, b.id])


def test_clear_and_restore():
    rules = [_rule("a", "1"), _rule("b", "2")]
    store = RuleStore(rules)
    store.clear()
    assert len(store) == 0
    store.restore(rules)
    assert store.rules == tuple(rules)


def test_concurrent_adds_are_serialized(tmp_path: Path):
    path = tmp_path / "rules.json"
    store = RuleStore(path=path)
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: store.add_with_check(_rule(f"店{i}", "c")), range(40)))

    assert len(store) == 40
    assert len(RuleStore.load(path)) == 40


# ---- learning ------------------------------------------------------------------


def test_learning_creates_exactly_one_rule(catalog):
    cafe = _cat_id(catalog, "カフェ")
    store = RuleStore()
    record = FinancialRecord(
        date=date(2025, 7, 1), direction=E, amount=480, memo="珈琲館 新宿", category_id=cafe
    )

    learned = store.learn(record)
    assert learned is not None
    assert (learned.keyword, learned.target_category_id, learned.priority) == (
        "珈琲館 新宿",
        cafe,
        LEARNED_RULE_PRIORITY,
    )
    assert store.learn(record) is None
    assert len(store) == 1


def test_learning_skips_unusable_records():
    store = RuleStore()
    day = date(2025, 7, 1)
    assert store.learn(FinancialRecord(date=day, direction=E, amount=1, memo="珈琲館")) is None
    assert (
        store.learn(FinancialRecord(date=day, direction=E, amount=1, memo="x", category_id="c"))
        is None
    )
    transfer = FinancialRecord(
        date=day, direction=Direction.TRANSFER, amount=1, memo="チャージ", category_id="c"
    )
    assert store.learn(transfer) is None
    assert len(store) == 0


# ---- defaults and persistence --------------------------------------------------


def test_default_rules_seed_once(catalog):
    store = RuleStore()
    added = store.ensure_default_rules(catalog)
    assert added > 0
    assert all(r.priority == DEFAULT_RULE_PRIORITY for r in store.rules)
    assert all(catalog.get(r.target_category_id) is not None for r in store.rules)
    assert store.ensure_default_rules(catalog) == 0


def test_existing_store_only_gains_income_defaults(catalog):
    store = RuleStore([_rule("自分のルール", _cat_id(catalog, "雑貨"))])
    income_keywords = {normalize(k) for k, _, d in DEFAULT_RULES if d is I}
    assert store.ensure_default_rules(catalog) == len(income_keywords)
    assert {r.direction for r in store.rules[1:]} == {I}


def test_save_and_load_round_trip(tmp_path: Path, catalog):
    path = tmp_path / "rules.json"
    store = RuleStore(path=path)
    rule = store.add(_rule("珈琲館", _cat_id(catalog, "カフェ"), priority=3))

    doc = json.loads(path.read_text(encoding="utf-8"))
    assert doc["schema_version"] == 1
    assert doc["rules"][0]["matchType"] == "contains"
    assert doc["rules"][0]["transactionType"] == "expense"
    assert not list(tmp_path.glob("*.tmp"))

    loaded = RuleStore.load(path)
    assert loaded.rules == (rule,)


def test_load_migrates_legacy_documents(tmp_path: Path, catalog):
    path = tmp_path / "rules.json"
    legacy = [
        {
            "id": "A1",
            "keyword": "ローソン",
            "matchType": "contains",
            "targetCategory": "コンビニ",
            "transactionType": "expense",
            "isEnabled": True,
            "priority": 5,
            "createdAt": 700000000,
        },
        {"keyword": "山田商店", "targetCategory": "雑貨", "transactionType": "expense"},
        {"keyword": "", "isEnabled": True},
    ]
    path.write_text(json.dumps(legacy, ensure_ascii=False), encoding="utf-8")

    store = RuleStore.load(path, catalog=catalog)

    assert len(store) == 2
    lawson, shop = store.rules
    assert lawson.id == "A1"
    assert lawson.target_category_id == _cat_id(catalog, "コンビニ")
    assert lawson.created_at == datetime(2001, 1, 1, tzinfo=UTC) + timedelta(seconds=700000000)
    assert shop.target_category_id == _cat_id(catalog, "雑貨")
    # Migration rewrites the file in the current format.
    assert json.loads(path.read_text(encoding="utf-8"))["schema_version"] == 1


def test_load_missing_file_is_empty(tmp_path: Path):
    assert len(RuleStore.load(tmp_path / "none.json")) == 0
