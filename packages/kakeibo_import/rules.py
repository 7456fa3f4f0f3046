"""Keyword classification rules and the rule store.

A :class:`ClassificationRule` maps a keyword (matched against normalized
memo text) to a target category for one direction. :class:`RuleStore` owns
the ordered rule list: it is a plain object passed to whoever needs it, and
every mutation (and the file write that follows it) runs under the store's
own lock.

Matching: enabled rules for the record's direction are tried in descending
priority (stable, so among equal priorities the earlier-added rule wins).
A rule whose target id is missing (or unknown to the catalog) counts as no
match. When no rule matches, the built-in heuristic table
(:mod:`kakeibo_import.heuristics`) is consulted and its category name
resolved against the caller's catalog.

Persistence is optional: with a ``path`` the store writes a versioned JSON
document atomically after every mutation. Older documents (a bare list,
camelCase keys, a ``targetCategory`` name instead of an id, timestamps in
seconds since 2001-01-01) are migrated when loaded.
"""

from __future__ import annotations

import contextlib
import functools
import json
import os
import threading
import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .categories import CategoryCatalog
from .heuristics import suggest_category_name
from .logging_setup import get_logger
from .models import Direction, FinancialRecord
from .text import normalize

_logger = get_logger("kakeibo_import.rules")

RULES_SCHEMA_VERSION: int = 1

DEFAULT_RULE_PRIORITY: int = 50
LEARNED_RULE_PRIORITY: int = 20
MIN_LEARNED_KEYWORD_LENGTH: int = 2

# Timestamps in older rule files count seconds from 2001-01-01 UTC.
_REFERENCE_EPOCH = datetime(2001, 1, 1, tzinfo=UTC)


class MatchType(str, Enum):
    CONTAINS = "contains"
    PREFIX = "prefix"
    SUFFIX = "suffix"
    EXACT = "exact"


def new_rule_id() -> str:
    return str(uuid.uuid4()).upper()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ClassificationRule(BaseModel):
    """One keyword rule. Field aliases are the on-disk (camelCase) names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=new_rule_id)
    keyword: str
    match_type: MatchType = Field(default=MatchType.CONTAINS, alias="matchType")
    target_category_id: str | None = Field(default=None, alias="targetCategoryId")
    target_category_name: str | None = Field(default=None, alias="targetCategoryName")
    direction: Direction = Field(default=Direction.EXPENSE, alias="transactionType")
    enabled: bool = Field(default=True, alias="isEnabled")
    priority: int = 0
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "targetCategory" not in data:
            return data
        data = dict(data)
        legacy_name = data.pop("targetCategory")
        has_id = data.get("targetCategoryId") or data.get("target_category_id")
        if isinstance(legacy_name, str) and not has_id:
            data["targetCategoryName"] = legacy_name
        return data

    @field_validator("created_at", mode="before")
    @classmethod
    def _reference_date(cls, v: Any) -> Any:
        if isinstance(v, int | float) and not isinstance(v, bool):
            return _REFERENCE_EPOCH + timedelta(seconds=v)
        return v

    @field_validator("direction")
    @classmethod
    def _not_transfer(cls, v: Direction) -> Direction:
        if v is Direction.TRANSFER:
            raise ValueError("rules apply to expense or income records only")
        return v

    @model_validator(mode="after")
    def _enabled_needs_keyword(self) -> ClassificationRule:
        if self.enabled and not self.keyword.strip():
            raise ValueError("an enabled rule needs a non-empty keyword")
        return self

    @property
    def normalized_keyword(self) -> str:
        return normalize(self.keyword)

    def matches(self, text: str) -> bool:
        """Apply the rule's match type to normalized ``text``."""

        if not self.enabled or not self.keyword:
            return False
        t = normalize(text)
        k = self.normalized_keyword
        if not k:
            return False
        if self.match_type is MatchType.CONTAINS:
            return k in t
        if self.match_type is MatchType.PREFIX:
            return t.startswith(k)
        if self.match_type is MatchType.SUFFIX:
            return t.endswith(k)
        return t == k


class RuleFile(BaseModel):
    """On-disk document shape."""

    model_config = ConfigDict(extra="ignore")

    schema_version: int = RULES_SCHEMA_VERSION
    rules: list[dict[str, Any]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Default keyword table
# ---------------------------------------------------------------------------

_E = Direction.EXPENSE
_I = Direction.INCOME

DEFAULT_RULES: tuple[tuple[str, str, Direction], ...] = (
    ("セブン", "コンビニ", _E),
    ("ファミマ", "コンビニ", _E),
    ("ローソン", "コンビニ", _E),
    ("ミニストップ", "コンビニ", _E),
    ("DAILY YAMAZAKI", "コンビニ", _E),
    ("イオン", "スーパー", _E),
    ("イトーヨーカドー", "スーパー", _E),
    ("ライフ", "スーパー", _E),
    ("オーケー", "スーパー", _E),
    ("西友", "スーパー", _E),
    ("まいばすけっと", "スーパー", _E),
    ("マクドナルド", "外食", _E),
    ("スターバックス", "カフェ", _E),
    ("スタバ", "カフェ", _E),
    ("ドトール", "カフェ", _E),
    ("タリーズ", "カフェ", _E),
    ("サイゼリヤ", "外食", _E),
    ("すき家", "外食", _E),
    ("松屋", "外食", _E),
    ("吉野家", "外食", _E),
    ("くら寿司", "外食", _E),
    ("スシロー", "外食", _E),
    ("Uber", "デリバリー", _E),
    ("出前館", "デリバリー", _E),
    ("Amazon", "Amazon", _E),
    ("アマゾン", "Amazon", _E),
    ("ユニクロ", "衣服", _E),
    ("GU", "衣服", _E),
    ("ニトリ", "家具・インテリア", _E),
    ("ダイソー", "雑貨", _E),
    ("セリア", "雑貨", _E),
    ("マツモトキヨシ", "ドラッグストア", _E),
    ("ウエルシア", "ドラッグストア", _E),
    ("JR", "電車・駅", _E),
    ("スイカ", "交通費", _E),
    ("Suica", "交通費", _E),
    ("パスモ", "交通費", _E),
    ("PASMO", "交通費", _E),
    ("タクシー", "タクシー", _E),
    ("ENEOS", "ガソリン", _E),
    ("出光", "ガソリン", _E),
    ("ETC", "高速道路", _E),
    ("ソフトバンク", "通信費", _E),
    ("ドコモ", "通信費", _E),
    ("KDDI", "通信費", _E),
    ("楽天モバイル", "通信費", _E),
    ("NTT", "通信費", _E),
    ("APPLE", "サブスク・デジタル", _E),
    ("GOOGLE", "サブスク・デジタル", _E),
    ("NETFLIX", "サブスク・デジタル", _E),
    ("Spotify", "サブスク・デジタル", _E),
    ("YOUTUBE", "サブスク・デジタル", _E),
    ("Uber", "サブスク・デジタル", _E),
    ("LINE", "サブスク・デジタル", _E),
    ("未来都", "タクシー", _E),
    ("国際興業", "タクシー", _E),
    ("GO", "タクシー", _E),
    ("DiDi", "タクシー", _E),
    ("NEXCO", "高速道路", _E),
    ("パーキング", "駐車場", _E),
    ("ピットデザイン", "駐車場", _E),
    ("タイムズ", "駐車場", _E),
    ("Times", "駐車場", _E),
    ("PARCO", "百貨店", _E),
    ("パルコ", "百貨店", _E),
    ("ルミネ", "百貨店", _E),
    ("なんばCITY", "百貨店", _E),
    ("なんばパークス", "百貨店", _E),
    ("シネマ", "娯楽", _E),
    ("映画", "娯楽", _E),
    ("ROUND1", "娯楽", _E),
    ("ラウンドワン", "娯楽", _E),
    ("動物園", "娯楽", _E),
    ("水族館", "娯楽", _E),
    ("TICKET", "イベント", _E),
    ("チケット", "イベント", _E),
    ("EXPO", "イベント", _E),
    ("GEO", "中古・買取", _E),
    ("ゲオ", "中古・買取", _E),
    ("2nd STREET", "中古・買取", _E),
    ("セカンドストリート", "中古・買取", _E),
    ("ATM", "現金入出金", _E),
    ("郵便局", "現金入出金", _E),
    ("給与", "給与", _I),
    ("給料", "給与", _I),
    ("賞与", "賞与", _I),
    ("ボーナス", "賞与", _I),
    ("利息", "利息", _I),
    ("利子", "利息", _I),
    ("ポイント還元", "ポイント還元", _I),
    ("キャッシュバック", "ポイント還元", _I),
    ("PayPayボーナス", "ポイント還元", _I),
    ("dポイント", "ポイント還元", _I),
    ("楽天ポイント", "ポイント還元", _I),
    ("Amazonポイント", "ポイント還元", _I),
    ("Tポイント", "ポイント還元", _I),
    ("Pontaポイント", "ポイント還元", _I),
    ("還付金", "還付金", _I),
    ("税務署", "還付金", _I),
    ("確定申告", "還付金", _I),
    ("失業保険", "失業保険", _I),
    ("ハローワーク", "失業保険", _I),
    ("雇用保険", "失業保険", _I),
    ("副業", "副業", _I),
    ("報酬", "副業", _I),
    ("返金", "受け取り", _I),
    ("払戻", "受け取り", _I),
    ("フリマ売上", "受け取り", _I),
    ("メルカリ売上", "受け取り", _I),
    ("ラクマ売上", "受け取り", _I),
)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


def _resolve_heuristic(text: str, direction: Direction, catalog: CategoryCatalog) -> str | None:
    name = suggest_category_name(text, direction)
    if name is None:
        return None
    cat = catalog.find_category(name, direction)
    return cat.id if cat is not None else None


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class RuleStore:
    """Ordered, mutable rule collection with optional JSON persistence."""

    def __init__(
        self,
        rules: Iterable[ClassificationRule] = (),
        *,
        path: Path | None = None,
        allow_heuristic_override: bool = False,
    ) -> None:
        self._rules: list[ClassificationRule] = list(rules)
        self.path = path
        self.allow_heuristic_override = allow_heuristic_override
        self._lock = threading.RLock()

    # -- persistence --------------------------------------------------------

    @classmethod
    def load(
        cls,
        path: Path,
        *,
        catalog: CategoryCatalog | None = None,
        allow_heuristic_override: bool = False,
    ) -> RuleStore:
        """Load rules from ``path`` (missing file = empty store).

        When ``catalog`` is given, name-only rules are migrated to ids
        immediately so callers only ever see migrated rules.
        """

        store = cls(path=path, allow_heuristic_override=allow_heuristic_override)
        if path.exists():
            raw = json.loads(path.read_text(encoding="utf-8"))
            items = raw if isinstance(raw, list) else RuleFile.model_validate(raw).rules
            for i, item in enumerate(items):
                try:
                    store._rules.append(ClassificationRule.model_validate(item))
                except ValidationError as e:
                    _logger.warning(
                        "rules:load_skipped index=%d errors=%d path=%s",
                        i,
                        e.error_count(),
                        os.fspath(path),
                    )
            _logger.info("rules:loaded count=%d path=%s", len(store._rules), os.fspath(path))
        if catalog is not None:
            store.migrate(catalog)
        return store

    @_locked
    def save(self) -> None:
        if self.path is None:
            return
        doc = RuleFile(
            rules=[r.model_dump(mode="json", by_alias=True) for r in self._rules],
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            tmp.write_text(
                json.dumps(doc.model_dump(mode="json"), ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
            os.replace(tmp, self.path)
        except Exception:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            raise

    # -- CRUD ---------------------------------------------------------------

    @property
    def rules(self) -> tuple[ClassificationRule, ...]:
        return tuple(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def get(self, rule_id: str) -> ClassificationRule | None:
        return next((r for r in self._rules if r.id == rule_id), None)

    def _index_of(self, rule_id: str) -> int | None:
        return next((i for i, r in enumerate(self._rules) if r.id == rule_id), None)

    @_locked
    def add(self, rule: ClassificationRule) -> ClassificationRule:
        self._rules.append(rule)
        self.save()
        return rule

    @_locked
    def update(self, rule: ClassificationRule) -> bool:
        idx = self._index_of(rule.id)
        if idx is None:
            return False
        self._rules[idx] = rule
        self.save()
        return True

    @_locked
    def delete(self, rule_id: str) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.id != rule_id]
        if len(self._rules) == before:
            return False
        self.save()
        return True

    def find_by_keyword(self, keyword: str, direction: Direction) -> ClassificationRule | None:
        key = normalize(keyword)
        return next(
            (r for r in self._rules if r.direction is direction and r.normalized_keyword == key),
            None,
        )

    @_locked
    def add_with_check(
        self, rule: ClassificationRule
    ) -> tuple[bool, ClassificationRule | None]:
        """Add ``rule`` unless its keyword+direction is taken.

        Returns ``(True, None)`` on success or ``(False, existing)`` so the
        caller can choose between :meth:`overwrite` and giving up.
        """

        existing = self.find_by_keyword(rule.keyword, rule.direction)
        if existing is not None:
            return False, existing
        self.add(rule)
        return True, None

    @_locked
    def overwrite(self, existing_id: str, new_rule: ClassificationRule) -> bool:
        idx = self._index_of(existing_id)
        if idx is None:
            return False
        self._rules[idx] = new_rule
        self.save()
        return True

    @_locked
    def reorder(self, ordered_ids: Sequence[str]) -> None:
        """Reorder to ``ordered_ids`` and assign priorities ``n..1`` to match."""

        by_id = {r.id: r for r in self._rules}
        if len(ordered_ids) != len(by_id) or set(ordered_ids) != set(by_id):
            raise ValueError("reorder needs every rule id exactly once")
        n = len(ordered_ids)
        self._rules = [
            by_id[rid].model_copy(update={"priority": n - i}) for i, rid in enumerate(ordered_ids)
        ]
        self.save()

    @_locked
    def clear(self) -> None:
        self._rules = []
        self.save()

    @_locked
    def restore(self, rules: Iterable[ClassificationRule]) -> None:
        """Replace every rule (e.g. from a backup)."""

        self._rules = list(rules)
        self.save()
        _logger.info("rules:restored count=%d", len(self._rules))

    # -- classification -----------------------------------------------------

    def find_matching_rule(self, text: str, direction: Direction) -> ClassificationRule | None:
        candidates = [r for r in self._rules if r.enabled and r.direction is direction]
        # ``sorted`` is stable: equal priorities keep insertion order.
        candidates.sort(key=lambda r: r.priority, reverse=True)
        return next((r for r in candidates if r.matches(text)), None)

    def suggest_category(
        self,
        text: str,
        direction: Direction,
        catalog: CategoryCatalog | None = None,
    ) -> str | None:
        """Return a category id for ``text``, or ``None``.

        Without a ``catalog`` only rules are consulted; with one, a rule whose
        target id is absent from it counts as no match.
        """

        if not text or direction is Direction.TRANSFER:
            return None
        rule = self.find_matching_rule(text, direction)
        if rule is not None and (
            rule.target_category_id is None
            or (catalog is not None and catalog.get(rule.target_category_id) is None)
        ):
            _logger.debug("rules:dangling keyword=%r", rule.keyword)
            rule = None

        if rule is not None:
            if (
                self.allow_heuristic_override
                and catalog is not None
                and rule.priority < DEFAULT_RULE_PRIORITY
            ):
                override = _resolve_heuristic(text, direction, catalog)
                if override is not None:
                    return override
            return rule.target_category_id

        if catalog is None:
            return None
        return _resolve_heuristic(text, direction, catalog)

    def suggest_category_from(
        self,
        texts: Iterable[str],
        direction: Direction,
        catalog: CategoryCatalog | None = None,
    ) -> str | None:
        """First non-``None`` suggestion over ``texts`` in order."""

        for text in texts:
            cat_id = self.suggest_category(text, direction, catalog)
            if cat_id is not None:
                return cat_id
        return None

    @_locked
    def learn(self, record: FinancialRecord) -> ClassificationRule | None:
        """Derive a rule from a user-confirmed category on ``record``.

        Returns the new rule, or ``None`` when nothing was learned.
        """

        if record.direction is Direction.TRANSFER or record.category_id is None:
            return None
        memo = record.memo.strip()
        if len(memo) < MIN_LEARNED_KEYWORD_LENGTH:
            return None
        if self.suggest_category(memo, record.direction) == record.category_id:
            return None
        key = normalize(memo)
        for r in self._rules:
            if (
                r.direction is record.direction
                and r.target_category_id == record.category_id
                and r.normalized_keyword == key
            ):
                return None
        rule = ClassificationRule(
            keyword=memo,
            match_type=MatchType.CONTAINS,
            target_category_id=record.category_id,
            direction=record.direction,
            priority=LEARNED_RULE_PRIORITY,
        )
        _logger.info("rules:learned keyword=%r direction=%s", memo, record.direction.code)
        return self.add(rule)

    # -- defaults and migration ---------------------------------------------

    def _default_rule(
        self, keyword: str, category_name: str, direction: Direction, catalog: CategoryCatalog
    ) -> ClassificationRule | None:
        cat = catalog.find_category(category_name, direction)
        if cat is None:
            return None
        return ClassificationRule(
            keyword=keyword,
            target_category_id=cat.id,
            target_category_name=cat.name,
            direction=direction,
            priority=DEFAULT_RULE_PRIORITY,
        )

    @_locked
    def ensure_default_rules(self, catalog: CategoryCatalog) -> int:
        """Seed the default keyword table; returns the number of rules added.

        An empty store receives every default whose category exists. A store
        that already has rules only gains income defaults whose keyword is not
        already used by an income rule.
        """

        added: list[ClassificationRule] = []
        if not self._rules:
            for keyword, name, direction in DEFAULT_RULES:
                rule = self._default_rule(keyword, name, direction, catalog)
                if rule is not None:
                    added.append(rule)
        else:
            taken = {r.normalized_keyword for r in self._rules if r.direction is Direction.INCOME}
            for keyword, name, direction in DEFAULT_RULES:
                if direction is not Direction.INCOME or normalize(keyword) in taken:
                    continue
                rule = self._default_rule(keyword, name, direction, catalog)
                if rule is not None:
                    added.append(rule)
                    taken.add(rule.normalized_keyword)
        if added:
            self._rules.extend(added)
            self.save()
            _logger.info("rules:defaults_added count=%d", len(added))
        return len(added)

    @_locked
    def migrate(self, catalog: CategoryCatalog, *, force: bool = False) -> int:
        """Point rules at category ids from ``catalog``; returns rules changed.

        Rules whose id still exists are left alone unless ``force``. Others
        are resolved from the keyword heuristics first, then from the saved
        category name.
        """

        if not catalog.entries():
            return 0
        changed = 0
        for i, rule in enumerate(self._rules):
            if not force and rule.target_category_id is not None:
                if catalog.get(rule.target_category_id) is not None:
                    continue
            update: dict[str, Any] = {"target_category_id": None}
            name = suggest_category_name(rule.keyword, rule.direction)
            cat = catalog.find_category(name, rule.direction) if name else None
            if cat is not None:
                update.update(target_category_id=cat.id, target_category_name=cat.name)
            elif rule.target_category_name:
                cat = catalog.find_category(rule.target_category_name, rule.direction)
                if cat is not None:
                    update["target_category_id"] = cat.id
            if update["target_category_id"] != rule.target_category_id:
                changed += 1
            self._rules[i] = rule.model_copy(update=update)
        if changed:
            self.save()
            _logger.info("rules:migrated changed=%d total=%d", changed, len(self._rules))
        return changed


__all__ = [
    "DEFAULT_RULES",
    "DEFAULT_RULE_PRIORITY",
    "LEARNED_RULE_PRIORITY",
    "RULES_SCHEMA_VERSION",
    "ClassificationRule",
    "MatchType",
    "RuleStore",
    "new_rule_id",
]
