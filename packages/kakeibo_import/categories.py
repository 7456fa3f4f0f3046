"""Category catalog used for classification.

Categories themselves are owned by the host application; the pipeline only
needs to look them up. :class:`CategoryCatalog` is that seam.
:class:`InMemoryCatalog` is the stock implementation, seeded by
:meth:`InMemoryCatalog.default` with the household-ledger category list.

Category ids are stable: ``uuid5`` over ``"<direction>:<name>"``, so a default
catalog built in two processes agrees on ids.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .models import Direction
from .text import normalize

_ID_NAMESPACE = uuid.UUID("6f1d2a0c-93a4-5c4e-8d1e-2f6b7e5a9c10")

OTHER_CATEGORY_NAME = "その他"


@dataclass(frozen=True, slots=True)
class Category:
    id: str
    name: str
    direction: Direction
    group: str | None = None


@dataclass(frozen=True, slots=True)
class CategoryHint:
    """Free-text description of a category, forwarded to the remote classifier."""

    category_name: str
    description: str
    group: str | None = None


def category_id_for(name: str, direction: Direction) -> str:
    return str(uuid.uuid5(_ID_NAMESPACE, f"{direction.code}:{name}"))


@runtime_checkable
class CategoryCatalog(Protocol):
    def find_category(self, name: str, direction: Direction) -> Category | None: ...

    def get(self, category_id: str) -> Category | None: ...

    def entries(self) -> Sequence[Category]: ...


class InMemoryCatalog:
    """List-backed catalog; names compare after text normalization."""

    def __init__(self, categories: Iterable[Category] = ()) -> None:
        self._items: list[Category] = []
        self._by_id: dict[str, Category] = {}
        self._by_name: dict[tuple[Direction, str], Category] = {}
        for c in categories:
            self.add(c)

    def add(self, category: Category) -> Category:
        if category.id in self._by_id:
            raise ValueError(f"duplicate category id: {category.id}")
        key = (category.direction, normalize(category.name))
        # First registration of a name wins lookups.
        self._by_name.setdefault(key, category)
        self._by_id[category.id] = category
        self._items.append(category)
        return category

    def find_category(self, name: str, direction: Direction) -> Category | None:
        key = normalize(name)
        if not key:
            return None
        return self._by_name.get((direction, key))

    def get(self, category_id: str) -> Category | None:
        return self._by_id.get(category_id)

    def entries(self) -> Sequence[Category]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @classmethod
    def default(cls) -> InMemoryCatalog:
        cats: list[Category] = []
        for direction, names in (
            (Direction.EXPENSE, DEFAULT_EXPENSE_CATEGORIES),
            (Direction.INCOME, DEFAULT_INCOME_CATEGORIES),
        ):
            for name in names:
                cats.append(
                    Category(
                        id=category_id_for(name, direction),
                        name=name,
                        direction=direction,
                        group=_group_for(name, direction),
                    )
                )
        return cls(cats)


# ---------------------------------------------------------------------------
# Default category list
# ---------------------------------------------------------------------------

DEFAULT_EXPENSE_CATEGORIES: tuple[str, ...] = (
    "食費",
    "スーパー",
    "コンビニ",
    "デリバリー",
    "外食",
    "カフェ",
    "おやつ・パン",
    "日用品",
    "ドラッグストア",
    "雑貨",
    "Amazon",
    "通販",
    "百貨店",
    "家具・インテリア",
    "中古・買取",
    "交通費",
    "タクシー",
    "電車・駅",
    "ガソリン",
    "駐車場",
    "高速道路",
    "娯楽",
    "サブスク・デジタル",
    "イベント",
    "通信費",
    "水道光熱費",
    "家賃",
    "医療費",
    "衣服",
    "美容・理容",
    "書籍・教育",
    "保険",
    "税金",
    "奨学金返済",
    "手数料",
    "返済・ローン",
    "カード引落",
    "個人送金",
    "チャージ",
    "現金入出金",
    OTHER_CATEGORY_NAME,
)

DEFAULT_INCOME_CATEGORIES: tuple[str, ...] = (
    "給与",
    "賞与",
    "失業保険",
    "還付金",
    "利息",
    "副業",
    "投資",
    "ポイント還元",
    "受け取り",
    "チャージ",
    OTHER_CATEGORY_NAME,
)

EXPENSE_GROUPS: dict[str, tuple[str, ...]] = {
    "食費": ("食費", "スーパー", "コンビニ", "デリバリー", "外食", "カフェ", "おやつ・パン"),
    "日用品・買い物": (
        "日用品",
        "ドラッグストア",
        "雑貨",
        "Amazon",
        "通販",
        "百貨店",
        "家具・インテリア",
        "中古・買取",
        "衣服",
    ),
    "交通": ("交通費", "タクシー", "電車・駅", "ガソリン", "駐車場", "高速道路"),
    "娯楽": ("娯楽", "サブスク・デジタル", "イベント", "書籍・教育"),
    "固定費": ("通信費", "水道光熱費", "家賃", "保険", "税金"),
    "健康・美容": ("医療費", "美容・理容"),
    "金融": (
        "奨学金返済",
        "手数料",
        "返済・ローン",
        "カード引落",
        "個人送金",
        "チャージ",
        "現金入出金",
    ),
}
INCOME_GROUP = "収入"


def _group_for(name: str, direction: Direction) -> str | None:
    if direction is Direction.INCOME:
        return INCOME_GROUP
    for group, members in EXPENSE_GROUPS.items():
        if name in members:
            return group
    return None


__all__ = [
    "DEFAULT_EXPENSE_CATEGORIES",
    "DEFAULT_INCOME_CATEGORIES",
    "OTHER_CATEGORY_NAME",
    "Category",
    "CategoryCatalog",
    "CategoryHint",
    "InMemoryCatalog",
    "category_id_for",
]
