"""Column mapping and direction/amount resolution.

:func:`build_column_map` locates logical fields (date, amount, debit, credit,
type, memo, category) in a header row. Fixed-layout formats ignore the
header; header-driven formats scan ranked candidate keywords and the first
candidate found wins (leftmost column on ties). A user-supplied
:class:`ManualMapping` overlays any subset of indices afterwards.

Direction resolution is an explicit ordered list of strategies,
:data:`DIRECTION_STRATEGIES`. Each strategy returns a :class:`Resolution`,
``None`` to fall through, or :data:`UNPARSEABLE` to stop and mark the row
invalid. The order is part of the contract: swapping steps changes how
ambiguous rows are classified.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, fields, replace
from typing import Final, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from .models import Direction, ImportFormat
from .text import normalize
from .tokenizer import Row
from .values import parse_amount

# Header substrings per logical field; the leftmost matching column wins.
DATE_CANDIDATES: tuple[str, ...] = (
    "日付",
    "取引日",
    "利用日",
    "年月日",
    "取扱日付",
    "date",
    "transaction date",
    "posted date",
)
AMOUNT_CANDIDATES: tuple[str, ...] = ("金額", "利用金額", "支払金額", "金額（円）", "amount")
DEBIT_CANDIDATES: tuple[str, ...] = (
    "出金",
    "出金額",
    "支出",
    "出金金額",
    "出金金額（円）",
    "お支払金額",
    "debit",
    "withdrawal",
)
CREDIT_CANDIDATES: tuple[str, ...] = (
    "入金",
    "入金額",
    "収入",
    "入金金額",
    "入金金額（円）",
    "お預り金額",
    "credit",
    "deposit",
)
TYPE_CANDIDATES: tuple[str, ...] = ("入出金", "区分", "種別", "入払区分", "type", "transaction type")
MEMO_CANDIDATES: tuple[str, ...] = (
    "メモ",
    "摘要",
    "内容",
    "取引内容",
    "店舗",
    "加盟店",
    "取引先",
    "description",
    "details",
    "memo",
)
CATEGORY_CANDIDATES: tuple[str, ...] = ("カテゴリ", "カテゴリー", "category")

# Type-column vocabularies. Bank transfer wording (振込) is deliberately in
# neither set: it is used for both incoming and outgoing transfers.
EXPENSE_TYPE_KEYWORDS: tuple[str, ...] = (
    "出金",
    "支払",
    "引落",
    "シュッキン",
    "シハライ",
    "ヒキオトシ",
    "debit",
    "withdraw",
)
INCOME_TYPE_KEYWORDS: tuple[str, ...] = (
    "入金",
    "預入",
    "受取",
    "利息",
    "ニュウキン",
    "アズケイレ",
    "ウケトリ",
    "リソク",
    "credit",
    "deposit",
)


@dataclass(frozen=True, slots=True)
class ColumnMap:
    """Physical column index per logical field (``None`` = not present)."""

    date: int | None = None
    amount: int | None = None
    debit: int | None = None
    credit: int | None = None
    type: int | None = None
    memo: int | None = None
    category: int | None = None

    def apply(self, manual: ManualMapping | None) -> ColumnMap:
        """Overlay the indices set in ``manual``; manual values win."""

        if manual is None:
            return self
        overrides = {
            f.name: getattr(manual, f.name)
            for f in fields(self)
            if getattr(manual, f.name) is not None
        }
        return replace(self, **overrides)

    @property
    def has_debit_and_credit(self) -> bool:
        return self.debit is not None and self.credit is not None


FIXED_CARD_MAP: Final = ColumnMap(date=0, memo=1, amount=2)
EMPTY_HEADER_MAP: Final = ColumnMap(date=0, memo=1, amount=2)


class ManualMapping(BaseModel):
    """User-supplied column indices (no parsing logic), persisted as JSON."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str | None = None
    format_hint: str | None = Field(default=None, alias="formatHint")
    date: int | None = Field(default=None, ge=0, alias="dateColumn")
    amount: int | None = Field(default=None, ge=0, alias="amountColumn")
    debit: int | None = Field(default=None, ge=0, alias="debitColumn")
    credit: int | None = Field(default=None, ge=0, alias="creditColumn")
    type: int | None = Field(default=None, ge=0, alias="typeColumn")
    memo: int | None = Field(default=None, ge=0, alias="memoColumn")
    category: int | None = Field(default=None, ge=0, alias="categoryColumn")

    @classmethod
    def template(cls, fmt: ImportFormat) -> ManualMapping:
        """Starting point for a user editing a mapping for ``fmt``."""

        base = {"name": fmt.display_name, "format_hint": fmt.code}
        if fmt is ImportFormat.BANK_GENERIC:
            return cls(**base, date=0, memo=1, debit=2, credit=3)
        if fmt is ImportFormat.APP_EXPORT:
            return cls(**base, date=0, type=1, amount=2, category=3, memo=4)
        return cls(**base, date=0, memo=1, amount=2)


def _find_column(header: Row, candidates: Sequence[str]) -> int | None:
    keys = [k for k in (normalize(c) for c in candidates) if k]
    for idx, cell in enumerate(normalize(c) for c in header):
        if any(key in cell for key in keys):
            return idx
    return None


def build_column_map(header: Row, fmt: ImportFormat | None) -> ColumnMap:
    """Build the column map for ``fmt`` from ``header``."""

    if fmt is ImportFormat.AMAZON_CARD:
        return FIXED_CARD_MAP
    if not any(c.strip() for c in header):
        return EMPTY_HEADER_MAP
    return ColumnMap(
        date=_find_column(header, DATE_CANDIDATES),
        amount=_find_column(header, AMOUNT_CANDIDATES),
        debit=_find_column(header, DEBIT_CANDIDATES),
        credit=_find_column(header, CREDIT_CANDIDATES),
        type=_find_column(header, TYPE_CANDIDATES),
        memo=_find_column(header, MEMO_CANDIDATES),
        category=_find_column(header, CATEGORY_CANDIDATES),
    )


# ---------------------------------------------------------------------------
# Direction + amount resolution
# ---------------------------------------------------------------------------


class Resolution(NamedTuple):
    direction: Direction
    amount: int


class _Unparseable:
    __slots__ = ()

    def __repr__(self) -> str:
        return "UNPARSEABLE"


UNPARSEABLE: Final = _Unparseable()

type StrategyOutcome = Resolution | _Unparseable | None
type DirectionStrategy = Callable[[Row, ColumnMap, ImportFormat | None], StrategyOutcome]


def _cell(row: Row, index: int | None) -> str:
    if index is None or not (0 <= index < len(row)):
        return ""
    return row[index]


def _match_type_keyword(text: str) -> Direction | None:
    t = normalize(text)
    if not t:
        return None
    if any(normalize(k) in t for k in EXPENSE_TYPE_KEYWORDS):
        return Direction.EXPENSE
    if any(normalize(k) in t for k in INCOME_TYPE_KEYWORDS):
        return Direction.INCOME
    return None


def resolve_by_debit_credit(row: Row, cmap: ColumnMap, fmt: ImportFormat | None) -> StrategyOutcome:
    """Separate debit/credit columns: whichever is positive decides."""

    if cmap.has_debit_and_credit:
        debit = parse_amount(_cell(row, cmap.debit))
        if debit is not None and debit > 0:
            return Resolution(Direction.EXPENSE, debit)
        credit = parse_amount(_cell(row, cmap.credit))
        if credit is not None and credit > 0:
            return Resolution(Direction.INCOME, credit)
        return UNPARSEABLE
    # A lone debit or credit column (no amount column) carries its own
    # direction when populated.
    if cmap.amount is None:
        for index, direction in ((cmap.debit, Direction.EXPENSE), (cmap.credit, Direction.INCOME)):
            if index is None:
                continue
            value = parse_amount(_cell(row, index))
            if value is not None and value > 0:
                return Resolution(direction, value)
    return None


def _amount_or_unparseable(row: Row, cmap: ColumnMap) -> int | _Unparseable | None:
    if cmap.amount is None:
        return None
    value = parse_amount(_cell(row, cmap.amount))
    return UNPARSEABLE if value is None else value


def resolve_by_type_column(row: Row, cmap: ColumnMap, fmt: ImportFormat | None) -> StrategyOutcome:
    """Single amount column plus a type column with expense/income wording."""

    if cmap.type is None:
        return None
    amount = _amount_or_unparseable(row, cmap)
    if amount is None or isinstance(amount, _Unparseable):
        return amount
    direction = _match_type_keyword(_cell(row, cmap.type))
    if direction is None:
        return None
    return Resolution(direction, abs(amount))


def resolve_by_amount_sign(row: Row, cmap: ColumnMap, fmt: ImportFormat | None) -> StrategyOutcome:
    """Negative amounts are expenses; non-negative ones fall through."""

    amount = _amount_or_unparseable(row, cmap)
    if amount is None or isinstance(amount, _Unparseable):
        return amount
    if amount < 0:
        return Resolution(Direction.EXPENSE, -amount)
    return None


def resolve_by_layout_default(
    row: Row, cmap: ColumnMap, fmt: ImportFormat | None
) -> StrategyOutcome:
    """Card layouts default to expense, bank layouts to income."""

    amount = _amount_or_unparseable(row, cmap)
    if amount is None or isinstance(amount, _Unparseable):
        return UNPARSEABLE
    card_style = fmt is not None and fmt.is_card_style
    return Resolution(Direction.EXPENSE if card_style else Direction.INCOME, abs(amount))


class NamedStrategy(NamedTuple):
    name: str
    resolve: DirectionStrategy


DIRECTION_STRATEGIES: tuple[NamedStrategy, ...] = (
    NamedStrategy("debit_credit", resolve_by_debit_credit),
    NamedStrategy("type_column", resolve_by_type_column),
    NamedStrategy("amount_sign", resolve_by_amount_sign),
    NamedStrategy("layout_default", resolve_by_layout_default),
)


def resolve_direction(
    row: Row,
    cmap: ColumnMap,
    fmt: ImportFormat | None,
    strategies: Sequence[NamedStrategy] = DIRECTION_STRATEGIES,
) -> Resolution | None:
    """Run ``strategies`` in order; ``None`` means the row is unparseable."""

    for strategy in strategies:
        outcome = strategy.resolve(row, cmap, fmt)
        if outcome is None:
            continue
        if isinstance(outcome, _Unparseable):
            return None
        return outcome
    return None


__all__ = [
    "AMOUNT_CANDIDATES",
    "CATEGORY_CANDIDATES",
    "CREDIT_CANDIDATES",
    "DATE_CANDIDATES",
    "DEBIT_CANDIDATES",
    "DIRECTION_STRATEGIES",
    "EXPENSE_TYPE_KEYWORDS",
    "INCOME_TYPE_KEYWORDS",
    "MEMO_CANDIDATES",
    "TYPE_CANDIDATES",
    "UNPARSEABLE",
    "ColumnMap",
    "ManualMapping",
    "NamedStrategy",
    "Resolution",
    "build_column_map",
    "resolve_by_amount_sign",
    "resolve_by_debit_credit",
    "resolve_by_layout_default",
    "resolve_by_type_column",
    "resolve_direction",
]
