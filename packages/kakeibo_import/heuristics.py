"""Built-in memo heuristics: merchant/keyword fragments to category names.

The tables are consulted top to bottom and the first category whose fragment
occurs in the normalized memo wins, so table order matters (e.g. ``ガスト``
must hit 外食 before ``ガス`` hits 水道光熱費).

The result is a category *name*; callers resolve it against their catalog.
"""

from __future__ import annotations

from functools import cache

from .models import Direction
from .text import normalize

# Memos containing these never get a heuristic category (battery rental
# kiosks otherwise read as a top-up).
EXCLUDED_FRAGMENTS: tuple[str, ...] = ("chargespot", "チャージスポット")

EXPENSE_HEURISTICS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "コンビニ",
        (
            "コンビニ",
            "こんびに",
            "セブン",
            "せぶん",
            "ローソン",
            "ろーそん",
            "ファミマ",
            "ふぁみま",
            "ミニストップ",
            "デイリーヤマザキ",
        ),
    ),
    (
        "スーパー",
        (
            "スーパー",
            "すーぱー",
            "イオン",
            "西友",
            "イトーヨーカドー",
            "オーケー",
            "ライフ",
            "まいばすけっと",
            "マルエツ",
            "業務スーパー",
        ),
    ),
    (
        "外食",
        (
            "マクドナルド",
            "マック",
            "すき家",
            "吉野家",
            "松屋",
            "サイゼリヤ",
            "ガスト",
            "モスバーガー",
            "ケンタッキー",
            "くら寿司",
            "スシロー",
            "はなまる",
            "丸亀",
            "外食",
        ),
    ),
    (
        "カフェ",
        (
            "スタバ",
            "starbucks",
            "カフェ",
            "cafe",
            "ドトール",
            "タリーズ",
            "コメダ",
            "星乃珈琲",
            "サンマルク",
            "ミスド",
            "ミスタードーナツ",
        ),
    ),
    ("電車・駅", ("jr", "電車", "駅", "地下鉄", "メトロ")),
    ("交通費", ("suica", "pasmo", "スイカ", "パスモ", "モバイル", "交通")),
    ("タクシー", ("タクシー", "taxi", "goタクシー", "didi", "未来都", "国際興業")),
    ("高速道路", ("ETC", "高速道路", "NEXCO")),
    (
        "駐車場",
        ("駐車場", "パーキング", "コインパーキング", "ピットデザイン", "タイムズ", "times"),
    ),
    ("ガソリン", ("ガソリン", "エネオス", "eneos", "出光", "シェル", "コスモ石油")),
    (
        "ドラッグストア",
        ("ドラッグ", "マツモトキヨシ", "ウエルシア", "スギ薬局", "薬局", "サンドラッグ", "富士薬品"),
    ),
    ("Amazon", ("amazon", "アマゾン")),
    (
        "通販",
        ("楽天", "rakuten", "メルカリ", "mercari", "ヤフオク", "ゾゾ", "zozo", "通販", "エディオン"),
    ),
    ("水道光熱費", ("電気", "ガス", "水道", "tepco", "nhk", "電力", "ガス@")),
    ("通信費", ("通信", "ドコモ", "docomo", "ソフトバンク", "softbank", "au", "ワイモバイル", "uq")),
    (
        "サブスク・デジタル",
        (
            "サブスク",
            "netflix",
            "spotify",
            "youtube",
            "apple",
            "google",
            "icloud",
            "adobe",
            "zoom",
            "nintendo",
            "uber one",
            "line ec",
        ),
    ),
    ("衣服", ("ユニクロ", "uniqlo", "gu", "ジーユー", "衣服", "服", "無印良品", "muji")),
    ("雑貨", ("ダイソー", "セリア", "seria", "100均", "雑貨", "ロフト", "loft", "ハンズ")),
    ("家具・インテリア", ("ニトリ", "ikea", "イケア", "インテリア")),
    ("手数料", ("手数料",)),
    ("奨学金返済", ("奨学金", "学生支援機構", "ガクセイシエン", "返済金")),
    ("カード引落", ("振替", "Dカード", "エポス", "楽天カード", "d-カード", "au pay")),
    ("個人送金", ("送金", "送った金額")),
    ("チャージ", ("チャージ",)),
    ("デリバリー", ("uber eats", "出前館", "デリバリー")),
    ("中古・買取", ("geo", "セカンドストリート", "買取", "中古", "ゲオ")),
    (
        "百貨店",
        (
            "髙島屋",
            "高島屋",
            "伊勢丹",
            "三越",
            "大丸",
            "阪急百貨店",
            "なんばcity",
            "なんばパークス",
            "ルミネ",
            "parco",
            "パルコ",
        ),
    ),
    ("娯楽", ("シネマ", "映画", "動物園", "水族館", "アミューズメント", "ラウンドワン")),
    ("イベント", ("チケット", "興行", "イベント", "expo")),
    ("現金入出金", ("カード@lans", "郵便局", "atm")),
)

INCOME_HEURISTICS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("給与", ("給与", "給料", "賞与", "ボーナス", "ゼロイチ", "ぜろいち", "振込", "会社")),
    ("利息", ("利息", "利子")),
    ("ポイント還元", ("ポイント", "還元", "残高", "キャッシュバック", "マイナ", "キャンペーン")),
    ("受け取り", ("受け取", "受取", "返金", "入金")),
    ("還付金", ("還付", "税務署", "国税")),
    ("副業", ("副業", "報酬", "謝礼")),
    ("チャージ", ("チャージ",)),
    ("失業保険", ("失業", "職業安定", "ショクギョウアンテイ", "ハローワーク")),
)


@cache
def _normalized_table(direction: Direction) -> tuple[tuple[str, tuple[str, ...]], ...]:
    table = INCOME_HEURISTICS if direction is Direction.INCOME else EXPENSE_HEURISTICS
    return tuple((name, tuple(normalize(p) for p in patterns)) for name, patterns in table)


def suggest_category_name(memo: str, direction: Direction) -> str | None:
    """Return the heuristic category name for ``memo``, or ``None``."""

    if direction is Direction.TRANSFER:
        return None
    text = normalize(memo)
    if not text:
        return None
    if any(normalize(f) in text for f in EXCLUDED_FRAGMENTS):
        return None
    for name, patterns in _normalized_table(direction):
        if any(p and p in text for p in patterns):
            return name
    return None


__all__ = [
    "EXCLUDED_FRAGMENTS",
    "EXPENSE_HEURISTICS",
    "INCOME_HEURISTICS",
    "suggest_category_name",
]
