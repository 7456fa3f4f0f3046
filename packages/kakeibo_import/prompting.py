"""Prompt and request construction for remote classification.

This module builds:
- The per-record request items (``id, date, amount, direction,
  description, memo``) with a fixed field order.
- The system and user messages for one batch.
- The strict ``text.format`` JSON Schema object for the OpenAI Responses API.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .categories import Category, CategoryHint
from .models import Direction, FinancialRecord
from .values import format_date

SCHEMA_NAME = "classification_response"
UNGROUPED_LABEL = "未分類"

REQUEST_ITEM_FIELDS: tuple[str, ...] = ("id", "date", "amount", "direction", "description", "memo")

_DIRECTION_TAGS: dict[Direction, str] = {Direction.EXPENSE: "out", Direction.INCOME: "in"}


def build_request_item(record: FinancialRecord) -> dict[str, Any]:
    """Serialize ``record`` for the request; ``memo`` carries the imported label."""

    if record.direction not in _DIRECTION_TAGS:
        raise ValueError(f"records of direction {record.direction.code!r} are not classified")
    return {
        "id": record.record_id,
        "date": format_date(record.date),
        "amount": record.amount,
        "direction": _DIRECTION_TAGS[record.direction],
        "description": record.memo,
        "memo": record.category_label or None,
    }


def _category_lines(categories: Sequence[Category]) -> list[str]:
    lines: list[str] = []
    for c in categories:
        prefix = f"[{c.group}] " if c.group else ""
        lines.append(f"- {prefix}{c.name}: {c.id}")
    return lines


def _hint_lines(hints: Sequence[CategoryHint], limit: int) -> list[str]:
    return [
        f"- [{h.group or UNGROUPED_LABEL}] {h.category_name}: {h.description}"
        for h in list(hints)[:limit]
    ]


def build_system_instructions(
    categories: Sequence[Category],
    hints: Sequence[CategoryHint] = (),
    *,
    confidence_threshold: float = 0.80,
    max_hints: int = 20,
) -> str:
    """Return the system message: task, hard constraints, candidate list, hints."""

    lines = [
        "You classify household ledger transactions.",
        "For each transaction pick the single best category from the candidate list "
        "below and answer only with JSON that follows the schema.",
        "",
        "Constraints:",
        "- categoryId must be one of the ids in the candidate list",
        "- confidence is between 0.0 and 1.0",
        f"- use confidence >= {confidence_threshold:.2f} only when you are sure",
        "- reason is one or two short sentences in Japanese (store, purpose or context)",
        "- no text outside the schema",
        "",
        "Candidate categories:",
        *_category_lines(categories),
    ]
    hint_lines = _hint_lines(hints, max_hints)
    if hint_lines:
        lines += ["", f"Past classifications (hints, up to {max_hints}):", *hint_lines]
    return "\n".join(lines) + "\n"


def build_user_content(items: Sequence[dict[str, Any]]) -> str:
    transactions = [{k: item.get(k) for k in REQUEST_ITEM_FIELDS} for item in items]
    payload = json.dumps({"transactions": transactions}, ensure_ascii=False, indent=2)
    return f"Classify the following transactions (up to {len(items)} items).\n{payload}\n"


def build_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema ``text.format`` object.

    Category ids are not enumerated in the schema; they are checked against
    the catalog when the response is applied.
    """

    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": SCHEMA_NAME,
        "schema": {
            "type": "object",
            "properties": {
                "results": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string"},
                            "categoryId": {"type": "string"},
                            "confidence": {"type": "number"},
                            "reason": {"type": "string"},
                        },
                        "required": ["id", "categoryId", "confidence", "reason"],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["results"],
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result


def build_request(
    items: Sequence[dict[str, Any]],
    categories: Sequence[Category],
    hints: Sequence[CategoryHint] = (),
    *,
    model: str,
    confidence_threshold: float = 0.80,
    max_hints: int = 20,
) -> dict[str, Any]:
    """Keyword arguments for ``client.responses.create`` for one batch."""

    system = build_system_instructions(
        categories, hints, confidence_threshold=confidence_threshold, max_hints=max_hints
    )
    return {
        "model": model,
        "input": [
            {"role": "system", "content": system},
            {"role": "user", "content": build_user_content(items)},
        ],
        "text": {"format": build_response_format()},
        "store": False,
    }


__all__ = [
    "REQUEST_ITEM_FIELDS",
    "SCHEMA_NAME",
    "build_request",
    "build_request_item",
    "build_response_format",
    "build_system_instructions",
    "build_user_content",
]
