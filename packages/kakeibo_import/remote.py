"""Remote classification of records the rules could not resolve.

Public API:
    - :func:`classify_unresolved`
    - :func:`apply_updates`

Records are sent in fixed-size batches, one request at a time. A failing
batch stops the run; counters and updates gathered from earlier batches are
returned alongside the error. Nothing is retried here.

The raw HTTP body is decoded and validated locally (rather than through the
SDK's typed response) so that each failure mode maps to a distinct
:class:`~kakeibo_import.errors.ClassificationErrorKind`. No side effects occur
at import time (no client creation, no environment reads).
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from typing import Any

import openai
from openai import OpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import prompting
from .categories import CategoryCatalog, CategoryHint
from .config import ClassifierSettings, env_api_key
from .errors import ClassificationError, ClassificationErrorKind
from .logging_setup import get_logger
from .models import Assignment, ClassificationResult, Direction, FinancialRecord

_logger = get_logger("kakeibo_import.remote")

BODY_EXCERPT_CHARS: int = 200

type ClientFactory = Callable[[str, ClassifierSettings], Any]


# ---- Response envelope -------------------------------------------------------


class _ContentBlock(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    text: str | None = None
    refusal: str | None = None


class _OutputItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    role: str | None = None
    status: str | None = None
    content: list[_ContentBlock] | None = None


class _ErrorBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str | None = None
    type: str | None = None
    code: str | None = None


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    output: list[_OutputItem] | None = None
    error: _ErrorBody | None = None


class _ResultItem(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    category_id: str = Field(alias="categoryId")
    confidence: float
    reason: str = ""


class _ResultBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: list[_ResultItem]


def _excerpt(body: str) -> str:
    return body[:BODY_EXCERPT_CHARS]


def _pick_output(output: Sequence[_OutputItem]) -> _OutputItem:
    return next((o for o in output if o.type == "message"), output[0])


def parse_response_body(body: str) -> list[_ResultItem]:
    """Decode a Responses API body into result items or raise ClassificationError."""

    try:
        envelope = _Envelope.model_validate_json(body)
    except ValidationError as e:
        raise ClassificationError(ClassificationErrorKind.INVALID_JSON, _excerpt(body)) from e

    if envelope.error is not None:
        raise ClassificationError(
            ClassificationErrorKind.PARSE_ERROR, envelope.error.message or "unknown error"
        )
    if not envelope.output:
        raise ClassificationError(ClassificationErrorKind.EMPTY_RESPONSE)

    item = _pick_output(envelope.output)
    if not item.content:
        raise ClassificationError(ClassificationErrorKind.EMPTY_RESPONSE)

    refusal = next((c for c in item.content if c.type == "refusal"), None)
    if refusal is not None:
        raise ClassificationError(
            ClassificationErrorKind.REFUSAL, refusal.refusal or refusal.text or None
        )

    text_block = next((c for c in item.content if c.type == "output_text"), None)
    if text_block is None or text_block.text is None:
        raise ClassificationError(ClassificationErrorKind.EMPTY_RESPONSE)

    try:
        return _ResultBody.model_validate_json(text_block.text).results
    except ValidationError as e:
        raise ClassificationError(
            ClassificationErrorKind.INVALID_PAYLOAD, _excerpt(text_block.text)
        ) from e


# ---- Transport ---------------------------------------------------------------


def _create_client(api_key: str, settings: ClassifierSettings) -> OpenAI:
    return OpenAI(api_key=api_key, max_retries=0, timeout=settings.timeout_seconds)


def _map_transport_error(exc: openai.APIError) -> ClassificationError:
    # APITimeoutError subclasses APIConnectionError; check it first.
    if isinstance(exc, openai.APITimeoutError):
        return ClassificationError(ClassificationErrorKind.TIMEOUT)
    if isinstance(exc, openai.APIConnectionError):
        return ClassificationError(ClassificationErrorKind.NETWORK, str(exc) or None)
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        if isinstance(exc, openai.AuthenticationError) or status == 401:
            return ClassificationError(ClassificationErrorKind.UNAUTHORIZED, status_code=status)
        if isinstance(exc, openai.RateLimitError) or status == 429:
            return ClassificationError(ClassificationErrorKind.RATE_LIMITED, status_code=status)
        return ClassificationError(ClassificationErrorKind.HTTP_ERROR, status_code=status)
    return ClassificationError(ClassificationErrorKind.NETWORK, str(exc) or None)


def _send(client: Any, request: Mapping[str, Any]) -> str:
    try:
        raw = client.responses.with_raw_response.create(**request)
    except openai.APIError as e:
        raise _map_transport_error(e) from e
    return raw.text


# ---- Batching ----------------------------------------------------------------


def _batches(
    records: Sequence[FinancialRecord], size: int
) -> Iterator[tuple[int, Sequence[FinancialRecord]]]:
    for b, start in enumerate(range(0, len(records), size)):
        yield b, records[start : start + size]


def eligible_records(records: Iterable[FinancialRecord]) -> list[FinancialRecord]:
    return [
        r for r in records if r.category_id is None and r.direction is not Direction.TRANSFER
    ]


def classify_unresolved(
    records: Iterable[FinancialRecord],
    *,
    catalog: CategoryCatalog,
    hints: Sequence[CategoryHint] = (),
    settings: ClassifierSettings | None = None,
    api_key_provider: Callable[[], str | None] = env_api_key,
    client_factory: ClientFactory | None = None,
) -> ClassificationResult:
    """Classify unresolved, non-transfer ``records`` with the remote model.

    Never raises :class:`ClassificationError`: failures come back in
    ``ClassificationResult.error`` with whatever was accumulated before them.
    """

    settings = settings or ClassifierSettings.from_env()
    pending = eligible_records(records)
    if not pending:
        return ClassificationResult()

    api_key = api_key_provider()
    if not api_key:
        _logger.warning("classify:skipped reason=api_key_not_set num_records=%d", len(pending))
        return ClassificationResult(
            error=ClassificationError(ClassificationErrorKind.API_KEY_NOT_SET)
        )

    categories = list(catalog.entries())
    client = (client_factory or _create_client)(api_key, settings)
    total_batches = (len(pending) + settings.batch_size - 1) // settings.batch_size

    processed = confirmed = skipped = errored = 0
    updates: dict[str, Assignment] = {}
    error: ClassificationError | None = None

    for b, batch in _batches(pending, settings.batch_size):
        by_id = {r.record_id: r for r in batch}
        request = prompting.build_request(
            [prompting.build_request_item(r) for r in batch],
            categories,
            hints,
            model=settings.model,
            confidence_threshold=settings.confidence_threshold,
            max_hints=settings.max_hints,
        )
        _logger.info(
            "classify:batch_start batch=%d/%d num_records=%d", b + 1, total_batches, len(batch)
        )
        t0 = time.perf_counter()
        try:
            items = parse_response_body(_send(client, request))
        except ClassificationError as e:
            _logger.warning("classify:batch_failed batch=%d kind=%s", b + 1, e.kind.value)
            error = e
            break

        b_confirmed = b_skipped = b_errored = 0
        for item in items:
            if item.id not in by_id:
                b_errored += 1
                continue
            if catalog.get(item.category_id) is None:
                b_errored += 1
                continue
            if item.confidence >= settings.confidence_threshold:
                updates[item.id] = Assignment(category_id=item.category_id, reason=item.reason)
                b_confirmed += 1
            else:
                b_skipped += 1
        processed += len(batch)
        confirmed += b_confirmed
        skipped += b_skipped
        errored += b_errored
        _logger.info(
            "classify:batch_done batch=%d confirmed=%d skipped=%d errored=%d latency_ms=%.2f",
            b + 1,
            b_confirmed,
            b_skipped,
            b_errored,
            (time.perf_counter() - t0) * 1000.0,
        )

    return ClassificationResult(
        processed=processed,
        confirmed=confirmed,
        skipped=skipped,
        errored=errored,
        updates=updates,
        error=error,
    )


def apply_updates(
    records: Iterable[FinancialRecord], updates: Mapping[str, Assignment]
) -> list[FinancialRecord]:
    """Return ``records`` with staged category assignments applied."""

    out: list[FinancialRecord] = []
    for r in records:
        a = updates.get(r.record_id)
        out.append(r.with_category(a.category_id) if a is not None else r)
    return out


__all__ = ["apply_updates", "classify_unresolved", "eligible_records", "parse_response_body"]
