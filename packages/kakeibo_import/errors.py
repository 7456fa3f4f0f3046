"""Error taxonomy for the remote classification stage.

Parse-local problems never become exceptions (they are counted as invalid
rows). Only the remote stage has failure modes worth naming, and even those
are returned to callers inside :class:`~kakeibo_import.models.ClassificationResult`
rather than raised past the public entry point.
"""

from __future__ import annotations

from enum import Enum


class ClassificationErrorKind(Enum):
    API_KEY_NOT_SET = "api_key_not_set"
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    INVALID_JSON = "invalid_json"
    INVALID_PAYLOAD = "invalid_payload"
    PARSE_ERROR = "parse_error"
    EMPTY_RESPONSE = "empty_response"
    REFUSAL = "refusal"


_MESSAGES: dict[ClassificationErrorKind, str] = {
    ClassificationErrorKind.API_KEY_NOT_SET: "API key is not configured",
    ClassificationErrorKind.NETWORK: "network error",
    ClassificationErrorKind.TIMEOUT: "request timed out",
    ClassificationErrorKind.HTTP_ERROR: "HTTP error",
    ClassificationErrorKind.UNAUTHORIZED: "API key was rejected (HTTP 401)",
    ClassificationErrorKind.RATE_LIMITED: "rate limited (HTTP 429); retry later",
    ClassificationErrorKind.INVALID_JSON: "response envelope was not valid JSON",
    ClassificationErrorKind.INVALID_PAYLOAD: "classification payload did not match the schema",
    ClassificationErrorKind.PARSE_ERROR: "service reported an error",
    ClassificationErrorKind.EMPTY_RESPONSE: "response had no output",
    ClassificationErrorKind.REFUSAL: "model refused to classify",
}


class ClassificationError(Exception):
    """A terminal failure of the remote classification run."""

    def __init__(
        self,
        kind: ClassificationErrorKind,
        detail: str | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        super().__init__(self.message)

    @property
    def message(self) -> str:
        base = _MESSAGES[self.kind]
        if self.kind is ClassificationErrorKind.HTTP_ERROR and self.status_code is not None:
            base = f"{base} (HTTP {self.status_code})"
        return f"{base}: {self.detail}" if self.detail else base

    def __repr__(self) -> str:
        return f"ClassificationError(kind={self.kind.value!r}, detail={self.detail!r})"


__all__ = ["ClassificationError", "ClassificationErrorKind"]
