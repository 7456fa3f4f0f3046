"""Runtime settings for the classification stage.

Values come from keyword arguments first, then environment variables, then
the defaults below. ``.env`` loading is the entrypoint's job (the CLI calls
``load_dotenv`` before anything reads the environment).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_BATCH_SIZE = 25
DEFAULT_CONFIDENCE_THRESHOLD = 0.80
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_HINTS = 20
DEFAULT_RULES_PATH = "rules.json"
DEFAULT_DATABASE_URL = "sqlite:///kakeibo.db"

API_KEY_ENV = "OPENAI_API_KEY"
MODEL_ENV = "KAKEIBO_CLASSIFIER_MODEL"
BATCH_SIZE_ENV = "KAKEIBO_CLASSIFIER_BATCH_SIZE"
THRESHOLD_ENV = "KAKEIBO_CLASSIFIER_THRESHOLD"
TIMEOUT_ENV = "KAKEIBO_CLASSIFIER_TIMEOUT"
HEURISTIC_OVERRIDE_ENV = "KAKEIBO_HEURISTIC_OVERRIDE"
RULES_PATH_ENV = "KAKEIBO_RULES_PATH"
DATABASE_URL_ENV = "DATABASE_URL"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_str(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or not v.strip():
        return None
    return v.strip()


def _env_int(name: str, default: int) -> int:
    v = _env_str(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {v!r}") from e


def _env_float(name: str, default: float) -> float:
    v = _env_str(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {v!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    v = _env_str(name)
    if v is None:
        return default
    return v.lower() in _TRUTHY


@dataclass(frozen=True, slots=True)
class ClassifierSettings:
    model: str = DEFAULT_MODEL
    batch_size: int = DEFAULT_BATCH_SIZE
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_hints: int = DEFAULT_MAX_HINTS
    allow_heuristic_override: bool = False

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be a positive integer")
        if not (0.0 <= self.confidence_threshold <= 1.0):
            raise ValueError("confidence_threshold must be within [0, 1]")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_hints < 0:
            raise ValueError("max_hints must be non-negative")

    @classmethod
    def from_env(cls, **overrides) -> ClassifierSettings:
        base = cls(
            model=_env_str(MODEL_ENV) or DEFAULT_MODEL,
            batch_size=_env_int(BATCH_SIZE_ENV, DEFAULT_BATCH_SIZE),
            confidence_threshold=_env_float(THRESHOLD_ENV, DEFAULT_CONFIDENCE_THRESHOLD),
            timeout_seconds=_env_float(TIMEOUT_ENV, DEFAULT_TIMEOUT_SECONDS),
            allow_heuristic_override=_env_bool(HEURISTIC_OVERRIDE_ENV, False),
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(base, **overrides) if overrides else base


def env_api_key() -> str | None:
    """Default credential provider: ``OPENAI_API_KEY`` (blank counts as unset)."""

    return _env_str(API_KEY_ENV)


def rules_path_from_env() -> Path:
    return Path(_env_str(RULES_PATH_ENV) or DEFAULT_RULES_PATH)


def database_url_from_env() -> str:
    return _env_str(DATABASE_URL_ENV) or DEFAULT_DATABASE_URL


__all__ = [
    "API_KEY_ENV",
    "ClassifierSettings",
    "database_url_from_env",
    "env_api_key",
    "rules_path_from_env",
]
