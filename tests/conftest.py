"""Pytest configuration shared by the suite.

Puts the workspace packages on ``sys.path`` (``packages/`` for
``kakeibo_import``, ``libs/db/src`` for ``ledger_db`` and the repo root for
``tests.helpers``) so the suite runs without an editable install, and clears
the environment variables the package reads so a developer's ``.env`` or
shell never leaks into a test.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
for _p in (_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT):
    if str(_p) not in sys.path:
        sys.path.insert(0, str(_p))

_ENV_VARS = (
    "OPENAI_API_KEY",
    "DATABASE_URL",
    "KAKEIBO_CLASSIFIER_MODEL",
    "KAKEIBO_CLASSIFIER_BATCH_SIZE",
    "KAKEIBO_CLASSIFIER_THRESHOLD",
    "KAKEIBO_CLASSIFIER_TIMEOUT",
    "KAKEIBO_HEURISTIC_OVERRIDE",
    "KAKEIBO_RULES_PATH",
    "KAKEIBO_IMPORT_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Start every test from an environment without credentials or overrides."""

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
