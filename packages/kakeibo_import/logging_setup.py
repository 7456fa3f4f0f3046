"""Logging configuration for the ``kakeibo_import`` package.

Library modules only ever call ``get_logger("kakeibo_import.<module>")``;
handlers are attached once by the entrypoint (the CLI callback or a host
application) through :func:`configure_logging`.

Level resolution order: explicit ``level`` argument, then the
``KAKEIBO_IMPORT_LOG_LEVEL`` environment variable, then ``INFO``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PKG_LOGGER_NAME = "kakeibo_import"
LOG_LEVEL_ENV = "KAKEIBO_IMPORT_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_configured_handler: logging.Handler | None = None


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str) and level.strip():
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelName(name)
        if isinstance(numeric, int):
            return numeric
        return logging.INFO
    env_val = os.getenv(LOG_LEVEL_ENV)
    if env_val and env_val.strip():
        return _parse_level(env_val)
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
    force: bool = False,
) -> logging.Logger:
    """Attach a single ``StreamHandler`` to the package logger.

    Repeated calls are no-ops unless ``force`` is set, in which case the
    previous handler is replaced (useful for tests capturing a stream).
    """

    global _configured_handler
    logger = logging.getLogger(PKG_LOGGER_NAME)
    if _configured_handler is not None:
        if not force:
            return logger
        logger.removeHandler(_configured_handler)
        _configured_handler = None

    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False
    _configured_handler = handler
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``name``'s logger; stays silent until the package is configured."""

    pkg_logger = logging.getLogger(PKG_LOGGER_NAME)
    if _configured_handler is None and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["LOG_LEVEL_ENV", "PKG_LOGGER_NAME", "configure_logging", "get_logger"]
