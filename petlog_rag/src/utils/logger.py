"""
Petlog RAG - Logging
=====================
Logger factory shared by the retrieval pipeline, the write path and the
CLI.

Level resolution (first match wins):
  1. ``level`` passed to ``get_logger``
  2. ``settings.LOG_LEVEL`` (e.g. ``"INFO"``), if set
  3. ``settings.ENV``: ``"dev"`` → DEBUG, ``"prod"`` → WARNING

Pipeline modules tag their messages (``[RAG]``, ``[SEARCH]``,
``[RERANK]``, ``[EMBED]``, ``[INGEST]``, ``[CHAT]``) so one request can be
followed through the stages with a single grep.

Usage:
    from petlog_rag.src.utils.logger import get_logger
    logger = get_logger(__name__)
    logger.info("[RAG] Retrieved %d record(s)", n)
"""

import logging
import sys

from petlog_rag.config.settings import settings

_ENV_LEVEL_MAP = {
    "dev": logging.DEBUG,
    "prod": logging.WARNING,
}

_FORMATTER = logging.Formatter(
    fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _resolve_level() -> int:
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL.upper())
    return _ENV_LEVEL_MAP.get(settings.ENV, logging.INFO)


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Return the named logger, attaching the stdout handler on first use.

    Loggers do not propagate to the root logger, so embedding this
    package in a host application never duplicates lines.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    resolved_level = level if level is not None else _resolve_level()
    logger.setLevel(resolved_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved_level)
    handler.setFormatter(_FORMATTER)
    logger.addHandler(handler)
    logger.propagate = False

    return logger
