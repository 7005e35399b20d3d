from __future__ import annotations

import sys

from loguru import logger

_CONTEXT_KEYS = ("trace_id", "node", "user_id", "request_class", "attempt")

_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> "
    "| <level>{level:<8}</level> "
    "| {extra[node]} trace={extra[trace_id]} user={extra[user_id]} "
    "class={extra[request_class]} attempt={extra[attempt]} "
    "| {message}"
)


def _fill_story_context(record: dict) -> None:
    extra = record["extra"]
    for key in _CONTEXT_KEYS:
        if extra.get(key) in (None, ""):
            extra[key] = "-"


def request_logger(node: str, *, trace_id: str | None = None, user_id: str | None = None, **extra):
    """Logger bound to one pipeline node for one story request."""

    return logger.bind(node=node, trace_id=trace_id, user_id=user_id, **extra)


def setup_logging(level: str) -> None:
    logger.remove()
    logger.configure(patcher=_fill_story_context)
    logger.add(sys.stderr, level=level.upper(), format=_LOG_FORMAT, backtrace=True, diagnose=False)
