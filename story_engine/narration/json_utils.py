from __future__ import annotations

from typing import Any
import re

import orjson

_FENCE_OPEN = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```[ \t]*$")


def strip_code_fence(text: str) -> str:
    """Remove a leading and/or trailing markdown fence such as ```json ... ```."""

    stripped = text.strip()
    stripped = _FENCE_OPEN.sub("", stripped, count=1)
    stripped = _FENCE_CLOSE.sub("", stripped, count=1)
    return stripped.strip()


def _sanitize_json_text(text: str) -> str:
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F]", "", cleaned)
    cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)
    return cleaned


def _load_between(candidate: str, opener: str, closer: str) -> Any:
    try:
        return orjson.loads(candidate)
    except orjson.JSONDecodeError:
        start = candidate.find(opener)
        end = candidate.rfind(closer)
        if start == -1 or end == -1 or end <= start:
            raise
        return orjson.loads(candidate[start : end + 1])


def safe_load_json_dict(text: str) -> dict[str, Any]:
    if not text or not text.strip():
        raise ValueError("Empty JSON text")

    payload = _load_between(_sanitize_json_text(strip_code_fence(text)), "{", "}")
    if not isinstance(payload, dict):
        raise ValueError("Expected JSON object")
    return payload


def safe_load_json_list(text: str) -> list[Any]:
    if not text or not text.strip():
        raise ValueError("Empty JSON text")

    payload = _load_between(_sanitize_json_text(strip_code_fence(text)), "[", "]")
    if not isinstance(payload, list):
        raise ValueError("Expected JSON array")
    return payload
