from __future__ import annotations

import hashlib
import uuid


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def prompt_hash(prompt: str) -> str:
    return sha256_text(prompt)[:16]


def new_trace_id() -> str:
    return uuid.uuid4().hex[:12]
