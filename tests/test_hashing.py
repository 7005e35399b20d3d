from __future__ import annotations

from story_engine.domain.hashing import new_trace_id, prompt_hash, sha256_text


def test_sha256_text_deterministic() -> None:
    assert sha256_text("hello") == sha256_text("hello")
    assert sha256_text("hello") != sha256_text("world")
    assert len(sha256_text("hello")) == 64


def test_prompt_hash_is_short_prefix() -> None:
    assert prompt_hash("prompt") == sha256_text("prompt")[:16]


def test_trace_ids_are_unique() -> None:
    ids = {new_trace_id() for _ in range(50)}

    assert len(ids) == 50
    assert all(len(value) == 12 for value in ids)
