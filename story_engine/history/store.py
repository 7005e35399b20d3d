from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol

import orjson
from loguru import logger
from pydantic import ValidationError

from story_engine.domain.errors import StorageFull
from story_engine.domain.models import StorySnapshot

node_log = logger.bind(node="history_store")


class StorageBackend(Protocol):
    def read(self) -> bytes | None: ...

    def write(self, data: bytes) -> None: ...

    def clear(self) -> None: ...


class FileStorageBackend:
    """Single JSON file with a byte quota, written atomically through a temp file."""

    def __init__(self, path: Path, max_bytes: int) -> None:
        self.path = path
        self.max_bytes = max_bytes

    def read(self) -> bytes | None:
        if not self.path.exists():
            return None
        return self.path.read_bytes()

    def write(self, data: bytes) -> None:
        if len(data) > self.max_bytes:
            raise StorageFull(f"{len(data)} bytes exceeds quota of {self.max_bytes}")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class HistoryStore:
    """Persists the story snapshot between sessions.

    Media payloads on the current scene are never persisted. When the backend
    reports it is full, the oldest history items are dropped one at a time and
    the write is retried, up to ``max_prune_attempts`` times. The latest item is
    never dropped.
    """

    def __init__(self, backend: StorageBackend, *, max_prune_attempts: int = 20) -> None:
        self.backend = backend
        self.max_prune_attempts = max_prune_attempts

    def save(self, snapshot: StorySnapshot) -> int:
        """Write ``snapshot``; return how many history items had to be evicted."""

        payload = snapshot.without_media()
        pruned = 0
        while True:
            data = orjson.dumps(payload.model_dump(mode="json", by_alias=True))
            try:
                self.backend.write(data)
            except StorageFull:
                if pruned >= self.max_prune_attempts or len(payload.history) <= 1:
                    node_log.error("History still too large after evicting {} items", pruned)
                    raise
                payload = payload.model_copy(update={"history": payload.history[1:]})
                pruned += 1
                node_log.warning("Storage full; evicted oldest history item (total evicted={})", pruned)
                continue
            if pruned:
                node_log.info("Saved history after evicting {} items", pruned)
            return pruned

    def load(self) -> StorySnapshot | None:
        raw = self.backend.read()
        if raw is None:
            return None
        try:
            return StorySnapshot.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as exc:
            node_log.warning("Discarding unreadable saved history: {}", exc)
            return None

    def clear(self) -> None:
        self.backend.clear()
