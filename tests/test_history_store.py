from __future__ import annotations

from pathlib import Path

import orjson
import pytest

from story_engine.domain.errors import StorageFull
from story_engine.domain.models import AdventureMetadata, FinalScene, NarrativeHistoryItem, StorySnapshot
from story_engine.history.store import FileStorageBackend, HistoryStore


class _FakeBackend:
    """Rejects writes larger than ``max_bytes``."""

    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = max_bytes
        self.data: bytes | None = None
        self.attempts = 0

    def read(self) -> bytes | None:
        return self.data

    def write(self, data: bytes) -> None:
        self.attempts += 1
        if len(data) > self.max_bytes:
            raise StorageFull("full")
        self.data = data

    def clear(self) -> None:
        self.data = None


def _snapshot(items: int, *, with_media: bool = False) -> StorySnapshot:
    history = [
        NarrativeHistoryItem(passage=f"passage {index} " + "x" * 200, choice_text=f"choice {index}", summary=f"s{index}")
        for index in range(items)
    ]
    history[-1] = history[-1].model_copy(update={"choice_text": None})
    scene = FinalScene(
        passage=history[-1].passage,
        choices=[],
        updated_summary="s",
        image_url="data:image/png;base64,SU1H" if with_media else None,
        audio_data="QVVE" if with_media else None,
        generation_prompt="prompt",
    )
    return StorySnapshot(metadata=AdventureMetadata(genre="Fantasy"), history=history, current_scene=scene)


def test_save_and_load_round_trip_without_media() -> None:
    backend = _FakeBackend(max_bytes=1_000_000)
    store = HistoryStore(backend)

    pruned = store.save(_snapshot(3, with_media=True))
    loaded = store.load()

    assert pruned == 0
    assert loaded is not None
    assert len(loaded.history) == 3
    assert loaded.metadata.genre == "Fantasy"
    assert loaded.current_scene is not None
    assert loaded.current_scene.image_url is None
    assert loaded.current_scene.audio_data is None
    assert b"SU1H" not in (backend.data or b"")


def test_storage_full_evicts_oldest_items_first() -> None:
    snapshot = _snapshot(10)
    full_size = len(orjson.dumps(snapshot.model_dump(mode="json", by_alias=True)))
    backend = _FakeBackend(max_bytes=full_size - 500)
    store = HistoryStore(backend, max_prune_attempts=20)

    pruned = store.save(snapshot)
    loaded = store.load()

    assert pruned >= 1
    assert loaded is not None
    assert len(loaded.history) == 10 - pruned
    assert loaded.history[-1].passage == snapshot.history[-1].passage
    assert loaded.history[0].passage == snapshot.history[pruned].passage


def test_storage_full_gives_up_after_max_attempts() -> None:
    backend = _FakeBackend(max_bytes=10)
    store = HistoryStore(backend, max_prune_attempts=3)

    with pytest.raises(StorageFull):
        store.save(_snapshot(10))

    assert backend.attempts == 4
    assert backend.data is None


def test_latest_item_is_never_evicted() -> None:
    backend = _FakeBackend(max_bytes=10)
    store = HistoryStore(backend, max_prune_attempts=50)

    with pytest.raises(StorageFull):
        store.save(_snapshot(2))

    assert backend.attempts == 2


def test_file_backend_enforces_byte_budget(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "history.json"
    backend = FileStorageBackend(path, max_bytes=8)

    backend.write(b"12345678")
    assert path.read_bytes() == b"12345678"

    with pytest.raises(StorageFull):
        backend.write(b"123456789")
    assert path.read_bytes() == b"12345678"

    backend.clear()
    assert backend.read() is None


def test_unreadable_history_is_discarded(tmp_path: Path) -> None:
    path = tmp_path / "history.json"
    path.write_bytes(b"{not json")
    store = HistoryStore(FileStorageBackend(path, max_bytes=1000))

    assert store.load() is None
