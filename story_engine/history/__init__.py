from story_engine.history.store import FileStorageBackend, HistoryStore, StorageBackend

__all__ = ["FileStorageBackend", "HistoryStore", "StorageBackend"]
