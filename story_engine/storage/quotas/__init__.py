"""Per-user daily quota rows and atomic counter helpers."""

from story_engine.storage.quotas.base import RateLimit
from story_engine.storage.quotas import crud

__all__ = ["RateLimit", "crud"]
