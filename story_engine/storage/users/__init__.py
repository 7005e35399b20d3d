"""User storage models and CRUD helpers."""

from story_engine.storage.users.base import User
from story_engine.storage.users import crud

__all__ = ["User", "crud"]
