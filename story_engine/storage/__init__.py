"""Storage layer for SQLite via SQLAlchemy async."""

from story_engine.storage import quotas, users

__all__ = ["quotas", "users"]
