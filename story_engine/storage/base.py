from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def import_all_models() -> None:
    from story_engine.storage.quotas.base import RateLimit
    from story_engine.storage.users.base import User

    _ = (User, RateLimit)
