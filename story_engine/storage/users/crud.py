from __future__ import annotations

from datetime import datetime, timezone
import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from story_engine.storage.types import InsertResult, UserRow
from story_engine.storage.users.base import User


def _to_row(user: User) -> UserRow:
    return UserRow(
        id=str(user.id),
        provider_id=str(user.provider_id),
        provider=str(user.provider),
        name=user.name,
        email=user.email,
        language=user.language,
        first_login=user.first_login,
        last_login=user.last_login,
    )


async def get_or_create_user(
    session: AsyncSession,
    provider_id: str,
    provider: str,
    name: str | None = None,
    email: str | None = None,
    language: str | None = None,
    user_id: str | None = None,
) -> InsertResult:
    stmt = (
        sqlite_insert(User)
        .values(
            id=user_id or uuid.uuid4().hex,
            provider_id=provider_id,
            provider=provider,
            name=name,
            email=email,
            language=language,
        )
        .on_conflict_do_nothing(index_elements=[User.provider_id, User.provider])
    )
    result = await session.execute(stmt)
    inserted = result.rowcount == 1
    id_result = await session.execute(
        select(User.id).where(User.provider_id == provider_id, User.provider == provider)
    )
    resolved_id = str(id_result.scalar_one())
    if not inserted:
        await touch_last_login(session, resolved_id)
    return InsertResult(id=resolved_id, inserted=inserted)


async def list_users(session: AsyncSession) -> list[UserRow]:
    result = await session.execute(select(User).order_by(User.first_login, User.id))
    return [_to_row(user) for user in result.scalars().all()]


async def touch_last_login(session: AsyncSession, user_id: str, when: datetime | None = None) -> None:
    await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(last_login=when or datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )


async def delete_user(session: AsyncSession, user_id: str) -> bool:
    result = await session.execute(
        delete(User).where(User.id == user_id).execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
