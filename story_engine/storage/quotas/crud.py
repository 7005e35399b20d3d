from __future__ import annotations

from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from story_engine.storage.quotas.base import RateLimit
from story_engine.storage.types import QuotaRow


def _to_row(row: tuple) -> QuotaRow:
    return QuotaRow(
        user_id=str(row[0]),
        request_class=str(row[1]),
        window_start_time=int(row[2]),
        request_count=int(row[3]),
    )


async def get_quota(session: AsyncSession, user_id: str, request_class: str) -> QuotaRow | None:
    result = await session.execute(
        select(
            RateLimit.user_id,
            RateLimit.request_class,
            RateLimit.window_start_time,
            RateLimit.request_count,
        ).where(RateLimit.user_id == user_id, RateLimit.request_class == request_class)
    )
    row = result.first()
    return _to_row(row) if row else None


async def list_quotas(session: AsyncSession, user_id: str) -> list[QuotaRow]:
    result = await session.execute(
        select(
            RateLimit.user_id,
            RateLimit.request_class,
            RateLimit.window_start_time,
            RateLimit.request_count,
        )
        .where(RateLimit.user_id == user_id)
        .order_by(RateLimit.request_class)
    )
    return [_to_row(row) for row in result.all()]


async def open_window(session: AsyncSession, user_id: str, request_class: str, now_ms: int) -> bool:
    """Insert the first row for a key with ``request_count=1``.

    Returns False when the row already exists. Being a write, it also takes the
    store's write lock before any counter is inspected.
    """

    stmt = (
        sqlite_insert(RateLimit)
        .values(user_id=user_id, request_class=request_class, window_start_time=now_ms, request_count=1)
        .on_conflict_do_nothing(index_elements=[RateLimit.user_id, RateLimit.request_class])
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def consume(
    session: AsyncSession,
    user_id: str,
    request_class: str,
    *,
    now_ms: int,
    window_floor_ms: int,
    limit: int,
) -> QuotaRow | None:
    """Reset-or-increment the counter in one conditional statement.

    A row whose window started before ``window_floor_ms`` restarts at 1. Otherwise the
    count is incremented only while below ``limit``. Returns None when the limit is
    already reached.
    """

    expired = RateLimit.window_start_time < window_floor_ms
    stmt = (
        update(RateLimit)
        .where(
            RateLimit.user_id == user_id,
            RateLimit.request_class == request_class,
            or_(expired, RateLimit.request_count < limit),
        )
        .values(
            request_count=case((expired, 1), else_=RateLimit.request_count + 1),
            window_start_time=case((expired, now_ms), else_=RateLimit.window_start_time),
        )
        .returning(
            RateLimit.user_id,
            RateLimit.request_class,
            RateLimit.window_start_time,
            RateLimit.request_count,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    row = result.first()
    return _to_row(row) if row else None


async def reset_quota(session: AsyncSession, user_id: str, request_class: str | None = None) -> int:
    stmt = delete(RateLimit).where(RateLimit.user_id == user_id)
    if request_class is not None:
        stmt = stmt.where(RateLimit.request_class == request_class)
    result = await session.execute(stmt.execution_options(synchronize_session=False))
    return int(result.rowcount or 0)
