from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from story_engine.storage.quotas import crud as quotas_crud
from story_engine.storage.types import InsertResult, UserRow
from story_engine.storage.users import crud as users_crud


class SQLAlchemyRepo:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_or_create_user(
        self,
        provider_id: str,
        provider: str,
        name: str | None = None,
        email: str | None = None,
        language: str | None = None,
    ) -> InsertResult:
        return await users_crud.get_or_create_user(
            self.session,
            provider_id=provider_id,
            provider=provider,
            name=name,
            email=email,
            language=language,
        )

    async def list_users(self) -> list[UserRow]:
        return await users_crud.list_users(self.session)

    async def delete_user(self, user_id: str) -> bool:
        return await users_crud.delete_user(self.session, user_id)

    async def reset_quota(self, user_id: str, request_class: str | None = None) -> int:
        return await quotas_crud.reset_quota(self.session, user_id, request_class)
