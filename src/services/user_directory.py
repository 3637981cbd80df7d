"""Read-only access to users, used for role checks."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import UserRecord


class UserDirectory:
    __slots__ = ("_session",)

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> UserRecord | None:
        return await self._session.scalar(select(UserRecord).where(UserRecord.id == user_id))
