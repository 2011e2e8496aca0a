"""Owner directory backed by the app_user table."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paylink_engine.models import AppUser


@dataclass(frozen=True)
class NotionCredentials:
    api_key: str
    database_id: str


class UserDirectory:
    """WalletDirectory implementation that reads ``app_user`` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_user(self, user_id: str) -> AppUser | None:
        async with self._session_factory() as session:
            return await session.get(AppUser, user_id)

    async def resolve_receiving_address(self, user_id: str) -> str | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AppUser.wallet_address).where(AppUser.user_id == user_id)
            )
            address = result.scalar_one_or_none()
        return address or None

    async def notion_credentials(self, user_id: str) -> NotionCredentials | None:
        """Return the user's Notion credentials, or None if not connected."""
        user = await self.get_user(user_id)
        if user is None or not user.notion_api_key or not user.notion_database_id:
            return None
        return NotionCredentials(
            api_key=user.notion_api_key,
            database_id=user.notion_database_id,
        )
