from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import PENDING_OAUTH_PREFIX, User
from app.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self):
        super().__init__(User)

    async def get_by_alias(self, db: AsyncSession, alias: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.alias == alias))
        return result.scalar_one_or_none()

    async def find_by_identity(self, db: AsyncSession, provider: str, oauth_id: str) -> Optional[User]:
        """The user linked to this OAuth account, whatever its state; (provider, oauth_id) is unique."""
        result = await db.execute(
            select(User).where(User.provider == provider, User.oauth_id == oauth_id)
        )
        return result.scalar_one_or_none()

    async def find_latest_pending(self, db: AsyncSession, provider: str) -> Optional[User]:
        result = await db.execute(
            select(User)
            .where(
                User.provider == provider,
                User.is_authorized.is_(False),
                User.revoked_at.is_(None),
                User.oauth_id.startswith(PENDING_OAUTH_PREFIX),
            )
            .order_by(User.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def list_all(self, db: AsyncSession) -> list[User]:
        return await self.list(db, order_by=(User.created_at,), limit=None)
