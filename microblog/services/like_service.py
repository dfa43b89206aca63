import logging
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from microblog.models.post import Like

logger = logging.getLogger(__name__)


class LikeService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def count(self, post_id: int) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Like).where(Like.post_id == post_id)
        )
        return result.scalar_one()

    async def is_liked(self, user_id: UUID, post_id: int) -> bool:
        result = await self.db.execute(
            select(Like.id).where(Like.user_id == user_id, Like.post_id == post_id)
        )
        return result.scalar_one_or_none() is not None

    async def set_liked(self, user_id: UUID, post_id: int, liked: bool) -> tuple[bool, int]:
        """
        Bring the like to the requested state. Repeating a request is a no-op,
        so clients only ever send their final intended value.
        Returns (is_liked, likes_count).
        """
        if liked:
            if not await self.is_liked(user_id, post_id):
                try:
                    async with self.db.begin_nested():
                        self.db.add(Like(user_id=user_id, post_id=post_id))
                        await self.db.flush()
                except IntegrityError:
                    # Another request created it first
                    logger.debug("Like for post %s by %s already exists", post_id, user_id)
        else:
            await self.db.execute(
                delete(Like).where(Like.user_id == user_id, Like.post_id == post_id)
            )

        return liked, await self.count(post_id)
