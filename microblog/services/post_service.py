import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from microblog.models.post import Post
from microblog.models.user import User

logger = logging.getLogger(__name__)


class PostNotFoundError(Exception):
    pass


class PostPermissionError(Exception):
    pass


class PostService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, post_id: int, include_deleted: bool = False) -> Optional[Post]:
        query = select(Post).where(Post.id == post_id)
        if not include_deleted:
            query = query.where(Post.deleted_at.is_(None))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _get_owned(self, post_id: int, user: User, deleted: bool) -> Post:
        post = await self.get_by_id(post_id, include_deleted=True)
        if post is None or post.is_deleted != deleted:
            raise PostNotFoundError("Post not found")
        if post.user_id != user.id:
            raise PostPermissionError("You can only modify your own posts")
        return post

    async def soft_delete(self, post_id: int, user: User) -> Post:
        post = await self._get_owned(post_id, user, deleted=False)
        post.deleted_at = datetime.now(timezone.utc)
        await self.db.flush()
        logger.info("Post %s deleted by %s", post_id, user.id)
        return post

    async def restore(self, post_id: int, user: User) -> Post:
        post = await self._get_owned(post_id, user, deleted=True)
        post.deleted_at = None
        await self.db.flush()
        logger.info("Post %s restored by %s", post_id, user.id)
        return post
