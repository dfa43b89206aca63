import logging
from functools import partial

import httpx

from microblog.client.api import ApiError, MicroblogClient
from microblog.client.notifications import Notifier, ToastAction
from microblog.client.views import PostState

logger = logging.getLogger(__name__)

UNDO_SECONDS = 8.0

DELETE_ERROR_MESSAGES = {
    401: "Please log in to delete posts",
    403: "You can't delete another user's post",
    404: "Post not found",
}
NETWORK_ERROR_MESSAGE = "A network error occurred"
DELETE_FAILED_MESSAGE = "Failed to delete the post"
RESTORE_FAILED_MESSAGE = "Failed to restore the post"


def delete_error_message(error: Exception) -> str:
    if isinstance(error, ApiError):
        return DELETE_ERROR_MESSAGES.get(error.status_code, NETWORK_ERROR_MESSAGE)
    return NETWORK_ERROR_MESSAGE


class PostActions:
    """
    Optimistic post deletion with rollback and undo.

    Unlike likes, a failed delete is rolled back: the post goes back to its
    original index and the user sees why it failed.
    """

    def __init__(
        self,
        api: MicroblogClient,
        notifier: Notifier,
        undo_seconds: float = UNDO_SECONDS,
    ):
        self.api = api
        self.notifier = notifier
        self.undo_seconds = undo_seconds

    async def delete_in_list(self, post_id: int, posts: list[PostState]) -> bool:
        index = next((i for i, post in enumerate(posts) if post.id == post_id), -1)
        if index == -1:
            return False

        target = posts.pop(index)
        logger.debug("Optimistically removed post %s from index %s", post_id, index)

        try:
            response = await self.api.delete_post(post_id)
        except (ApiError, httpx.RequestError) as e:
            logger.warning("Deleting post %s failed: %s", post_id, e)
            posts.insert(index, target)
            self.notifier.error(delete_error_message(e))
            return False

        if not response.get("success"):
            posts.insert(index, target)
            self.notifier.error(DELETE_FAILED_MESSAGE)
            return False

        self.notifier.success(
            "Post deleted",
            duration=self.undo_seconds,
            action=ToastAction("Undo", partial(self.restore_in_list, post_id, target, index, posts)),
        )
        return True

    async def restore_in_list(
        self, post_id: int, post: PostState, original_index: int, posts: list[PostState]
    ) -> bool:
        if not await self._restore(post_id):
            return False
        posts.insert(original_index, post)
        return True

    async def delete_in_detail(self, post_id: int) -> bool:
        """Delete from a detail page, where there is no list to roll back."""
        try:
            response = await self.api.delete_post(post_id)
        except (ApiError, httpx.RequestError) as e:
            logger.warning("Deleting post %s failed: %s", post_id, e)
            self.notifier.error(delete_error_message(e))
            return False

        if not response.get("success"):
            self.notifier.error(DELETE_FAILED_MESSAGE)
            return False

        self.notifier.success(
            "Post deleted",
            duration=self.undo_seconds,
            action=ToastAction("Undo", partial(self._restore, post_id)),
        )
        return True

    async def _restore(self, post_id: int) -> bool:
        try:
            response = await self.api.restore_post(post_id)
        except (ApiError, httpx.RequestError) as e:
            logger.warning("Restoring post %s failed: %s", post_id, e)
            self.notifier.error(RESTORE_FAILED_MESSAGE)
            return False

        if not response.get("success"):
            self.notifier.error(RESTORE_FAILED_MESSAGE)
            return False

        self.notifier.success("Post restored")
        return True
