"""
Debounced, optimistic like toggling.

Per post the coordinator moves through::

    idle --toggle--> pending --debounce elapses--> in flight --response--> idle

* A toggle flips the local state at once and (re)starts the debounce timer.
  Further toggles while pending flip again and restart the timer, so a burst
  of clicks sends one request carrying only the final value.
* While a request is in flight, toggles for that post are ignored.
* On success the server's ``is_liked``/``likes_count`` replace the local
  values. On failure the optimistic value stays; an error toast is shown
  unless the failure happened at the network layer.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from microblog.client.api import ApiError, MicroblogClient
from microblog.client.notifications import Notifier
from microblog.client.views import PostState, sync_like_state

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.5
LIKE_FAILED_MESSAGE = "Failed to update like"


@dataclass
class PendingLike:
    post: PostState
    pending_value: bool
    views: tuple[Any, ...] = ()
    in_flight: bool = False
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)


class LikeCoordinator:
    def __init__(
        self,
        api: MicroblogClient,
        notifier: Notifier,
        debounce: float = DEFAULT_DEBOUNCE,
    ):
        self.api = api
        self.notifier = notifier
        self.debounce = debounce
        self._pending: dict[int, PendingLike] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def is_locked(self, post_id: int) -> bool:
        return post_id in self._pending

    def is_in_flight(self, post_id: int) -> bool:
        state = self._pending.get(post_id)
        return state is not None and state.in_flight

    def toggle(self, post: PostState, *views: Any) -> bool:
        """Flip the like on ``post`` and schedule the server update. Returns False if ignored."""
        if self._closed:
            return False

        state = self._pending.get(post.id)
        if state is not None and state.in_flight:
            logger.debug("Like for post %s in flight, ignoring toggle", post.id)
            return False

        post.is_liked = not post.is_liked
        post.likes_count += 1 if post.is_liked else -1
        sync_like_state(post.id, post.is_liked, post.likes_count, *views)

        if state is None:
            state = PendingLike(post=post, pending_value=post.is_liked, views=views)
            self._pending[post.id] = state
        else:
            state.timer.cancel()
            state.post = post
            state.views = views
            state.pending_value = post.is_liked

        loop = asyncio.get_running_loop()
        state.timer = loop.call_later(self.debounce, self._fire, post.id)
        return True

    def _fire(self, post_id: int) -> None:
        state = self._pending.get(post_id)
        if state is None or self._closed:
            return
        state.timer = None
        state.in_flight = True
        task = asyncio.get_running_loop().create_task(self._send(post_id, state))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, post_id: int, state: PendingLike) -> None:
        value = state.pending_value
        logger.debug("Sending like state for post %s: %s", post_id, value)
        try:
            response = await self.api.set_like(post_id, value)
        except httpx.RequestError as e:
            # Cosmetic toggle: keep the optimistic state and stay quiet
            logger.info("Like request for post %s failed: %s", post_id, e)
            return
        except ApiError as e:
            logger.warning("Like request for post %s rejected (%s): %s", post_id, e.status_code, e)
            if not self._closed:
                self.notifier.error(LIKE_FAILED_MESSAGE)
            return
        finally:
            if self._pending.get(post_id) is state:
                del self._pending[post_id]

        if self._closed:
            return

        if not response.get("success"):
            logger.warning("Like request for post %s failed: %s", post_id, response.get("error"))
            self.notifier.error(LIKE_FAILED_MESSAGE)
            return

        post = state.post
        post.is_liked = bool(response.get("is_liked", value))
        post.likes_count = int(response.get("likes_count", post.likes_count))
        sync_like_state(post_id, post.is_liked, post.likes_count, *state.views)

    async def wait_idle(self) -> None:
        """Wait for requests already in flight to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Cancel scheduled requests. Responses still in flight are ignored."""
        self._closed = True
        for state in self._pending.values():
            if state.timer is not None:
                state.timer.cancel()
        self._pending.clear()
