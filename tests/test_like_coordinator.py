import asyncio
import json

import httpx
import pytest

from microblog.client.api import MicroblogClient
from microblog.client.likes import LIKE_FAILED_MESSAGE, LikeCoordinator
from microblog.client.notifications import ToastQueue, ToastType
from microblog.client.views import PostState

DEBOUNCE = 0.01


class FakeServer:
    """Like endpoint double that records the bodies it receives."""

    def __init__(self):
        self.bodies: list[dict] = []
        self.status = 200
        self.likes_count = 10
        self.success = True
        self.network_error = False
        self.gate: asyncio.Event | None = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.bodies.append(body)
        if self.gate is not None:
            await self.gate.wait()
        if self.network_error:
            raise httpx.ConnectError("connection reset", request=request)
        if self.status != 200:
            return httpx.Response(self.status, json={"detail": "Server error"})
        if not self.success:
            return httpx.Response(200, json={"success": False, "error": "Like failed"})
        return httpx.Response(
            200,
            json={"success": True, "is_liked": body["isLiked"], "likes_count": self.likes_count},
        )


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def toasts() -> ToastQueue:
    return ToastQueue()


@pytest.fixture
def coordinator(server: FakeServer, toasts: ToastQueue) -> LikeCoordinator:
    http = httpx.AsyncClient(transport=httpx.MockTransport(server.handler), base_url="http://test")
    return LikeCoordinator(MicroblogClient(http=http), toasts, debounce=DEBOUNCE)


async def settle(coordinator: LikeCoordinator) -> None:
    await asyncio.sleep(DEBOUNCE * 5)
    await coordinator.wait_idle()


class TestLikeCoordinator:
    @pytest.mark.asyncio
    async def test_toggle_is_optimistic(self, coordinator: LikeCoordinator):
        post = PostState(id=1, is_liked=False, likes_count=3)

        assert coordinator.toggle(post) is True

        assert post.is_liked is True
        assert post.likes_count == 4
        assert coordinator.is_locked(1) is True
        coordinator.close()

    @pytest.mark.asyncio
    async def test_burst_sends_final_value_once(
        self, coordinator: LikeCoordinator, server: FakeServer
    ):
        post = PostState(id=1, is_liked=False, likes_count=3)

        for _ in range(3):
            coordinator.toggle(post)
        await settle(coordinator)

        assert server.bodies == [{"isLiked": True}]
        # Server values replace the optimistic ones
        assert post.is_liked is True
        assert post.likes_count == 10
        assert coordinator.is_locked(1) is False

    @pytest.mark.asyncio
    async def test_even_burst_sends_original_value(
        self, coordinator: LikeCoordinator, server: FakeServer
    ):
        post = PostState(id=1, is_liked=True, likes_count=3)

        coordinator.toggle(post)
        coordinator.toggle(post)
        assert post.is_liked is True
        assert post.likes_count == 3
        await settle(coordinator)

        assert server.bodies == [{"isLiked": True}]

    @pytest.mark.asyncio
    async def test_posts_are_independent(self, coordinator: LikeCoordinator, server: FakeServer):
        first = PostState(id=1)
        second = PostState(id=2, is_liked=True, likes_count=1)

        coordinator.toggle(first)
        coordinator.toggle(second)
        await settle(coordinator)

        assert sorted(body["isLiked"] for body in server.bodies) == [False, True]

    @pytest.mark.asyncio
    async def test_toggle_ignored_while_in_flight(
        self, coordinator: LikeCoordinator, server: FakeServer
    ):
        server.gate = asyncio.Event()
        post = PostState(id=1, is_liked=False, likes_count=0)

        coordinator.toggle(post)
        await asyncio.sleep(DEBOUNCE * 5)
        assert coordinator.is_in_flight(1) is True

        assert coordinator.toggle(post) is False
        assert post.is_liked is True
        assert post.likes_count == 1

        server.gate.set()
        await coordinator.wait_idle()
        assert coordinator.is_locked(1) is False
        assert len(server.bodies) == 1

    @pytest.mark.asyncio
    async def test_server_error_keeps_optimistic_state(
        self, coordinator: LikeCoordinator, server: FakeServer, toasts: ToastQueue
    ):
        server.status = 500
        post = PostState(id=1, is_liked=False, likes_count=0)

        coordinator.toggle(post)
        await settle(coordinator)

        assert post.is_liked is True
        assert post.likes_count == 1
        assert toasts.last(ToastType.ERROR).message == LIKE_FAILED_MESSAGE
        assert coordinator.is_locked(1) is False

    @pytest.mark.asyncio
    async def test_unsuccessful_response_shows_error(
        self, coordinator: LikeCoordinator, server: FakeServer, toasts: ToastQueue
    ):
        server.success = False
        post = PostState(id=1)

        coordinator.toggle(post)
        await settle(coordinator)

        assert post.is_liked is True
        assert toasts.last(ToastType.ERROR).message == LIKE_FAILED_MESSAGE

    @pytest.mark.asyncio
    async def test_network_error_is_silent(
        self, coordinator: LikeCoordinator, server: FakeServer, toasts: ToastQueue
    ):
        server.network_error = True
        post = PostState(id=1)

        coordinator.toggle(post)
        await settle(coordinator)

        assert post.is_liked is True
        assert toasts.toasts == []
        assert coordinator.is_locked(1) is False

    @pytest.mark.asyncio
    async def test_close_cancels_pending_request(
        self, coordinator: LikeCoordinator, server: FakeServer
    ):
        post = PostState(id=1)

        coordinator.toggle(post)
        coordinator.close()
        await settle(coordinator)

        assert server.bodies == []
        assert coordinator.toggle(post) is False

    @pytest.mark.asyncio
    async def test_response_after_close_is_ignored(
        self, coordinator: LikeCoordinator, server: FakeServer, toasts: ToastQueue
    ):
        server.gate = asyncio.Event()
        server.status = 500
        post = PostState(id=1, likes_count=0)

        coordinator.toggle(post)
        await asyncio.sleep(DEBOUNCE * 5)
        coordinator.close()
        server.gate.set()
        await coordinator.wait_idle()

        assert toasts.toasts == []

    @pytest.mark.asyncio
    async def test_views_stay_in_sync(self, coordinator: LikeCoordinator, server: FakeServer):
        feed = [PostState(id=1, likes_count=2), PostState(id=2, likes_count=7)]
        detail = PostState(id=1, likes_count=2)

        coordinator.toggle(feed[0], feed, detail)
        assert detail.is_liked is True
        assert detail.likes_count == 3

        await settle(coordinator)
        assert feed[0].likes_count == 10
        assert detail.likes_count == 10
        assert feed[1].likes_count == 7

    @pytest.mark.asyncio
    async def test_confirmed_like_has_no_flicker(
        self, coordinator: LikeCoordinator, server: FakeServer
    ):
        server.likes_count = 4
        post = PostState(id=42, is_liked=False, likes_count=3)
        observed: list[tuple[bool, int]] = []

        coordinator.toggle(post)
        observed.append((post.is_liked, post.likes_count))
        await settle(coordinator)
        observed.append((post.is_liked, post.likes_count))

        assert observed == [(True, 4), (True, 4)]
        assert server.bodies == [{"isLiked": True}]
