import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class ApiError(Exception):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body.get("message") or body)
    return str(body)


class MicroblogClient:
    """
    Thin async client for the endpoints the coordinators call.

    Network-layer failures surface as ``httpx.RequestError``; HTTP error
    statuses as ``ApiError``.
    """

    def __init__(
        self,
        base_url: str = "",
        http: httpx.AsyncClient | None = None,
        timeout: float = 10,
    ):
        self.http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def _request(self, method: str, path: str, json: Any = None) -> dict[str, Any]:
        response = await self.http.request(method, f"{API_PREFIX}{path}", json=json)
        if response.is_error:
            raise ApiError(response.status_code, _error_message(response))
        return response.json()

    async def set_like(self, post_id: int, is_liked: bool) -> dict[str, Any]:
        return await self._request("POST", f"/posts/{post_id}/like", json={"isLiked": is_liked})

    async def delete_post(self, post_id: int) -> dict[str, Any]:
        return await self._request("DELETE", f"/posts/{post_id}")

    async def restore_post(self, post_id: int) -> dict[str, Any]:
        return await self._request("POST", f"/posts/{post_id}/restore")

    async def aclose(self) -> None:
        await self.http.aclose()
