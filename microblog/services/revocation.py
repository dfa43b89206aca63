"""
Revocation registry for session tokens.

Session tokens are the identity provider's own ID tokens, so the only way to
end a session before the token expires is to remember that it was revoked.
Entries are keyed by a SHA-256 fingerprint of the token, never the token
itself, and expire together with the token so the store stays bounded.

Failure policy differs per operation:

* ``add`` returns ``False`` on storage errors (logout must still succeed).
* ``is_revoked`` returns ``True`` on storage errors (fail closed).
"""

import hashlib
import logging
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

import redis.asyncio as aioredis
from jose import JWTError, jwt
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_REVOCATION_TTL = 86_400
KEY_PREFIX = "jwt_blacklist:"


class RevocationStorageError(Exception):
    """The backing key-value store could not be read or written."""


class RevocationRecord(BaseModel):
    fingerprint: str
    revoked_at: int
    natural_expires_at: int | None = None


@runtime_checkable
class RevocationStore(Protocol):
    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        """Atomically store a value that expires after ``ttl_seconds``."""
        ...

    async def exists(self, key: str) -> bool: ...


class RedisRevocationStore:
    """Redis-backed store shared by every API process."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str, socket_timeout: float = 5.0) -> "RedisRevocationStore":
        client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise RevocationStorageError(str(e)) from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(key))
        except RedisError as e:
            raise RevocationStorageError(str(e)) from e

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            raise RevocationStorageError(str(e)) from e

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryRevocationStore:
    """Per-process store for development and tests."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        # key -> (value, expiry timestamp)
        self._values: dict[str, tuple[str, float]] = {}

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._values[key] = (value, self._clock() + ttl_seconds)

    async def exists(self, key: str) -> bool:
        item = self._values.get(key)
        if item is None:
            return False
        if item[1] <= self._clock():
            del self._values[key]
            return False
        return True

    def get(self, key: str) -> str | None:
        item = self._values.get(key)
        return item[0] if item else None


def fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def token_expiry(token: str) -> int | None:
    """Read the ``exp`` claim of a JWT without verifying it."""
    try:
        exp = jwt.get_unverified_claims(token).get("exp")
    except JWTError:
        return None
    try:
        return int(exp) if exp is not None else None
    except (TypeError, ValueError):
        return None


class RevocationRegistry:
    def __init__(
        self,
        store: RevocationStore,
        default_ttl: int = DEFAULT_REVOCATION_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.default_ttl = default_ttl
        self._clock = clock

    @staticmethod
    def key_for(token: str) -> str:
        return f"{KEY_PREFIX}{fingerprint(token)}"

    def ttl_for(self, natural_expires_at: int | None) -> int:
        if natural_expires_at is None:
            return self.default_ttl
        return max(1, int(natural_expires_at - self._clock()))

    async def add(self, token: str, natural_expires_at: int | None = None) -> bool:
        record = RevocationRecord(
            fingerprint=fingerprint(token),
            revoked_at=int(self._clock()),
            natural_expires_at=natural_expires_at,
        )
        ttl = self.ttl_for(natural_expires_at)

        try:
            await self.store.set_with_ttl(
                f"{KEY_PREFIX}{record.fingerprint}", record.model_dump_json(), ttl
            )
        except RevocationStorageError as e:
            logger.error(
                "Failed to revoke token %s: %s", record.fingerprint[:12], e
            )
            return False

        logger.info(
            "Revoked token %s (ttl=%ds, expires_at=%s)",
            record.fingerprint[:12],
            ttl,
            natural_expires_at,
        )
        return True

    async def is_revoked(self, token: str) -> bool:
        key = self.key_for(token)
        try:
            revoked = await self.store.exists(key)
        except RevocationStorageError as e:
            logger.error("Revocation check failed, treating token as revoked: %s", e)
            return True

        if revoked:
            logger.info("Revoked token presented: %s", key[len(KEY_PREFIX):][:12])
        return revoked
