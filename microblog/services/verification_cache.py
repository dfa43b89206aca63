import hashlib
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from microblog.schemas.auth import ExternalIdentity
from microblog.services.identity_provider import IdentityProvider, InvalidTokenError

logger = logging.getLogger(__name__)

DEFAULT_POSITIVE_TTL = 300
DEFAULT_NEGATIVE_TTL = 60
DEFAULT_MAX_ENTRIES = 10_000


def token_cache_key(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass
class VerificationCacheEntry:
    identity: ExternalIdentity | None
    error: str | None  # rejection message; a fresh exception is raised per hit
    expires_at: float  # wall clock


class TokenVerificationCache:
    """
    Short-lived cache of token verification outcomes.

    Successful verifications are kept for ``positive_ttl`` seconds (never past
    the token's own expiry); rejected tokens for ``negative_ttl`` seconds so a
    malformed token cannot trigger repeated provider calls. Provider outages are
    not cached. Expired entries are dropped lazily on access and the oldest
    entries are evicted once ``max_entries`` is reached.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        positive_ttl: int = DEFAULT_POSITIVE_TTL,
        negative_ttl: int = DEFAULT_NEGATIVE_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        self.provider = provider
        self.positive_ttl = positive_ttl
        self.negative_ttl = negative_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, VerificationCacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def resolve(self, token: str) -> ExternalIdentity:
        key = token_cache_key(token)
        now = self._clock()

        entry = self._entries.get(key)
        if entry is not None:
            if entry.expires_at > now:
                self._entries.move_to_end(key)
                if entry.error is not None:
                    raise InvalidTokenError(entry.error)
                return entry.identity
            del self._entries[key]

        try:
            identity = await self.provider.verify(token)
        except InvalidTokenError as e:
            self._store(key, VerificationCacheEntry(None, str(e), now + self.negative_ttl))
            raise

        expires_at = now + self.positive_ttl
        if identity.expires_at is not None:
            expires_at = min(expires_at, float(identity.expires_at))
        self._store(key, VerificationCacheEntry(identity, None, expires_at))
        return identity

    def invalidate(self, token: str) -> None:
        self._entries.pop(token_cache_key(token), None)

    def clear(self) -> None:
        self._entries.clear()

    def _store(self, key: str, entry: VerificationCacheEntry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Verification cache full, evicted %s", evicted[:12])
