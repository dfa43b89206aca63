import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from microblog.services.identity_provider import FakeIdentityProvider
from microblog.services.revocation import (
    KEY_PREFIX,
    InMemoryRevocationStore,
    RedisRevocationStore,
    RevocationRecord,
    RevocationRegistry,
    RevocationStorageError,
    fingerprint,
    token_expiry,
)
from microblog.services.session_auth import AuthState, SessionAuthenticator
from microblog.services.verification_cache import TokenVerificationCache


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    """Records calls the way redis.asyncio.Redis would receive them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.values: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self.values[key] = value
        self.expiry[key] = ex
        return True

    async def exists(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if key in self.values)

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True


class FailingStore:
    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        raise RevocationStorageError("down")

    async def exists(self, key: str) -> bool:
        raise RevocationStorageError("down")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryRevocationStore:
    return InMemoryRevocationStore(clock=clock)


@pytest.fixture
def registry(store: InMemoryRevocationStore, clock: FakeClock) -> RevocationRegistry:
    return RevocationRegistry(store, default_ttl=86_400, clock=clock)


class TestRevocationRegistry:
    """Tests for recording and checking revoked tokens."""

    @pytest.mark.asyncio
    async def test_revoked_token_is_reported(self, registry):
        """An added token reads back as revoked."""
        assert await registry.is_revoked("token-a") is False

        assert await registry.add("token-a", natural_expires_at=1_000_600) is True

        assert await registry.is_revoked("token-a") is True
        assert await registry.is_revoked("token-b") is False

    @pytest.mark.asyncio
    async def test_entry_expires_with_token(self, registry, clock):
        """Entries live only until the token would expire."""
        await registry.add("token-a", natural_expires_at=1_000_600)

        clock.now = 1_000_599
        assert await registry.is_revoked("token-a") is True
        clock.now = 1_000_601
        assert await registry.is_revoked("token-a") is False

    @pytest.mark.asyncio
    async def test_key_is_a_fingerprint(self, registry, store):
        """The raw token is never used as the key."""
        await registry.add("token-a", natural_expires_at=1_000_600)

        key = RevocationRegistry.key_for("token-a")
        assert key == f"{KEY_PREFIX}{fingerprint('token-a')}"
        assert "token-a" not in key

        record = RevocationRecord.model_validate_json(store.get(key))
        assert record.fingerprint == fingerprint("token-a")
        assert record.revoked_at == 1_000_000
        assert record.natural_expires_at == 1_000_600

    def test_ttl_for(self, registry):
        """TTL is the time left before token expiry."""
        assert registry.ttl_for(1_000_600) == 600
        assert registry.ttl_for(None) == 86_400
        # Already expired tokens still get a minimal entry
        assert registry.ttl_for(999_000) == 1

    @pytest.mark.asyncio
    async def test_add_reports_storage_failure(self):
        """Add returns False when the store is down."""
        registry = RevocationRegistry(FailingStore())
        assert await registry.add("token-a") is False

    @pytest.mark.asyncio
    async def test_lookup_fails_closed(self):
        """Lookups treat storage errors as revoked."""
        registry = RevocationRegistry(FailingStore())
        assert await registry.is_revoked("token-a") is True


class TestTokenExpiry:
    """Tests for reading exp from unverified tokens."""

    def test_reads_exp_claim(self):
        """The exp claim is read without verification."""
        provider = FakeIdentityProvider("secret")
        token = provider.issue_token("uid-1", expires_in=120)
        exp = token_expiry(token)
        assert exp is not None
        assert exp > 0

    def test_malformed_token(self):
        """Malformed tokens have no expiry."""
        assert token_expiry("garbage") is None


class TestRedisRevocationStore:
    """Tests for the Redis-backed store."""

    @pytest.mark.asyncio
    async def test_set_with_ttl(self):
        """Keys are written with an expiry."""
        client = FakeRedis()
        store = RedisRevocationStore(client)

        await store.set_with_ttl("jwt_blacklist:abc", "{}", 600)

        assert client.expiry["jwt_blacklist:abc"] == 600
        assert await store.exists("jwt_blacklist:abc") is True
        assert await store.exists("jwt_blacklist:missing") is False

    @pytest.mark.asyncio
    async def test_errors_are_wrapped(self):
        """Redis errors surface as storage errors."""
        store = RedisRevocationStore(FakeRedis(fail=True))

        with pytest.raises(RevocationStorageError):
            await store.set_with_ttl("key", "value", 10)
        with pytest.raises(RevocationStorageError):
            await store.exists("key")
        with pytest.raises(RevocationStorageError):
            await store.ping()

    @pytest.mark.asyncio
    async def test_registry_over_unreachable_redis(self):
        """A registry over a dead Redis fails closed."""
        registry = RevocationRegistry(RedisRevocationStore(FakeRedis(fail=True)))

        assert await registry.add("token-a") is False
        assert await registry.is_revoked("token-a") is True

    @pytest.mark.asyncio
    async def test_close(self):
        """Closing releases the client."""
        client = FakeRedis()
        await RedisRevocationStore(client).close()
        assert client.closed is True


class TestSessionAuthenticator:
    """Revocation is checked ahead of the verification cache."""

    @pytest.mark.asyncio
    async def test_revocation_beats_cached_verification(self, registry):
        """A cached verification does not outlive revocation."""
        provider = FakeIdentityProvider("secret")
        verifier = TokenVerificationCache(provider)
        authenticator = SessionAuthenticator(registry, verifier)
        token = provider.issue_token("uid-1", email="one@example.com")

        outcome = await authenticator.verify(token)
        assert outcome.state is AuthState.AUTHENTICATED

        await registry.add(token, token_expiry(token))

        outcome = await authenticator.verify(token)
        assert outcome.state is AuthState.BLACKLISTED
        assert outcome.reason == "Token has been revoked (logged out)"
        assert outcome.status_code == 401
        assert provider.verify_calls == 1

    @pytest.mark.asyncio
    async def test_missing_token(self, registry):
        """No token is anonymous."""
        authenticator = SessionAuthenticator(
            registry, TokenVerificationCache(FakeIdentityProvider("secret"))
        )
        outcome = await authenticator.verify(None)
        assert outcome.state is AuthState.NO_TOKEN
        assert outcome.authenticated is False

    @pytest.mark.asyncio
    async def test_provider_outage(self, registry):
        """Provider outages are reported as unavailable."""
        provider = FakeIdentityProvider("secret")
        provider.outage = ConnectionError("unreachable")
        authenticator = SessionAuthenticator(registry, TokenVerificationCache(provider))

        outcome = await authenticator.verify(provider.issue_token("uid-1"))
        assert outcome.state is AuthState.PROVIDER_ERROR
        assert outcome.reason == "Authentication service unavailable"
