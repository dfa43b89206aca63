"""
Per-request session authentication.

    no token                -> NO_TOKEN
    token revoked           -> BLACKLISTED      (401)
    verification fails      -> INVALID_TOKEN    (401)
    provider unreachable    -> PROVIDER_ERROR   (401)
    identity has no email   -> NO_EMAIL         (422)
    reconciled              -> AUTHENTICATED

The revocation registry is consulted before the verification cache on every
call: a cached positive verification never outlives a logout.
"""

import logging
from dataclasses import dataclass
from enum import StrEnum

from sqlalchemy.ext.asyncio import AsyncSession

from microblog.config import Settings
from microblog.models.user import User
from microblog.schemas.auth import ExternalIdentity
from microblog.services.identity_provider import (
    IdentityProvider,
    InvalidTokenError,
    ProviderError,
    build_identity_provider,
)
from microblog.services.revocation import (
    InMemoryRevocationStore,
    RedisRevocationStore,
    RevocationRegistry,
    RevocationStore,
)
from microblog.services.user_service import NoEmailError, UserConflictError, UserService
from microblog.services.verification_cache import TokenVerificationCache
from microblog.utils.cookies import SessionCookieManager

logger = logging.getLogger(__name__)


class AuthState(StrEnum):
    AUTHENTICATED = "authenticated"
    NO_TOKEN = "no_token"
    BLACKLISTED = "blacklisted"
    INVALID_TOKEN = "invalid_token"
    PROVIDER_ERROR = "provider_error"
    NO_EMAIL = "no_email"
    CONFLICT = "conflict"


STATUS_CODES: dict[AuthState, int] = {
    AuthState.AUTHENTICATED: 200,
    AuthState.NO_TOKEN: 401,
    AuthState.BLACKLISTED: 401,
    AuthState.INVALID_TOKEN: 401,
    AuthState.PROVIDER_ERROR: 401,
    AuthState.NO_EMAIL: 422,
    AuthState.CONFLICT: 409,
}


@dataclass
class AuthOutcome:
    state: AuthState
    reason: str | None = None
    identity: ExternalIdentity | None = None
    user: User | None = None

    @property
    def authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.state]


class SessionAuthenticator:
    def __init__(self, revocations: RevocationRegistry, verifier: TokenVerificationCache):
        self.revocations = revocations
        self.verifier = verifier

    async def verify(self, token: str | None) -> AuthOutcome:
        """Run the revocation and verification steps without touching the database."""
        if not token:
            return AuthOutcome(AuthState.NO_TOKEN, "Session cookie not found")

        if await self.revocations.is_revoked(token):
            return AuthOutcome(AuthState.BLACKLISTED, "Token has been revoked (logged out)")

        try:
            identity = await self.verifier.resolve(token)
        except InvalidTokenError as e:
            logger.info("Token verification failed: %s", e)
            return AuthOutcome(AuthState.INVALID_TOKEN, str(e))
        except ProviderError as e:
            logger.error("Identity provider error during verification: %s", e)
            return AuthOutcome(AuthState.PROVIDER_ERROR, "Authentication service unavailable")

        return AuthOutcome(AuthState.AUTHENTICATED, identity=identity)

    async def authenticate(self, token: str | None, db: AsyncSession) -> AuthOutcome:
        outcome = await self.verify(token)
        if not outcome.authenticated:
            return outcome

        try:
            user, _ = await UserService(db).reconcile(outcome.identity, record_login=False)
        except NoEmailError as e:
            return AuthOutcome(AuthState.NO_EMAIL, str(e), identity=outcome.identity)
        except UserConflictError as e:
            logger.warning("Identity reconciliation conflict: %s", e)
            return AuthOutcome(AuthState.CONFLICT, str(e), identity=outcome.identity)

        outcome.user = user
        return outcome


@dataclass
class AuthComponents:
    """Explicitly constructed auth services shared by every request."""

    provider: IdentityProvider
    verifier: TokenVerificationCache
    revocations: RevocationRegistry
    cookies: SessionCookieManager
    authenticator: SessionAuthenticator

    async def close(self) -> None:
        store = self.revocations.store
        if isinstance(store, RedisRevocationStore):
            await store.close()


def build_revocation_store(settings: Settings) -> RevocationStore:
    if settings.revocation_backend == "memory":
        logger.warning("Using in-memory revocation store; logouts are not shared across processes")
        return InMemoryRevocationStore()
    return RedisRevocationStore.from_url(str(settings.redis_url))


def build_auth_components(
    settings: Settings,
    provider: IdentityProvider | None = None,
    store: RevocationStore | None = None,
) -> AuthComponents:
    provider = provider or build_identity_provider(settings)
    verifier = TokenVerificationCache(
        provider,
        positive_ttl=settings.verify_cache_ttl,
        negative_ttl=settings.verify_cache_negative_ttl,
        max_entries=settings.verify_cache_max_entries,
    )
    revocations = RevocationRegistry(
        store or build_revocation_store(settings),
        default_ttl=settings.revocation_default_ttl,
    )
    return AuthComponents(
        provider=provider,
        verifier=verifier,
        revocations=revocations,
        cookies=SessionCookieManager.from_settings(settings),
        authenticator=SessionAuthenticator(revocations, verifier),
    )
