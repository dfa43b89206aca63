"""
Identity provider adapters.

Every outbound call to Firebase Authentication goes through an
``IdentityProvider``. The real adapter verifies ID tokens against the
project's published signing keys and uses the Admin SDK for account lookup
and cleanup; the fake adapter accepts locally signed tokens so the rest of
the system can run without network access.
"""

import asyncio
import logging
import time
from typing import Any, Protocol, runtime_checkable

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin.exceptions import FirebaseError
from jose import ExpiredSignatureError, JWTError, jwt

from microblog.config import Settings
from microblog.schemas.auth import ExternalIdentity
from microblog.utils.oidc import (
    JWKSCache,
    OIDCProviderUnavailable,
    firebase_issuer,
    validate_oidc_id_token,
)

logger = logging.getLogger(__name__)


class InvalidTokenError(Exception):
    """Token is malformed, expired or fails signature checks."""


class IdentityNotFoundError(Exception):
    """No remote account exists for the subject."""


class ProviderError(Exception):
    """The identity provider could not be reached or failed internally."""


@runtime_checkable
class IdentityProvider(Protocol):
    async def verify(self, token: str) -> ExternalIdentity:
        """Verify a bearer token and return the identity it asserts."""
        ...

    async def fetch_identity(self, subject: str) -> ExternalIdentity:
        """Look up the current remote account for a subject."""
        ...

    async def delete_identity(self, subject: str) -> bool:
        """Delete a remote account. Best effort: failures are logged, not raised."""
        ...


def identity_from_claims(claims: dict[str, Any]) -> ExternalIdentity:
    exp = claims.get("exp")
    return ExternalIdentity(
        subject=str(claims["sub"]),
        email=claims.get("email") or None,
        display_name=claims.get("name") or None,
        email_verified=bool(claims.get("email_verified", False)),
        expires_at=int(exp) if exp is not None else None,
    )


class FirebaseIdentityProvider:
    """Firebase Authentication adapter."""

    def __init__(
        self,
        project_id: str,
        credentials_path: str | None = None,
        jwks_cache: JWKSCache | None = None,
    ):
        self.project_id = project_id
        self.credentials_path = credentials_path
        self.jwks_cache = jwks_cache or JWKSCache(firebase_issuer(project_id))
        self._app: firebase_admin.App | None = None

    def _get_app(self) -> firebase_admin.App:
        if self._app is not None:
            return self._app

        name = f"microblog-{self.project_id}"
        try:
            self._app = firebase_admin.get_app(name)
        except ValueError:
            if self.credentials_path:
                cred = credentials.Certificate(self.credentials_path)
            else:
                cred = credentials.ApplicationDefault()
            self._app = firebase_admin.initialize_app(
                cred, {"projectId": self.project_id}, name=name
            )
        return self._app

    async def verify(self, token: str) -> ExternalIdentity:
        try:
            claims = await validate_oidc_id_token(token, self.jwks_cache, self.project_id)
        except OIDCProviderUnavailable as e:
            raise ProviderError(str(e)) from None
        except ValueError as e:
            raise InvalidTokenError(str(e)) from None
        return identity_from_claims(claims)

    async def fetch_identity(self, subject: str) -> ExternalIdentity:
        # The Admin SDK is blocking; keep it off the event loop
        try:
            record = await asyncio.to_thread(firebase_auth.get_user, subject, app=self._get_app())
        except firebase_auth.UserNotFoundError:
            raise IdentityNotFoundError(f"Firebase user not found: {subject}") from None
        except (FirebaseError, ValueError) as e:
            logger.error("Firebase user lookup failed for %s: %s", subject, e)
            raise ProviderError(f"Firebase user lookup failed: {e}") from None

        return ExternalIdentity(
            subject=record.uid,
            email=record.email,
            display_name=record.display_name,
            email_verified=bool(record.email_verified),
        )

    async def delete_identity(self, subject: str) -> bool:
        try:
            await asyncio.to_thread(firebase_auth.delete_user, subject, app=self._get_app())
        except Exception as e:
            logger.error("Failed to delete Firebase user %s: %s", subject, e)
            return False
        logger.info("Deleted Firebase user %s", subject)
        return True


class FakeIdentityProvider:
    """
    Deterministic stand-in for Firebase.

    Tokens are HS256 JWTs signed with a local secret and carry the same claims
    a Firebase ID token would (sub, email, name, email_verified, exp). Identities
    seen in verified tokens become available to ``fetch_identity``.
    """

    ALGORITHM = "HS256"

    def __init__(self, secret: str):
        self.secret = secret
        self.identities: dict[str, ExternalIdentity] = {}
        self.deleted_subjects: list[str] = []
        self.verify_calls = 0
        # Set to an exception instance to simulate an outage
        self.outage: Exception | None = None

    def issue_token(
        self,
        subject: str,
        email: str | None = None,
        name: str | None = None,
        email_verified: bool = True,
        expires_in: int = 3600,
    ) -> str:
        now = int(time.time())
        claims: dict[str, Any] = {
            "sub": subject,
            "iat": now,
            "exp": now + expires_in,
            "email_verified": email_verified,
        }
        if email is not None:
            claims["email"] = email
        if name is not None:
            claims["name"] = name
        return jwt.encode(claims, self.secret, algorithm=self.ALGORITHM)

    def register_identity(self, identity: ExternalIdentity) -> None:
        self.identities[identity.subject] = identity

    async def verify(self, token: str) -> ExternalIdentity:
        self.verify_calls += 1
        if self.outage is not None:
            raise ProviderError(str(self.outage))

        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.ALGORITHM])
        except ExpiredSignatureError:
            raise InvalidTokenError("Token has expired") from None
        except JWTError as e:
            raise InvalidTokenError(f"Invalid token: {e}") from None

        if not claims.get("sub"):
            raise InvalidTokenError("Invalid token: missing subject")

        identity = identity_from_claims(claims)
        self.identities.setdefault(
            identity.subject, identity.model_copy(update={"expires_at": None})
        )
        return identity

    async def fetch_identity(self, subject: str) -> ExternalIdentity:
        if self.outage is not None:
            raise ProviderError(str(self.outage))
        identity = self.identities.get(subject)
        if identity is None:
            raise IdentityNotFoundError(f"Firebase user not found: {subject}")
        return identity

    async def delete_identity(self, subject: str) -> bool:
        if self.outage is not None:
            logger.error("Failed to delete Firebase user %s: %s", subject, self.outage)
            return False
        self.identities.pop(subject, None)
        self.deleted_subjects.append(subject)
        return True


def build_identity_provider(settings: Settings) -> IdentityProvider:
    if settings.identity_provider == "fake":
        logger.warning("Using fake identity provider; tokens are NOT verified by Firebase")
        return FakeIdentityProvider(settings.fake_identity_secret)

    if not settings.firebase_project_id:
        raise RuntimeError("FIREBASE_PROJECT_ID is required for the Firebase identity provider")
    return FirebaseIdentityProvider(
        settings.firebase_project_id,
        credentials_path=settings.firebase_credentials_path,
    )
