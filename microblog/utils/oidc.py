import logging
import time
from typing import Any

import httpx
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"
JWKS_CACHE_TTL = 3600


class OIDCProviderUnavailable(Exception):
    """Discovery document or signing keys could not be fetched."""


def firebase_issuer(project_id: str) -> str:
    return f"{FIREBASE_ISSUER_PREFIX}{project_id}"


class JWKSCache:
    """Signing keys of one issuer, refreshed hourly or on an unknown key id."""

    def __init__(self, issuer_url: str, ttl: int = JWKS_CACHE_TTL, timeout: float = 10):
        self.issuer_url = issuer_url
        self.ttl = ttl
        self.timeout = timeout
        self._jwks: dict[str, Any] | None = None
        self._fetched_at = 0.0

    async def get(self, force_refresh: bool = False) -> dict[str, Any]:
        now = time.time()
        if not force_refresh and self._jwks and (now - self._fetched_at) < self.ttl:
            return self._jwks

        discovery_url = f"{self.issuer_url.rstrip('/')}/.well-known/openid-configuration"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                disc_resp = await client.get(discovery_url)
                disc_resp.raise_for_status()
                jwks_uri = disc_resp.json()["jwks_uri"]

                jwks_resp = await client.get(jwks_uri)
                jwks_resp.raise_for_status()
                jwks = jwks_resp.json()
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("Failed to fetch OIDC JWKS from %s: %s", self.issuer_url, e)
            raise OIDCProviderUnavailable(f"Failed to contact OIDC provider: {e}") from None

        self._jwks = jwks
        self._fetched_at = now
        return jwks

    def has_key(self, kid: str | None) -> bool:
        if not self._jwks or kid is None:
            return False
        return any(key.get("kid") == kid for key in self._jwks.get("keys", []))


async def validate_oidc_id_token(
    id_token: str,
    jwks_cache: JWKSCache,
    client_id: str,
) -> dict:
    """
    Validate an ID token against the issuer's published keys.

    Raises ValueError for tokens that fail validation and
    OIDCProviderUnavailable when the keys cannot be fetched.
    """
    try:
        header = jwt.get_unverified_header(id_token)
    except JWTError as e:
        raise ValueError(f"Malformed token: {e}") from None

    jwks = await jwks_cache.get()
    if not jwks_cache.has_key(header.get("kid")):
        # Keys rotate; retry once with a fresh set before rejecting
        jwks = await jwks_cache.get(force_refresh=True)

    try:
        payload = jwt.decode(
            id_token,
            jwks,
            algorithms=["RS256"],
            audience=client_id,
            issuer=jwks_cache.issuer_url,
            options={
                "verify_exp": True,
                "verify_at_hash": False,
            },
        )
    except JWTError as e:
        raise ValueError(f"Invalid OIDC token: {e}") from None

    if not payload.get("sub"):
        raise ValueError("Invalid OIDC token: missing subject")

    return payload
