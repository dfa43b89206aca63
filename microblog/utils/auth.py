import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from microblog.database import get_db
from microblog.models.user import User
from microblog.services.session_auth import AuthComponents, AuthOutcome, AuthState

logger = logging.getLogger(__name__)

# Bearer fallback for clients that cannot hold the session cookie
bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_components(request: Request) -> AuthComponents:
    return request.app.state.auth


def get_session_token(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    auth: Annotated[AuthComponents, Depends(get_auth_components)],
) -> Optional[str]:
    """Session cookie first, then an Authorization: Bearer header."""
    token = auth.cookies.read(request)
    if token:
        return token
    if credentials:
        return credentials.credentials
    return None


async def get_auth_outcome(
    token: Annotated[Optional[str], Depends(get_session_token)],
    db: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthComponents, Depends(get_auth_components)],
) -> AuthOutcome:
    return await auth.authenticator.authenticate(token, db)


async def get_current_user(
    outcome: Annotated[AuthOutcome, Depends(get_auth_outcome)],
) -> User:
    """
    Get current authenticated user.

    Any failure rejects the request. Revoked and invalid tokens share the same
    401 response; only the logs tell them apart.
    """
    if outcome.authenticated:
        return outcome.user

    logger.info("Rejected request: %s", outcome.state)
    if outcome.status_code == status.HTTP_401_UNAUTHORIZED:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    raise HTTPException(status_code=outcome.status_code, detail=outcome.reason)


async def get_current_user_optional(
    outcome: Annotated[AuthOutcome, Depends(get_auth_outcome)],
) -> Optional[User]:
    """
    Get current user if the request carries a usable session.
    Returns None for anonymous requests and for any authentication failure.
    """
    if outcome.authenticated:
        return outcome.user
    if outcome.state is not AuthState.NO_TOKEN:
        logger.debug("Treating request as anonymous: %s", outcome.state)
    return None


# Type aliases for dependency injection
Auth = Annotated[AuthComponents, Depends(get_auth_components)]
CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentUserOptional = Annotated[Optional[User], Depends(get_current_user_optional)]
