import logging
from datetime import datetime, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from microblog.config import get_settings
from microblog.database import get_db
from microblog.schemas.auth import (
    AuthCheckResponse,
    AuthCheckUser,
    AuthStatusResponse,
    BearerCheckResponse,
    LogoutResponse,
    SessionUser,
    TokenVerifyResponse,
)
from microblog.schemas.user import (
    FirebaseLoginResponse,
    RegisterRequest,
    RegisterResponse,
    UserSummary,
)
from microblog.services.identity_provider import IdentityNotFoundError, ProviderError
from microblog.services.revocation import token_expiry
from microblog.services.session_auth import AuthState
from microblog.services.user_service import NoEmailError, UserConflictError, UserService
from microblog.utils.auth import Auth, bearer_scheme

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])
settings = get_settings()

BearerCredentials = Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)]


def _json(status_code: int, body: BaseModel | dict) -> JSONResponse:
    if isinstance(body, BaseModel):
        body = body.model_dump(mode="json", exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


def _format_expiry(expires_at: int | None) -> str:
    if expires_at is None:
        return ""
    return datetime.fromtimestamp(expires_at, timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


@router.get("/status", response_model=AuthStatusResponse)
async def auth_status() -> AuthStatusResponse:
    mode = settings.get_auth_mode()
    if mode == "unknown":
        return AuthStatusResponse(
            configured=False,
            mode=mode,
            error="No identity provider configured. Set FIREBASE_PROJECT_ID.",
        )
    return AuthStatusResponse(configured=True, mode=mode)


@router.post("/verify-token", response_model=TokenVerifyResponse)
async def verify_token(
    auth: Auth,
    id_token: Annotated[Optional[str], Body(alias="idToken", embed=True)] = None,
) -> JSONResponse:
    """Verify a Firebase ID token and store it in the session cookie."""
    if not id_token:
        return _json(
            status.HTTP_400_BAD_REQUEST,
            TokenVerifyResponse(success=False, error="idToken is required"),
        )

    outcome = await auth.authenticator.verify(id_token)
    if not outcome.authenticated:
        logger.warning("verify-token rejected: %s", outcome.state)
        return _json(
            status.HTTP_401_UNAUTHORIZED,
            TokenVerifyResponse(
                success=False, error=f"Token verification failed: {outcome.reason}"
            ),
        )

    identity = outcome.identity
    logger.info("Verified token for %s (exp=%s)", identity.subject, identity.expires_at)
    response = _json(
        status.HTTP_200_OK,
        TokenVerifyResponse(
            success=True,
            message="Authenticated",
            user=SessionUser(uid=identity.subject, email=identity.email),
        ),
    )
    auth.cookies.issue(response, id_token, settings.session_max_age)
    return response


@router.get("/check", response_model=AuthCheckResponse)
async def check_auth(request: Request, auth: Auth) -> JSONResponse:
    token = auth.cookies.read(request)
    if not token:
        return _json(
            status.HTTP_200_OK,
            AuthCheckResponse(authenticated=False, message="Session cookie not found"),
        )

    outcome = await auth.authenticator.verify(token)
    if outcome.state is AuthState.BLACKLISTED:
        return _json(
            status.HTTP_401_UNAUTHORIZED,
            AuthCheckResponse(authenticated=False, message=outcome.reason),
        )
    if not outcome.authenticated:
        return _json(
            status.HTTP_401_UNAUTHORIZED,
            AuthCheckResponse(
                authenticated=False, error=f"Token verification failed: {outcome.reason}"
            ),
        )

    identity = outcome.identity
    return _json(
        status.HTTP_200_OK,
        AuthCheckResponse(
            authenticated=True,
            user=AuthCheckUser(
                uid=identity.subject,
                email=identity.email,
                expires_at=_format_expiry(identity.expires_at),
            ),
        ),
    )


@router.post("/check-token", response_model=BearerCheckResponse)
async def check_token(auth: Auth, credentials: BearerCredentials) -> JSONResponse:
    """Stateless check of an Authorization: Bearer token."""
    if not credentials:
        return _json(status.HTTP_400_BAD_REQUEST, {"error": "No token provided"})

    outcome = await auth.authenticator.verify(credentials.credentials)
    if not outcome.authenticated:
        return _json(
            status.HTTP_401_UNAUTHORIZED,
            {"error": "Invalid token", "message": outcome.reason},
        )

    return _json(
        status.HTTP_200_OK,
        BearerCheckResponse(uid=outcome.identity.subject, message="Token is valid"),
    )


@router.post("/firebase-login", response_model=FirebaseLoginResponse)
async def firebase_login(
    auth: Auth,
    credentials: BearerCredentials,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> JSONResponse:
    """Verify a bearer token, sync the Firebase account into users, set the cookie."""
    if not credentials:
        return _json(status.HTTP_400_BAD_REQUEST, {"message": "Missing token"})
    token = credentials.credentials

    outcome = await auth.authenticator.verify(token)
    if not outcome.authenticated:
        return _json(
            status.HTTP_401_UNAUTHORIZED,
            {"message": "Invalid token", "error": outcome.reason},
        )

    try:
        remote = await auth.provider.fetch_identity(outcome.identity.subject)
    except IdentityNotFoundError as e:
        return _json(status.HTTP_401_UNAUTHORIZED, {"message": "Invalid token", "error": str(e)})
    except ProviderError as e:
        logger.error("firebase-login lookup failed for %s: %s", outcome.identity.subject, e)
        return _json(
            status.HTTP_401_UNAUTHORIZED,
            {"message": "Invalid token", "error": "Authentication service unavailable"},
        )

    user_service = UserService(db)
    try:
        user, is_new = await user_service.reconcile(remote)
    except NoEmailError as e:
        logger.warning("firebase-login for %s rejected: %s", remote.subject, e)
        return _json(status.HTTP_422_UNPROCESSABLE_ENTITY, {"message": str(e)})
    except UserConflictError as e:
        return _json(status.HTTP_409_CONFLICT, {"message": str(e)})
    await db.commit()

    response = _json(
        status.HTTP_200_OK,
        FirebaseLoginResponse(
            success=True,
            new_user=is_new,
            user=UserSummary.model_validate(user),
        ),
    )
    auth.cookies.issue(response, token, settings.sync_session_max_age)
    return response


@router.post("/logout", response_model=LogoutResponse)
async def logout(request: Request, auth: Auth) -> JSONResponse:
    """Revoke the session token and clear the cookie. Always succeeds."""
    token = auth.cookies.read(request)
    if token:
        if await auth.revocations.add(token, token_expiry(token)):
            logger.info("Session token revoked on logout")
        else:
            logger.warning("Session token revocation failed; continuing logout")
        auth.verifier.invalidate(token)
    else:
        logger.info("Logout without session cookie; nothing to revoke")

    response = _json(status.HTTP_200_OK, LogoutResponse(success=True, message="Logged out"))
    auth.cookies.clear(response)
    return response


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    auth: Auth,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> JSONResponse:
    """
    Create the local user for a freshly created Firebase account.

    If the account cannot be registered locally, the Firebase account is
    deleted so it does not linger without a local user.
    """
    user_service = UserService(db)
    try:
        await auth.provider.fetch_identity(data.firebase_uid)
        user = await user_service.register(data.firebase_uid, data.name, data.email)
        await db.commit()
    except UserConflictError as e:
        return _json(status.HTTP_409_CONFLICT, {"success": False, "error": str(e)})
    except (IdentityNotFoundError, ProviderError, SQLAlchemyError) as e:
        logger.error("User registration failed for %s: %s", data.firebase_uid, e)
        await db.rollback()
        await auth.provider.delete_identity(data.firebase_uid)
        return _json(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            {"success": False, "error": "User registration failed", "details": str(e)},
        )

    logger.info("Registered user %s for subject %s", user.id, data.firebase_uid)
    return _json(
        status.HTTP_201_CREATED,
        RegisterResponse(
            success=True,
            message="Registration complete",
            user=UserSummary.model_validate(user),
        ),
    )
