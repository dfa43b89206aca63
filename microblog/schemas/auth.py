from pydantic import BaseModel, ConfigDict


class ExternalIdentity(BaseModel):
    """Identity asserted by the identity provider for a verified token."""

    model_config = ConfigDict(frozen=True)

    subject: str  # Firebase uid
    email: str | None = None
    display_name: str | None = None
    email_verified: bool = False
    # Token expiry in epoch seconds; None for records looked up by subject
    expires_at: int | None = None


class SessionUser(BaseModel):
    uid: str
    email: str | None = None


class AuthCheckUser(SessionUser):
    expires_at: str


class AuthCheckResponse(BaseModel):
    authenticated: bool
    user: AuthCheckUser | None = None
    message: str | None = None
    error: str | None = None


class TokenVerifyResponse(BaseModel):
    success: bool
    message: str | None = None
    user: SessionUser | None = None
    error: str | None = None


class BearerCheckResponse(BaseModel):
    uid: str
    message: str


class LogoutResponse(BaseModel):
    success: bool
    message: str


class AuthStatusResponse(BaseModel):
    configured: bool
    mode: str
    error: str | None = None
