import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from microblog.models.user import User
from microblog.schemas.auth import ExternalIdentity

logger = logging.getLogger(__name__)

FALLBACK_DISPLAY_NAME = "User"
NO_EMAIL_MESSAGE = "Firebase user has no email; cannot sync with current schema"


class NoEmailError(Exception):
    def __init__(self, message: str = NO_EMAIL_MESSAGE):
        super().__init__(message)


class UserConflictError(Exception):
    pass


def derive_display_name(identity: ExternalIdentity) -> str:
    if identity.display_name:
        return identity.display_name
    if identity.email and "@" in identity.email:
        local_part = identity.email.split("@", 1)[0]
        if local_part:
            return local_part
    return FALLBACK_DISPLAY_NAME


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.external_id == external_id))
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def reconcile(
        self, identity: ExternalIdentity, record_login: bool = True
    ) -> tuple[User, bool]:
        """
        Map a verified identity onto the local user table.
        Creates the user if no row has this email, updates it otherwise.
        Returns (user, is_new_user).

        Email is the stable key: if a row with the same email exists under a
        different external_id (account re-linked at the provider), the row is
        moved to the new external_id. When no row has the email but one has
        the external_id, the email changed at the provider and is updated.

        ``record_login`` stamps last_login_at; per-request authentication
        passes False so unchanged rows are not rewritten.
        """
        if not identity.email:
            raise NoEmailError()

        display_name = derive_display_name(identity)
        now = datetime.now(timezone.utc)

        user = await self._find_existing(identity)
        if user is None:
            user = User(
                external_id=identity.subject,
                email=identity.email,
                display_name=display_name,
                email_verified_at=now if identity.email_verified else None,
                last_login_at=now,
            )
            try:
                # Savepoint so a lost insert race doesn't poison the session
                async with self.db.begin_nested():
                    self.db.add(user)
                    await self.db.flush()
            except IntegrityError:
                logger.info("Concurrent insert for %s, re-reading existing user", identity.subject)
                user = await self._find_existing(identity)
                if user is None:
                    raise
            else:
                await self.db.refresh(user)
                logger.info("Created user %s for subject %s", user.id, identity.subject)
                return user, True

        if user.external_id != identity.subject:
            other = await self.get_by_external_id(identity.subject)
            if other is not None and other.id != user.id:
                raise UserConflictError(
                    f"Cannot link {identity.email}: subject already belongs to another account."
                )
            logger.info(
                "Re-linking user %s from subject %s to %s",
                user.id,
                user.external_id,
                identity.subject,
            )
        if user.email != identity.email:
            logger.info("Updating email for user %s", user.id)
            user.email = identity.email
            user.email_verified_at = now if identity.email_verified else None
        user.external_id = identity.subject
        user.display_name = display_name
        if record_login:
            user.last_login_at = now
        await self.db.flush()
        await self.db.refresh(user)
        return user, False

    async def _find_existing(self, identity: ExternalIdentity) -> Optional[User]:
        user = await self.get_by_email(identity.email)
        if user is None:
            user = await self.get_by_external_id(identity.subject)
        return user

    async def register(self, external_id: str, display_name: str, email: str) -> User:
        """Create a user from an explicit sign-up form."""
        if await self.get_by_external_id(external_id) is not None:
            raise UserConflictError("This Firebase UID is already registered.")
        if await self.get_by_email(email) is not None:
            raise UserConflictError("This email address is already registered.")

        user = User(
            external_id=external_id,
            email=email,
            display_name=display_name,
        )
        self.db.add(user)
        await self.db.flush()
        await self.db.refresh(user)
        return user
