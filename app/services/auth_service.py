"""Alias pre-registration and the OAuth sign-in state machine.

A user starts life as a *pending* row created by an admin: alias and provider
are known, the OAuth id is a `temp-` placeholder. The first OAuth callback for
that provider claims the row (real OAuth id, still unauthorized); the setup
callback then finalizes it. Only authorized users may sign in afterwards.
"""
import logging
import re
import secrets
import string
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import quote, urlencode

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app import config
from app.exceptions import (
    AccessDeniedError,
    AliasExistsError,
    SetupError,
    InvalidAliasError,
    UnsupportedProviderError,
    UserNotAuthorizedError,
    UserNotFoundError,
)
from app.models.user import PENDING_OAUTH_PREFIX, User, utcnow
from app.oauth import OAuthIdentity
from app.repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
ALIAS_RE = re.compile(r"[A-Za-z0-9_]{3,20}")


def temp_oauth_id() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{PENDING_OAUTH_PREFIX}{int(time.time() * 1000)}-{suffix}"


def build_auth_url(base_url: str, alias: str, provider: str) -> str:
    callback = f"{base_url}/api/auth/callback-setup?alias={quote(alias, safe='')}"
    return f"{base_url}/auth/start?" + urlencode({"provider": provider, "callbackUrl": callback})


class SignInState(str, Enum):
    AUTHORIZED = "authorized"
    PENDING = "pending"


@dataclass
class SignInResult:
    state: SignInState
    user: User


class AuthService:
    def __init__(self):
        self.repo = UserRepository()

    async def authorize(self, db: AsyncSession, alias: str, provider: str,
                        base_url: Optional[str] = None) -> tuple[User, str]:
        """Pre-register `alias` and return it with the URL that completes setup."""
        if not ALIAS_RE.fullmatch(alias):
            raise InvalidAliasError(alias)
        if provider not in config.SUPPORTED_PROVIDERS:
            raise UnsupportedProviderError(provider)
        if await self.repo.get_by_alias(db, alias):
            raise AliasExistsError(alias)

        user = User(alias=alias, provider=provider, oauth_id=temp_oauth_id(), is_authorized=False)
        try:
            await self.repo.create(db, user)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise AliasExistsError(alias)

        logger.info("Pending user %s (ID: %s) registered for %s", alias, user.id, provider)
        return user, build_auth_url(base_url or config.APP_BASE_URL, alias, provider)

    async def lookup(self, db: AsyncSession, username: str) -> User:
        user = await self.repo.get_by_alias(db, username.strip())
        if user is None:
            raise UserNotFoundError(username)
        if not user.is_authorized:
            raise UserNotAuthorizedError(username)
        return user

    async def sign_in(self, db: AsyncSession, identity: OAuthIdentity) -> SignInResult:
        """Match an OAuth callback identity against known users.

        1. authorized user with this provider + OAuth id: refresh profile
        2. unfinished user already linked to this identity, else the newest
           `temp-` placeholder for the provider: link it, stay unauthorized
        3. anything else, revoked users included, is denied
        """
        provider, oauth_id = identity.provider, identity.account_id

        user = await self.repo.find_by_identity(db, provider, oauth_id)
        if user is not None and user.is_authorized:
            self._apply_profile(user, identity)
            await db.commit()
            logger.info("User %s (ID: %s) authenticated via %s", user.alias, user.id, provider)
            return SignInResult(SignInState.AUTHORIZED, user)

        if user is not None and user.is_revoked:
            logger.warning("Access denied: user %s (ID: %s) was revoked", user.alias, user.id)
            raise AccessDeniedError(provider, oauth_id)

        logger.info("No authorized user for provider %s and OAuth ID %s", provider, oauth_id)

        pending = user or await self.repo.find_latest_pending(db, provider)
        if pending is not None:
            pending.oauth_id = oauth_id
            self._apply_profile(pending, identity)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning("OAuth ID %s/%s already linked to another user", provider, oauth_id)
                raise AccessDeniedError(provider, oauth_id)
            logger.info("User %s (ID: %s) linked to %s, awaiting setup finalization",
                        pending.alias, pending.id, provider)
            return SignInResult(SignInState.PENDING, pending)

        logger.warning("Access denied: provider %s, OAuth ID %s (email: %s, name: %s) is not registered",
                       provider, oauth_id, identity.email, identity.name)
        raise AccessDeniedError(provider, oauth_id)

    async def finalize(self, db: AsyncSession, alias: Optional[str], *,
                       provider: Optional[str], oauth_id: Optional[str]) -> User:
        """Authorize the pending user `alias` for the identity in the caller's session."""
        if not alias:
            raise SetupError("MissingAlias")
        if not oauth_id:
            raise SetupError("NoSession", alias)

        user = await self.repo.get_by_alias(db, alias)
        if user is None:
            raise SetupError("UserNotFound", alias)
        if user.is_revoked:
            raise SetupError("AccessDenied", alias)
        if user.is_authorized:
            if (user.provider, user.oauth_id) != (provider, oauth_id):
                raise SetupError("AlreadyAuthorized", alias)
            logger.info("User %s is already authorized", alias)
            return user
        if provider and user.provider != provider:
            raise SetupError("ProviderMismatch", alias)
        if user.oauth_id.startswith(PENDING_OAUTH_PREFIX):
            raise SetupError("OAuthNotCompleted", alias)
        if user.oauth_id != oauth_id:
            raise SetupError("IdentityMismatch", alias)

        user.is_authorized = True
        await db.commit()
        logger.info("User %s authorization finalized", alias)
        return user

    async def get_active_user(self, db: AsyncSession, user_id: Optional[str]) -> Optional[User]:
        """The session's user, or None when it is gone or no longer authorized."""
        if not user_id:
            return None
        user = await self.repo.get(db, user_id)
        if user is None or not user.is_authorized:
            return None
        return user

    async def revoke(self, db: AsyncSession, alias: str) -> User:
        user = await self.repo.get_by_alias(db, alias)
        if user is None:
            raise UserNotFoundError(alias)
        user.is_authorized = False
        user.revoked_at = utcnow()
        await db.commit()
        logger.info("User %s deauthorized", alias)
        return user

    async def list_users(self, db: AsyncSession) -> list[User]:
        return await self.repo.list_all(db)

    @staticmethod
    def _apply_profile(user: User, identity: OAuthIdentity) -> None:
        user.oauth_name = identity.name
        user.email = identity.email
        user.image = identity.image
