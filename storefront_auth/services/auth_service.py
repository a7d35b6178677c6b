"""Registration, sign-in and account lookups for every supported provider."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional, Sequence

from starlette.concurrency import run_in_threadpool

from storefront_auth.core.errors import (
    AccountExistsWithDifferentProvider,
    EmailAlreadyExists,
    InternalError,
    InvalidCredentials,
    NotFoundOrWrongProvider,
    ServiceUnavailable,
    UserNotFound,
    WrongProvider,
)
from storefront_auth.core.google import GoogleIdentity
from storefront_auth.core.models.user import AuthProvider, Role, User
from storefront_auth.core.security import PasswordHasher, TokenIssuer
from storefront_auth.services.user_store import (
    DuplicateEmail,
    StoreError,
    StoreTimeout,
    UserStore,
    normalize_email,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthResult:
    token: str
    user: User


@asynccontextmanager
async def store_errors():
    """Translate storage failures into typed service errors."""
    try:
        yield
    except StoreTimeout as exc:
        logger.error("Credential store timed out: %s", exc)
        raise ServiceUnavailable() from exc
    except DuplicateEmail:
        raise
    except StoreError as exc:
        logger.error("Credential store failure: %s", exc)
        raise InternalError() from exc


class AuthService:
    def __init__(self, store: UserStore, hasher: PasswordHasher, issuer: TokenIssuer):
        self.store = store
        self.hasher = hasher
        self.issuer = issuer

    def _result(self, user: User) -> AuthResult:
        return AuthResult(token=self.issuer.issue(user.id, user.role), user=user)

    async def register(self, name: str, email: str, password: str) -> AuthResult:
        email = normalize_email(email)
        async with store_errors():
            if await self.store.get_by_email(email) is not None:
                logger.warning("Registration attempted with existing email")
                raise EmailAlreadyExists()
            password_hash = await run_in_threadpool(self.hasher.hash, password)
            try:
                user = await self.store.create(
                    name=name.strip(),
                    email=email,
                    password_hash=password_hash,
                    auth_provider=AuthProvider.LOCAL,
                    role=Role.USER,
                    email_verified=False,
                )
            except DuplicateEmail as exc:
                # Lost a race with a concurrent registration
                raise EmailAlreadyExists() from exc
        logger.info("Registered user %s", user.id)
        return self._result(user)

    async def login(self, email: str, password: str) -> AuthResult:
        async with store_errors():
            user = await self.store.get_by_email(email)
        if user is None:
            await run_in_threadpool(self.hasher.burn, password)
            logger.info("Login failed: no account")
            raise InvalidCredentials()
        if user.auth_provider != AuthProvider.LOCAL:
            logger.info("Login failed: user %s uses %s", user.id, user.auth_provider.value)
            raise WrongProvider(user.auth_provider.value)
        if not await run_in_threadpool(self.hasher.verify, password, user.password_hash):
            logger.info("Login failed: bad password for user %s", user.id)
            raise InvalidCredentials()
        return self._result(user)

    async def google_login(self, identity: GoogleIdentity) -> AuthResult:
        async with store_errors():
            user = await self.store.get_by_email(identity.email)
            if user is not None and user.auth_provider != AuthProvider.GOOGLE:
                logger.warning("Google login for user %s registered with %s", user.id, user.auth_provider.value)
                raise AccountExistsWithDifferentProvider()

            if user is None:
                try:
                    user = await self.store.create(
                        name=identity.name or identity.email.split("@")[0],
                        email=identity.email,
                        password_hash="",
                        auth_provider=AuthProvider.GOOGLE,
                        role=Role.USER,
                        email_verified=True,
                        avatar_url=identity.picture,
                    )
                    logger.info("Created Google user %s", user.id)
                    return self._result(user)
                except DuplicateEmail:
                    user = await self.store.get_by_email(identity.email)
                    if user is None or user.auth_provider != AuthProvider.GOOGLE:
                        raise AccountExistsWithDifferentProvider()

            # Only fill fields the user has never set
            backfill = {}
            if not user.avatar_url and identity.picture:
                backfill["avatar_url"] = identity.picture
            if not user.name:
                backfill["name"] = identity.name or identity.email.split("@")[0]
            user = await self.store.touch(user, **backfill)
        return self._result(user)

    async def reset_password(self, email: str, new_password: str) -> None:
        async with store_errors():
            user = await self.store.get_by_email(email)
            if user is None or user.auth_provider != AuthProvider.LOCAL:
                raise NotFoundOrWrongProvider()
            password_hash = await run_in_threadpool(self.hasher.hash, new_password)
            await self.store.update_password(user, password_hash)
        logger.info("Password reset for user %s", user.id)

    async def get_profile(self, subject_id: int) -> User:
        async with store_errors():
            user = await self.store.get_by_id(subject_id)
        if user is None:
            raise UserNotFound()
        return user

    async def update_profile(
        self, subject_id: int, name: Optional[str] = None, avatar_url: Optional[str] = None
    ) -> User:
        user = await self.get_profile(subject_id)
        async with store_errors():
            return await self.store.update_profile(user, name=name, avatar_url=avatar_url)

    async def list_users(self) -> Sequence[User]:
        async with store_errors():
            return await self.store.list_users()

    async def promote_admin(self, email: str) -> Optional[User]:
        async with store_errors():
            user = await self.store.get_by_email(email)
            if user is None or user.role == Role.ADMIN:
                return user
            user = await self.store.update_fields(user, role=Role.ADMIN)
        logger.info("Granted ADMIN to user %s", user.id)
        return user
