import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_auth.core.models.user import AuthProvider, Role, User

logger = logging.getLogger(__name__)


class StoreError(Exception):
    pass


class StoreTimeout(StoreError):
    pass


class DuplicateEmail(StoreError):
    pass


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class UserStore:
    """User records keyed by email, on top of one request-scoped session.

    Every write is a single statement followed by a commit, so a failed request
    never leaves a half-applied change behind.
    """

    def __init__(self, session: AsyncSession, timeout: float = 5.0):
        self.session = session
        self.timeout = timeout

    async def _run(self, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            await self._rollback()
            raise StoreTimeout("Database call timed out") from exc
        except IntegrityError:
            await self._rollback()
            raise
        except SQLAlchemyError as exc:
            await self._rollback()
            raise StoreError(str(exc)) from exc

    async def _rollback(self) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback failed")

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self._run(self.session.execute(select(User).where(User.email == normalize_email(email))))
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: int) -> Optional[User]:
        result = await self._run(self.session.execute(select(User).where(User.id == user_id)))
        return result.scalar_one_or_none()

    async def list_users(self) -> Sequence[User]:
        result = await self._run(self.session.execute(select(User).order_by(User.created_at.desc(), User.id.desc())))
        return result.scalars().all()

    async def create(
        self,
        *,
        name: str,
        email: str,
        password_hash: str,
        auth_provider: AuthProvider,
        role: Role = Role.USER,
        email_verified: bool = False,
        avatar_url: Optional[str] = None,
    ) -> User:
        user = User(
            name=name,
            email=normalize_email(email),
            password_hash=password_hash,
            auth_provider=auth_provider,
            role=role,
            email_verified=email_verified,
            avatar_url=avatar_url,
        )
        self.session.add(user)
        try:
            await self._run(self.session.commit())
        except IntegrityError as exc:
            raise DuplicateEmail(user.email) from exc
        await self._run(self.session.refresh(user))
        return user

    async def update_fields(self, user: User, **values: Any) -> User:
        if not values:
            return user
        values.setdefault("updated_at", datetime.now(timezone.utc))
        await self._run(self.session.execute(update(User).where(User.id == user.id).values(**values)))
        await self._run(self.session.commit())
        await self._run(self.session.refresh(user))
        return user

    async def update_password(self, user: User, password_hash: str) -> User:
        return await self.update_fields(user, password_hash=password_hash)

    async def update_profile(self, user: User, name: Optional[str] = None, avatar_url: Optional[str] = None) -> User:
        values = {}
        if name is not None:
            values["name"] = name
        if avatar_url is not None:
            values["avatar_url"] = avatar_url
        return await self.update_fields(user, **values)

    async def touch(self, user: User, **backfill: Any) -> User:
        """Refresh ``updated_at`` and apply ``backfill`` in the same statement."""
        return await self.update_fields(user, updated_at=datetime.now(timezone.utc), **backfill)
