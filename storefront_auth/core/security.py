from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import cached_property
from typing import Any, Mapping, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JOSEError
from passlib.context import CryptContext
from passlib.exc import PasswordSizeError, UnknownHashError

from storefront_auth.core.models.user import Role

BCRYPT_ROUNDS = 10
TOKEN_LIFETIME = timedelta(days=7)


class PasswordHasher:
    """bcrypt hashing and verification through passlib."""

    def __init__(self, rounds: int = BCRYPT_ROUNDS):
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    @cached_property
    def _dummy_hash(self) -> str:
        return self._context.hash("storefront-dummy-password")

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        if not hashed:
            # OAuth-only accounts carry an empty hash; spend the same work anyway
            self.burn(password)
            return False
        try:
            return self._context.verify(password, hashed)
        except PasswordSizeError:
            return False
        except (UnknownHashError, ValueError):
            self.burn(password)
            return False

    def burn(self, password: str) -> None:
        """Run one verification against a fixed hash and discard the result."""
        try:
            self._context.verify(password, self._dummy_hash)
        except PasswordSizeError:
            # Rejected before hashing, nothing to equalise
            return


class TokenRejected(Exception):
    reason = "invalid"


class TokenMalformed(TokenRejected):
    reason = "malformed"


class TokenInvalid(TokenRejected):
    reason = "invalid"


class TokenExpired(TokenRejected):
    reason = "expired"


@dataclass(frozen=True)
class SessionClaims:
    subject_id: int
    role: Role
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SessionClaims":
        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub.isdigit():
            raise TokenMalformed("Token subject is missing or not a user id")
        try:
            role = Role(payload.get("role"))
        except ValueError as exc:
            raise TokenMalformed("Token role is missing or unknown") from exc
        iat, exp = payload.get("iat"), payload.get("exp")
        for value in (iat, exp):
            if not isinstance(value, int) or isinstance(value, bool):
                raise TokenMalformed("Token timestamps are missing")
        return cls(
            subject_id=int(sub),
            role=role,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )


class TokenIssuer:
    def __init__(self, secret: str, algorithm: str = "HS256", lifetime: timedelta = TOKEN_LIFETIME):
        self.secret = secret
        self.algorithm = algorithm
        self.lifetime = lifetime

    def issue(self, subject_id: int, role: Role, now: Optional[datetime] = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        expires_at = issued_at + self.lifetime
        to_encode = {
            "sub": str(subject_id),
            "role": Role(role).value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        return jwt.encode(to_encode, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> SessionClaims:
        """Decode ``token`` or raise TokenMalformed, TokenExpired or TokenInvalid."""
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JOSEError as exc:
            raise TokenMalformed(str(exc)) from exc
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpired(str(exc)) from exc
        except JWTError as exc:
            raise TokenInvalid(str(exc)) from exc
        return SessionClaims.from_payload(payload)
