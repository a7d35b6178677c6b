from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt
from jose.exceptions import JOSEError


class SessionCache:
    """Client-side holder for the current session token.

    The expiry is read from the token's own ``exp`` claim without verifying the
    signature; the server remains the authority. Tokens within ``skew`` of expiry
    are treated as already expired.
    """

    def __init__(self, skew: timedelta = timedelta(seconds=30)):
        self.skew = skew
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    def store(self, token: str) -> None:
        try:
            exp = jwt.get_unverified_claims(token).get("exp")
        except JOSEError:
            exp = None
        self._token = token
        self._expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if isinstance(exp, int) else None

    def clear(self) -> None:
        self._token = None
        self._expires_at = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self._token is None:
            return False
        if self._expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now >= self._expires_at - self.skew

    def get(self, now: Optional[datetime] = None) -> Optional[str]:
        if self.is_expired(now):
            self.clear()
            return None
        return self._token
