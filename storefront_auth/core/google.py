"""Verification of Google ID tokens posted by the browser sign-in button."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError
from jose import jwt as jose_jwt
from jose.exceptions import JOSEError

from storefront_auth.core.errors import InternalError, ServiceUnavailable, ValidationError

logger = logging.getLogger(__name__)

GOOGLE_ISSUERS = ["https://accounts.google.com", "accounts.google.com"]
JWKS_CACHE_SECONDS = 3600


@dataclass(frozen=True)
class GoogleIdentity:
    subject: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "GoogleIdentity":
        email = (claims.get("email") or "").strip().lower()
        if "@" not in email:
            raise ValidationError("Google account has no valid email")
        if claims.get("email_verified") in (False, "false"):
            raise ValidationError("Google email address is not verified")
        name = (claims.get("name") or "").strip() or None
        return cls(
            subject=str(claims.get("sub") or ""),
            email=email,
            name=name,
            picture=claims.get("picture") or None,
        )


class GoogleVerifier:
    """Validates ID tokens against Google's published signing keys.

    Keys are fetched over HTTP with a timeout and cached; an unknown ``kid``
    forces one refetch in case Google rotated its keys.
    """

    def __init__(
        self,
        client_id: Optional[str],
        jwks_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.jwks_url = jwks_url
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._jwt = JsonWebToken(["RS256"])
        self._keys = None
        self._fetched_at = 0.0

    async def close(self) -> None:
        await self._http.aclose()

    async def _fetch_keys(self):
        try:
            r = await self._http.get(self.jwks_url)
            r.raise_for_status()
            keys = JsonWebKey.import_key_set(r.json())
        except httpx.TimeoutException as exc:
            logger.error("Timed out fetching Google signing keys")
            raise ServiceUnavailable("Google sign-in timed out") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Failed to fetch Google signing keys: %s", exc)
            raise InternalError("Error verifying Google sign-in") from exc
        self._keys = keys
        self._fetched_at = time.monotonic()
        return keys

    async def _get_keys(self, refresh: bool = False):
        stale = time.monotonic() - self._fetched_at > JWKS_CACHE_SECONDS
        if self._keys is None or stale or refresh:
            return await self._fetch_keys()
        return self._keys

    def _decode(self, id_token: str, keys):
        claims = self._jwt.decode(
            id_token,
            keys,
            claims_options={
                "iss": {"essential": True, "values": GOOGLE_ISSUERS},
                "aud": {"essential": True, "value": self.client_id},
                "exp": {"essential": True},
                "email": {"essential": True},
            },
        )
        claims.validate()
        return claims

    @staticmethod
    def _has_signing_key(keys, id_token: str) -> bool:
        try:
            kid = jose_jwt.get_unverified_header(id_token).get("kid")
        except JOSEError:
            # Malformed; let decoding report it
            return True
        return kid is None or any(key.kid == kid for key in keys.keys)

    async def verify(self, id_token: str) -> GoogleIdentity:
        if not self.client_id:
            raise InternalError("Google sign-in is not configured")
        if not id_token:
            raise ValidationError("Google token is required")
        keys = await self._get_keys()
        if not self._has_signing_key(keys, id_token):
            # Google rotated its keys since the last fetch
            keys = await self._get_keys(refresh=True)
        try:
            claims = self._decode(id_token, keys)
        except (JoseError, ValueError) as exc:
            logger.info("Rejected Google ID token: %s", exc)
            raise ValidationError("Invalid Google token") from exc
        return GoogleIdentity.from_claims(claims)
