"""Tests for password hashing and session token issuance."""
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from storefront_auth.core.models.user import Role
from storefront_auth.core.security import (
    TOKEN_LIFETIME,
    PasswordHasher,
    SessionClaims,
    TokenExpired,
    TokenInvalid,
    TokenIssuer,
    TokenMalformed,
)


class TestPasswordHasher:
    def test__hash__is_salted_and_verifiable(self, hasher: PasswordHasher) -> None:
        first = hasher.hash("Passw0rd!")
        second = hasher.hash("Passw0rd!")

        assert first != second
        assert first.startswith("$2b$10$")
        assert hasher.verify("Passw0rd!", first)
        assert hasher.verify("Passw0rd!", second)

    def test__verify__rejects_wrong_password(self, hasher: PasswordHasher) -> None:
        hashed = hasher.hash("Passw0rd!")
        assert hasher.verify("passw0rd!", hashed) is False

    def test__verify__empty_hash_never_matches(self, hasher: PasswordHasher) -> None:
        """OAuth-only accounts store an empty hash."""
        assert hasher.verify("", "") is False
        assert hasher.verify("anything", "") is False

    def test__verify__unknown_hash_format_is_false(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("Passw0rd!", "not-a-bcrypt-hash") is False

    def test__oversized_password__never_matches_and_never_raises(self, hasher: PasswordHasher) -> None:
        oversized = "a" * 5000

        assert hasher.verify(oversized, hasher.hash("Passw0rd!")) is False
        assert hasher.verify(oversized, "") is False
        hasher.burn(oversized)


class TestTokenIssuer:
    def test__verify__returns_issued_claims(self, issuer: TokenIssuer) -> None:
        token = issuer.issue(42, Role.ADMIN)

        claims = issuer.verify(token)

        assert claims.subject_id == 42
        assert claims.role == Role.ADMIN
        assert claims.expires_at - claims.issued_at == TOKEN_LIFETIME

    def test__issue__lifetime_is_seven_days(self, issuer: TokenIssuer) -> None:
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        token = issuer.issue(1, Role.USER, now=now)

        payload = jwt.get_unverified_claims(token)

        assert payload["sub"] == "1"
        assert payload["role"] == "USER"
        assert payload["exp"] - payload["iat"] == 7 * 24 * 60 * 60

    def test__verify__expired_token_is_expired_not_invalid(self, issuer: TokenIssuer) -> None:
        token = issuer.issue(1, Role.USER, now=datetime.now(timezone.utc) - timedelta(days=8))

        with pytest.raises(TokenExpired):
            issuer.verify(token)

    def test__verify__token_just_inside_lifetime_is_accepted(self, issuer: TokenIssuer) -> None:
        token = issuer.issue(1, Role.USER, now=datetime.now(timezone.utc) - timedelta(days=6, hours=23))
        assert issuer.verify(token).subject_id == 1

    def test__verify__other_secret_is_invalid(self, issuer: TokenIssuer) -> None:
        token = TokenIssuer("another-secret").issue(1, Role.USER)

        with pytest.raises(TokenInvalid):
            issuer.verify(token)

    def test__verify__expired_and_mis_signed_is_invalid(self, issuer: TokenIssuer) -> None:
        token = TokenIssuer("another-secret").issue(
            1, Role.USER, now=datetime.now(timezone.utc) - timedelta(days=30)
        )

        with pytest.raises(TokenInvalid):
            issuer.verify(token)

    def test__verify__tampered_role_is_invalid(self, issuer: TokenIssuer) -> None:
        header, payload, signature = issuer.issue(1, Role.USER).split(".")
        forged = jwt.encode({"sub": "1", "role": "ADMIN", "iat": 1, "exp": 4102444800}, "x").split(".")[1]

        with pytest.raises(TokenInvalid):
            issuer.verify(".".join([header, forged, signature]))

    @pytest.mark.parametrize("token", ["", "not-a-token", "a.b", "a.b.c"])
    def test__verify__garbage_is_malformed(self, issuer: TokenIssuer, token: str) -> None:
        with pytest.raises(TokenMalformed):
            issuer.verify(token)

    def test__verify__missing_role_is_malformed(self, issuer: TokenIssuer) -> None:
        token = jwt.encode({"sub": "1", "iat": 1, "exp": 4102444800}, issuer.secret, algorithm="HS256")

        with pytest.raises(TokenMalformed):
            issuer.verify(token)

    def test__verify__non_numeric_subject_is_malformed(self, issuer: TokenIssuer) -> None:
        token = jwt.encode(
            {"sub": "ana@x.com", "role": "USER", "iat": 1, "exp": 4102444800}, issuer.secret, algorithm="HS256"
        )

        with pytest.raises(TokenMalformed):
            issuer.verify(token)

    def test__verify__rejects_other_algorithm(self, issuer: TokenIssuer) -> None:
        token = TokenIssuer(issuer.secret, algorithm="HS512").issue(1, Role.USER)

        with pytest.raises(TokenInvalid):
            issuer.verify(token)


def test__session_claims__from_payload() -> None:
    claims = SessionClaims.from_payload({"sub": "7", "role": "USER", "iat": 0, "exp": 604800})

    assert claims.subject_id == 7
    assert claims.role == Role.USER
    assert claims.issued_at == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert claims.expires_at == datetime(1970, 1, 8, tzinfo=timezone.utc)
