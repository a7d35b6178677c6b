"""Pytest fixtures for testing."""
import time
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import httpx
import pytest
from authlib.jose import JsonWebKey, jwt as authlib_jwt
from httpx import ASGITransport, AsyncClient
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_auth.core.config import Settings
from storefront_auth.core.db import Database
from storefront_auth.core.google import GoogleVerifier
from storefront_auth.core.security import PasswordHasher, TokenIssuer
from storefront_auth.main import create_app
from storefront_auth.services.auth_service import AuthService
from storefront_auth.services.user_store import UserStore

TEST_SECRET = "test-secret-key"
GOOGLE_CLIENT_ID = "test-client.apps.googleusercontent.com"
JWKS_URL = "https://google.test/oauth2/v3/certs"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        ENV="test",
        DEBUG=False,
        SECRET_KEY=TEST_SECRET,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        GOOGLE_CLIENT_ID=GOOGLE_CLIENT_ID,
        GOOGLE_CLIENT_SECRET=None,
        GOOGLE_JWKS_URL=JWKS_URL,
        SESSION_TRANSPORT="both",
        ADMIN_EMAIL=None,
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncGenerator[Database, None]:
    """An isolated SQLite database file per test."""
    db = Database(settings.DATABASE_URL)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    async with database.sessionmaker() as session:
        yield session


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher()


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET)


@pytest.fixture
def service(db_session: AsyncSession, hasher: PasswordHasher, issuer: TokenIssuer) -> AuthService:
    return AuthService(UserStore(db_session), hasher, issuer)


@pytest.fixture(scope="session")
def google_key():
    return JsonWebKey.generate_key("RSA", 2048, is_private=True, options={"kid": "test-key"})


@pytest.fixture
def make_google_token(google_key) -> Callable[..., str]:
    """Build a Google-style ID token signed with the test key."""

    def _make(key=None, kid: str = "test-key", **overrides) -> str:
        now = int(time.time())
        claims = {
            "iss": "https://accounts.google.com",
            "aud": GOOGLE_CLIENT_ID,
            "sub": "1234567890",
            "email": "new@example.com",
            "email_verified": True,
            "name": "New Shopper",
            "picture": "https://lh3.googleusercontent.com/a/photo.jpg",
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        token = authlib_jwt.encode({"alg": "RS256", "kid": kid}, claims, key or google_key)
        return token.decode()

    return _make


@pytest.fixture
def jwks_calls() -> list:
    return []


@pytest.fixture
def google_verifier(google_key, jwks_calls: list) -> GoogleVerifier:
    """Verifier whose JWKS endpoint is served in-process."""

    def handler(request: httpx.Request) -> httpx.Response:
        jwks_calls.append(str(request.url))
        return httpx.Response(200, json={"keys": [google_key.as_dict(is_private=False)]})

    return GoogleVerifier(GOOGLE_CLIENT_ID, JWKS_URL, transport=httpx.MockTransport(handler))


@pytest.fixture
async def app(settings: Settings, database: Database, google_verifier: GoogleVerifier) -> AsyncGenerator[FastAPI, None]:
    application = create_app(settings, database=database)
    await application.state.google_verifier.close()
    application.state.google_verifier = google_verifier
    yield application
    await google_verifier.close()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client


@pytest.fixture
def register_user(client: AsyncClient) -> Callable:
    """Register through the API and return the response data."""

    async def _register(email: str = "ana@x.com", password: str = "Passw0rd!", name: str = "Ana") -> dict:
        response = await client.post(
            "/api/auth/register", json={"name": name, "email": email, "password": password}
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return _register
