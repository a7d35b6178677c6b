"""Tests for the administrator-only /api/users endpoints."""
from httpx import AsyncClient

from storefront_auth.services.auth_service import AuthService


async def login_as_admin(client: AsyncClient, register_user, service: AuthService) -> dict:
    await register_user(email="boss@x.com", name="Boss")
    await service.promote_admin("boss@x.com")
    response = await client.post("/api/auth/login", json={"email": "boss@x.com", "password": "Passw0rd!"})
    assert response.status_code == 200
    return response.json()["data"]


async def test__list_users__forbidden_for_regular_user(client: AsyncClient, register_user) -> None:
    await register_user()

    response = await client.get("/api/users")

    assert response.status_code == 403
    assert response.json()["error"] == {"type": "FORBIDDEN", "message": "Administrator access required"}


async def test__list_users__requires_session(client: AsyncClient) -> None:
    response = await client.get("/api/users")
    assert response.status_code == 401


async def test__list_users__newest_first_for_admin(
    client: AsyncClient, register_user, service: AuthService,
) -> None:
    await register_user(email="first@x.com")
    await register_user(email="second@x.com")
    admin = await login_as_admin(client, register_user, service)
    assert admin["user"]["role"] == "ADMIN"

    response = await client.get("/api/users")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["count"] == 3
    assert [u["email"] for u in body["data"]] == ["boss@x.com", "second@x.com", "first@x.com"]
    assert all("password_hash" not in u for u in body["data"])


async def test__get_user__by_id(client: AsyncClient, register_user, service: AuthService) -> None:
    shopper = await register_user(email="shopper@x.com")
    await login_as_admin(client, register_user, service)

    found = await client.get(f"/api/users/{shopper['user']['id']}")
    missing = await client.get("/api/users/9999")

    assert found.json()["data"]["email"] == "shopper@x.com"
    assert missing.status_code == 404
    assert missing.json()["error"]["type"] == "NOT_FOUND"
