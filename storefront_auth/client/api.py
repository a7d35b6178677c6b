"""Async API client that keeps the session token and reacts to expired sessions."""

import logging
from typing import Any, Callable, Optional

import httpx

from storefront_auth.client.session import SessionCache

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status: int, error_type: str, message: str, data: Any = None):
        self.status = status
        self.error_type = error_type
        self.message = message
        self.data = data
        super().__init__(f"{status} {error_type}: {message}")


class SessionAuth(httpx.Auth):
    """Attach the bearer token and end the session on authorization failure.

    ``on_unauthenticated(login_url)`` fires once per lost session: later failures
    stay silent until a new token is stored. Requests sent without a token (a
    failed login, for instance) never fire it.
    """

    def __init__(
        self,
        cache: SessionCache,
        on_unauthenticated: Optional[Callable[[str], Any]] = None,
        login_url: str = "/login",
    ):
        self.cache = cache
        self.on_unauthenticated = on_unauthenticated
        self.login_url = login_url
        self._notified = False

    def start(self, token: str) -> None:
        self.cache.store(token)
        self._notified = False

    def end(self) -> None:
        self.cache.clear()
        if self._notified:
            return
        self._notified = True
        logger.info("Session ended, redirecting to %s", self.login_url)
        if self.on_unauthenticated is not None:
            self.on_unauthenticated(self.login_url)

    def auth_flow(self, request: httpx.Request):
        had_session = self.cache.token is not None
        token = self.cache.get()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        elif had_session:
            # Expired locally
            self.end()
        response = yield request
        if response.status_code == 401 and token is not None and self.cache.token == token:
            self.end()


class StorefrontClient:
    def __init__(
        self,
        base_url: str,
        *,
        cache: Optional[SessionCache] = None,
        on_unauthenticated: Optional[Callable[[str], Any]] = None,
        login_url: str = "/login",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session = cache or SessionCache()
        self.auth = SessionAuth(self.session, on_unauthenticated, login_url)
        self._http = httpx.AsyncClient(base_url=base_url, auth=self.auth, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "StorefrontClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        r = await self._http.request(method, path, json=json)
        try:
            body = r.json()
        except ValueError:
            body = {}
        if r.is_error:
            error = body.get("error") or {}
            raise ApiError(r.status_code, error.get("type", "HTTP_ERROR"), error.get("message", r.reason_phrase), body)
        return body

    def _start_session(self, body: dict) -> dict:
        data = body.get("data") or {}
        if data.get("token"):
            self.auth.start(data["token"])
        return data.get("user") or {}

    async def register(self, name: str, email: str, password: str) -> dict:
        body = await self._request("POST", "/api/auth/register", {"name": name, "email": email, "password": password})
        return self._start_session(body)

    async def login(self, email: str, password: str) -> dict:
        body = await self._request("POST", "/api/auth/login", {"email": email, "password": password})
        return self._start_session(body)

    async def google_login(self, id_token: str) -> dict:
        body = await self._request("POST", "/api/auth/google-login", {"token": id_token})
        return self._start_session(body)

    async def reset_password(self, email: str, new_password: str) -> str:
        body = await self._request("POST", "/api/auth/reset-password", {"email": email, "newPassword": new_password})
        return body.get("message", "")

    async def profile(self) -> dict:
        return (await self._request("GET", "/api/auth/profile"))["data"]

    async def update_profile(self, name: Optional[str] = None, avatar_url: Optional[str] = None) -> dict:
        payload = {k: v for k, v in {"name": name, "avatar_url": avatar_url}.items() if v is not None}
        return (await self._request("PATCH", "/api/auth/profile", payload))["data"]

    async def logout(self) -> None:
        try:
            await self._request("POST", "/api/auth/logout")
        finally:
            self.session.clear()
            self._http.cookies.clear()
