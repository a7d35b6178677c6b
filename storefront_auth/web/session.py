from typing import Optional

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_auth.core.config import Settings
from storefront_auth.core.db import get_session
from storefront_auth.core.errors import Forbidden, Unauthorized
from storefront_auth.core.google import GoogleVerifier
from storefront_auth.core.models.user import Role
from storefront_auth.core.security import TOKEN_LIFETIME, SessionClaims, TokenExpired, TokenIssuer, TokenRejected
from storefront_auth.services.auth_service import AuthService
from storefront_auth.services.user_store import UserStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer


def get_google_verifier(request: Request) -> GoogleVerifier:
    return request.app.state.google_verifier


def get_auth_service(request: Request, session: AsyncSession = Depends(get_session)) -> AuthService:
    state = request.app.state
    store = UserStore(session, timeout=state.settings.DB_TIMEOUT_SECONDS)
    return AuthService(store, state.password_hasher, state.token_issuer)


def extract_token(request: Request, settings: Settings) -> Optional[str]:
    """Bearer header first, then the session cookie."""
    if settings.uses_bearer:
        auth = request.headers.get("authorization", "")
        scheme, _, credentials = auth.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    if settings.uses_cookie:
        return request.cookies.get(settings.cookie_name) or request.cookies.get(settings.JWT_COOKIE_NAME)
    return None


def resolve_claims(request: Request, settings: Settings, issuer: TokenIssuer) -> SessionClaims:
    token = extract_token(request, settings)
    if not token:
        raise Unauthorized()
    try:
        return issuer.verify(token)
    except TokenExpired as exc:
        raise Unauthorized("Token expired") from exc
    except TokenRejected as exc:
        raise Unauthorized("Token invalid") from exc


def get_current_claims(
    request: Request,
    settings: Settings = Depends(get_settings),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> SessionClaims:
    return resolve_claims(request, settings, issuer)


def require_admin(claims: SessionClaims = Depends(get_current_claims)) -> SessionClaims:
    if claims.role != Role.ADMIN:
        raise Forbidden("Administrator access required")
    return claims


def set_session_cookie(response: Response, token: str, settings: Settings, samesite: str = "strict") -> None:
    if not settings.uses_cookie:
        return
    response.set_cookie(
        settings.cookie_name,
        token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=samesite,
        max_age=int(TOKEN_LIFETIME.total_seconds()),
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    for name in {settings.cookie_name, settings.JWT_COOKIE_NAME}:
        response.delete_cookie(name, path="/", secure=settings.cookie_secure, httponly=True)
