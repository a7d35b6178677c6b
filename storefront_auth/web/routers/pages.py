from pathlib import Path
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from storefront_auth.core.config import Settings
from storefront_auth.core.errors import UserNotFound
from storefront_auth.services.auth_service import AuthService
from storefront_auth.web.session import clear_session_cookie, get_auth_service, get_settings

router = APIRouter()

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def _safe_callback(value, default: str) -> str:
    # Same-origin paths only; browsers treat a backslash like "/"
    if not value or not value.startswith("/") or "\\" in value:
        return default
    if any(ord(c) < 32 for c in value):
        return default
    parts = urlsplit(value)
    if parts.scheme or parts.netloc:
        return default
    return value


def _page(request: Request, name: str, title: str, settings: Settings, **extra):
    ctx = {
        "request": request,
        "title": title,
        "app_name": settings.APP_NAME,
        "callback_url": _safe_callback(request.query_params.get("callbackUrl"), settings.AFTER_LOGIN_PATH),
        "error": request.query_params.get("error"),
        "google_enabled": bool(settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET),
    }
    ctx.update(extra)
    return templates.TemplateResponse(name, ctx)


@router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, settings: Settings = Depends(get_settings)):
    return _page(request, "login.html", "Sign in", settings)


@router.get("/register", response_class=HTMLResponse)
async def register_page(request: Request, settings: Settings = Depends(get_settings)):
    return _page(request, "register.html", "Create account", settings)


@router.get("/account", response_class=HTMLResponse)
async def account_page(
    request: Request,
    settings: Settings = Depends(get_settings),
    service: AuthService = Depends(get_auth_service),
):
    claims = getattr(request.state, "claims", None)
    if claims is None:
        return RedirectResponse(url=f"{settings.LOGIN_PATH}?callbackUrl=/account", status_code=302)
    try:
        user = await service.get_profile(claims.subject_id)
    except UserNotFound:
        # Account is gone; end the session too
        response = RedirectResponse(url=settings.LOGIN_PATH, status_code=302)
        clear_session_cookie(response, settings)
        return response
    return _page(request, "account.html", "Account", settings, user=user)
