import logging

from authlib.integrations.starlette_client import OAuth, OAuthError
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse

from storefront_auth.core.config import Settings
from storefront_auth.core.errors import AppError
from storefront_auth.core.google import GoogleIdentity, GoogleVerifier
from storefront_auth.core.security import SessionClaims
from storefront_auth.schemas.auth import (
    GoogleLoginIn,
    LoginIn,
    ProfileOut,
    PublicUser,
    RegisterIn,
    ResetPasswordIn,
    UpdateProfileIn,
    ok,
)
from storefront_auth.services.auth_service import AuthResult, AuthService
from storefront_auth.web.session import (
    clear_session_cookie,
    get_auth_service,
    get_current_claims,
    get_google_verifier,
    get_settings,
    set_session_cookie,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def build_oauth(settings: Settings) -> OAuth:
    # Client registered only when credentials exist
    oauth = OAuth()
    if settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET:
        oauth.register(
            name="google",
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile", "timeout": settings.GOOGLE_TIMEOUT_SECONDS},
        )
    return oauth


def _auth_body(result: AuthResult, settings: Settings) -> dict:
    data = {"user": PublicUser.model_validate(result.user).model_dump(mode="json")}
    # Cookie-only transport keeps the token out of script reach
    data["token"] = result.token if settings.uses_bearer else None
    return ok(data)


@router.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterIn,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    result = await service.register(body.name, body.email, body.password)
    set_session_cookie(response, result.token, settings)
    return _auth_body(result, settings)


@router.post("/api/auth/login")
async def login(
    body: LoginIn,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    result = await service.login(body.email, body.password)
    set_session_cookie(response, result.token, settings)
    return _auth_body(result, settings)


@router.post("/api/auth/google-login")
async def google_login(
    body: GoogleLoginIn,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    verifier: GoogleVerifier = Depends(get_google_verifier),
    settings: Settings = Depends(get_settings),
):
    identity = await verifier.verify(body.token)
    result = await service.google_login(identity)
    set_session_cookie(response, result.token, settings)
    return _auth_body(result, settings)


@router.post("/api/auth/reset-password")
async def reset_password(body: ResetPasswordIn, service: AuthService = Depends(get_auth_service)):
    await service.reset_password(body.email, body.new_password)
    return ok(message="Password updated")


@router.get("/api/auth/profile")
async def profile(
    claims: SessionClaims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
):
    user = await service.get_profile(claims.subject_id)
    return ok(ProfileOut.model_validate(user).model_dump(mode="json"))


@router.patch("/api/auth/profile")
async def update_profile(
    body: UpdateProfileIn,
    claims: SessionClaims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
):
    user = await service.update_profile(claims.subject_id, name=body.name, avatar_url=body.avatar_url)
    return ok(PublicUser.model_validate(user).model_dump(mode="json"))


@router.post("/api/auth/logout")
async def logout(
    response: Response,
    claims: SessionClaims = Depends(get_current_claims),
    settings: Settings = Depends(get_settings),
):
    clear_session_cookie(response, settings)
    logger.info("User %s logged out", claims.subject_id)
    return ok(message="Logged out")


@router.get("/auth/google/login")
async def google_redirect_login(request: Request, settings: Settings = Depends(get_settings)):
    google = request.app.state.oauth.create_client("google")
    if google is None:
        return RedirectResponse(url=settings.LOGIN_PATH)
    redirect_uri = settings.GOOGLE_REDIRECT_URL or str(request.url_for("google_callback"))
    return await google.authorize_redirect(request, redirect_uri)


@router.get("/auth/google/callback")
async def google_callback(
    request: Request,
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    google = request.app.state.oauth.create_client("google")
    if google is None:
        return RedirectResponse(url=settings.LOGIN_PATH)
    try:
        token = await google.authorize_access_token(request)
        # Prefer OpenID profile
        userinfo = token.get("userinfo")
        if not userinfo:
            resp = await google.get("https://openidconnect.googleapis.com/v1/userinfo", token=token)
            userinfo = resp.json()
        result = await service.google_login(GoogleIdentity.from_claims(userinfo))
    except OAuthError as exc:
        logger.warning("Google redirect sign-in failed: %s", exc.error)
        return RedirectResponse(url=f"{settings.LOGIN_PATH}?error=google", status_code=302)
    except AppError as exc:
        logger.info("Google redirect sign-in rejected: %s", exc.message)
        return RedirectResponse(url=f"{settings.LOGIN_PATH}?error={exc.error_type.lower()}", status_code=302)

    resp = RedirectResponse(url=settings.AFTER_LOGIN_PATH, status_code=302)
    # Lax so the cookie survives the cross-site hop back from Google
    set_session_cookie(resp, result.token, settings, samesite="lax")
    return resp
