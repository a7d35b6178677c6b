import logging
import traceback
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from storefront_auth.core.config import Settings, settings as default_settings
from storefront_auth.core.db import Database
from storefront_auth.core.errors import AppError, Unauthorized
from storefront_auth.core.google import GoogleVerifier
from storefront_auth.core.security import PasswordHasher, TokenIssuer
from storefront_auth.middleware.auth import AuthMiddleware, RouteGuard
from storefront_auth.services.auth_service import AuthService
from storefront_auth.services.user_store import UserStore
from storefront_auth.web.routers.auth import build_oauth, router as auth_router
from storefront_auth.web.routers.pages import router as pages_router
from storefront_auth.web.routers.users import router as users_router
from storefront_auth.web.session import clear_session_cookie

logger = logging.getLogger(__name__)

HTTP_ERROR_TYPES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
}


def error_body(error_type: str, message: str, settings: Settings, exc: Optional[BaseException] = None, **extra) -> dict:
    error = {"type": error_type, "message": message}
    error.update(extra)
    if exc is not None and settings.DEBUG and not settings.is_production:
        error["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return {"success": False, "error": error}


def create_app(settings: Settings = default_settings, database: Optional[Database] = None) -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, debug=False)

    app.state.settings = settings
    app.state.database = database or Database(settings.DATABASE_URL, echo=settings.DEBUG)
    app.state.password_hasher = PasswordHasher()
    app.state.token_issuer = TokenIssuer(settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    app.state.google_verifier = GoogleVerifier(
        settings.GOOGLE_CLIENT_ID, settings.GOOGLE_JWKS_URL, timeout=settings.GOOGLE_TIMEOUT_SECONDS
    )
    app.state.oauth = build_oauth(settings)

    guard = RouteGuard(
        login_path=settings.LOGIN_PATH,
        after_login_path=settings.AFTER_LOGIN_PATH,
        protected_paths=settings.PROTECTED_PATHS,
        auth_pages=settings.AUTH_PAGES,
    )
    app.add_middleware(AuthMiddleware, guard=guard)
    # Session middleware (required for OAuth state)
    app.add_middleware(
        SessionMiddleware, secret_key=settings.SECRET_KEY, same_site="lax", https_only=settings.is_production
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("request %s %s", request.method, request.url.path)
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("error handling %s %s", request.method, request.url.path)
            raise
        logger.info("response %s %s status %s", request.method, request.url.path, response.status_code)
        return response

    @app.on_event("startup")
    async def on_startup():
        logging.basicConfig(level=settings.LOG_LEVEL.upper())
        await app.state.database.create_all()
        # Assign admin role based on ADMIN_EMAIL, if set
        if settings.ADMIN_EMAIL:
            async with app.state.database.sessionmaker() as session:
                service = AuthService(
                    UserStore(session, timeout=settings.DB_TIMEOUT_SECONDS),
                    app.state.password_hasher,
                    app.state.token_issuer,
                )
                await service.promote_admin(settings.ADMIN_EMAIL)

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.google_verifier.close()
        await app.state.database.dispose()

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(pages_router)

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    # -------------------
    # Exception Handlers
    # -------------------

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        extra = {"errors": exc.errors} if exc.errors else {}
        response = JSONResponse(
            error_body(exc.error_type, exc.message, settings, exc, **extra), status_code=exc.status_code
        )
        # A rejected session cookie is dropped so the browser stops sending it
        sent_cookie = settings.cookie_name in request.cookies or settings.JWT_COOKIE_NAME in request.cookies
        if isinstance(exc, Unauthorized) and sent_cookie and "authorization" not in request.headers:
            clear_session_cookie(response, settings)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(
            error_body("VALIDATION_ERROR", "Validation error", settings, errors=jsonable_encoder(errors)),
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        code = exc.status_code
        error_type = HTTP_ERROR_TYPES.get(code, "INTERNAL_SERVER_ERROR" if code >= 500 else "HTTP_ERROR")
        return JSONResponse(
            error_body(error_type, str(exc.detail or "Unexpected error"), settings),
            status_code=code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            error_body("INTERNAL_SERVER_ERROR", "Internal server error", settings, exc), status_code=500
        )

    return app


app = create_app()
