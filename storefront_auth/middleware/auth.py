from dataclasses import dataclass, field
from typing import Optional, Sequence
from urllib.parse import urlencode

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

from storefront_auth.core.errors import Unauthorized
from storefront_auth.web.session import resolve_claims


def path_matches(path: str, prefixes: Sequence[str]) -> bool:
    return any(path == p or path.startswith(p.rstrip("/") + "/") for p in prefixes)


@dataclass
class RouteGuard:
    login_path: str = "/login"
    after_login_path: str = "/"
    protected_paths: Sequence[str] = field(default_factory=list)
    auth_pages: Sequence[str] = field(default_factory=list)

    def redirect_for(self, path: str, query: str, authenticated: bool) -> Optional[str]:
        """Where to send the request, or None to let it through."""
        if authenticated and path_matches(path, self.auth_pages):
            return self.after_login_path
        if not authenticated and path_matches(path, self.protected_paths):
            callback = f"{path}?{query}" if query else path
            return f"{self.login_path}?{urlencode({'callbackUrl': callback})}"
        return None


class AuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, guard: RouteGuard):
        super().__init__(app)
        self.guard = guard

    async def dispatch(self, request: Request, call_next):
        # Default no claims
        request.state.claims = None
        state = request.app.state
        try:
            request.state.claims = resolve_claims(request, state.settings, state.token_issuer)
        except Unauthorized:
            pass
        target = self.guard.redirect_for(request.url.path, request.url.query, request.state.claims is not None)
        if target is not None:
            return RedirectResponse(url=target, status_code=302)
        return await call_next(request)
