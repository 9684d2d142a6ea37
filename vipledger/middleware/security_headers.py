from __future__ import annotations

from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from vipledger.core.config import settings


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach security headers; API responses carrying balances are never cached."""

    def __init__(self, app) -> None:
        super().__init__(app)
        self.headers = {
            "Strict-Transport-Security": settings.STRICT_TRANSPORT_SECURITY,
            "X-Frame-Options": settings.X_FRAME_OPTIONS,
            "X-Content-Type-Options": settings.X_CONTENT_TYPE_OPTIONS,
            "Referrer-Policy": settings.REFERRER_POLICY,
        }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers.setdefault(name, value)
        path = request.url.path
        # Swagger UI loads inline scripts, the strict CSP would blank it.
        if not path.startswith(("/docs", "/redoc")):
            response.headers.setdefault("Content-Security-Policy", settings.CONTENT_SECURITY_POLICY)
        if path.startswith(settings.API_V1_STR):
            response.headers.setdefault("Cache-Control", "no-store")
        return response
