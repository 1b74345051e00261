"""ASGI middleware for the jarvault API.

Three middlewares registered in order (outermost → innermost):
  1. CORSMiddleware: handled by FastAPI directly (not here)
  2. RequestIdMiddleware: injects / forwards X-Request-ID; stores in ContextVar
  3. SecurityHeadersMiddleware: adds security response headers

The ContextVar `_request_id_var` is the single source of truth for the
current request ID. The logging layer reads it so that every log line of
one download carries the same ID.
"""

import uuid
from contextvars import ContextVar
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Applied to every response unless the route already set the header
# (secure downloads send a stricter Content-Security-Policy of their own).
_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-XSS-Protection": "0",
}


def get_request_id() -> str:
    """Return the current request's ID, or an empty string outside a request."""
    return _request_id_var.get()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Read or generate X-Request-ID and make it available for the request lifetime.

    - If the client sends X-Request-ID, that value is reused so a dashboard
      → API → build backend chain can be correlated.
    - If absent, a fresh UUID4 is generated.
    - The ID is always echoed back in the response header.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        token = _request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            _request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach security-related headers to every outgoing response.

      X-Content-Type-Options: nosniff
        JAR downloads must never be sniffed into something executable
        by the browser.
      X-Frame-Options: DENY
        Blocks rendering in an iframe (clickjacking).
      Referrer-Policy: strict-origin-when-cross-origin
        Keeps `?token=` query strings out of third-party referrers.
      X-XSS-Protection: 0
        Disables the legacy XSS auditor.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        response = await call_next(request)
        for name, value in _SECURITY_HEADERS.items():
            if name not in response.headers:
                response.headers[name] = value
        return response
