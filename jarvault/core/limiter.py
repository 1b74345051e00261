"""SlowAPI rate limiter singleton.

Token issuance is keyed on the authenticated principal so limits apply
per user, not per IP (which would penalise users behind NAT/proxies).

Usage in route handlers:

    @router.post("/artifact/{user_id}/{plugin_name}/token")
    @limiter.limit(settings.token_rate_limit)
    async def handler(request: Request, ...):
        ...

The `Request` parameter is required by SlowAPI even if the handler doesn't
use it directly: it uses it to extract the key.
"""

from slowapi import Limiter


def _principal_key(request) -> str:
    """Key function: rate-limit per session principal.

    Falls back to client IP when no principal has been resolved
    (token-only secure downloads).
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return str(user_id)
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=_principal_key, default_limits=[])
