from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from jarvault.artifacts.router import router as artifacts_router
from jarvault.core.config import get_settings
from jarvault.core.errors import ArtifactError, artifact_error_handler
from jarvault.core.limiter import limiter
from jarvault.core.middleware import RequestIdMiddleware, SecurityHeadersMiddleware


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if get_settings().auto_create_tables:
        from jarvault.db.session import init_models

        await init_models()
    yield


def create_app() -> FastAPI:
    settings = get_settings()

    _app = FastAPI(
        title="jarvault",
        description="Compiled plugin JAR storage and secure distribution",
        version="0.1.0",
        lifespan=lifespan,
    )

    # ---------------------------------------------------------------------------
    # Rate limiter state: SlowAPI reads limiter from app.state
    # ---------------------------------------------------------------------------
    _app.state.limiter = limiter
    _app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Every ArtifactError renders as {"error", "reason", "hint"?}
    _app.add_exception_handler(ArtifactError, artifact_error_handler)

    # ---------------------------------------------------------------------------
    # Middleware (registered outermost → innermost; executed innermost → outermost)
    # ---------------------------------------------------------------------------

    # CORS: must be added before other custom middleware so preflight OPTIONS
    # requests are handled before they reach downstream middleware.
    _app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Artifact-Checksum", "X-Request-ID"],
    )

    # SlowAPI: must be before security headers so 429s also get security headers
    _app.add_middleware(SlowAPIMiddleware)

    _app.add_middleware(SecurityHeadersMiddleware)

    # Request ID: inject / forward X-Request-ID and bind to ContextVar
    _app.add_middleware(RequestIdMiddleware)

    # ---------------------------------------------------------------------------
    # Sentry: initialised here so it captures startup errors too
    # ---------------------------------------------------------------------------
    from jarvault.core.sentry import init_sentry

    init_sentry(
        dsn=settings.sentry_dsn,
        environment="development" if settings.debug else "production",
    )

    # ---------------------------------------------------------------------------
    # Logging: configure structlog before any routers log anything
    # ---------------------------------------------------------------------------
    from jarvault.core.logging import configure_structlog

    configure_structlog(debug=settings.debug)

    @_app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    _app.include_router(artifacts_router)

    return _app


app = create_app()
