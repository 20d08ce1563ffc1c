import asyncio
import contextvars
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adminauth import __version__
from adminauth.config import get_settings
from adminauth.errors import AuthError, AuthErrorCode, TokenVerificationError
from adminauth.models.admin import InMemoryAdminRepository
from adminauth.seed import seed_admin
from adminauth.services.challenge_cleanup import challenge_cleanup_loop
from adminauth.services.context import AuthContext, build_auth_context

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Request ID context, propagated into every log record automatically
# ---------------------------------------------------------------------------
request_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class _RequestIdFilter(logging.Filter):
    """Inject the current request ID into every log record."""
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get("-")
        return True


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s",
    )
    # Handler-level so records propagated from child loggers get the field too
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, _RequestIdFilter) for f in handler.filters):
            handler.addFilter(_RequestIdFilter())


_AUTH_ERROR_STATUS = {
    AuthErrorCode.INVALID_CREDENTIALS: 401,
    AuthErrorCode.INVALID_OTP: 401,
    AuthErrorCode.CHALLENGE_INVALID: 400,
    AuthErrorCode.CHALLENGE_EXPIRED: 400,
    AuthErrorCode.TOO_MANY_ATTEMPTS: 429,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load JWT keys (fatal on failure) and start the challenge sweeper."""
    ctx: AuthContext = app.state.auth

    key_set = ctx.load_keys()
    logger.info("JWT keys loaded, active kid=%s", key_set.active_key_id)

    cleanup_task = asyncio.create_task(
        challenge_cleanup_loop(ctx.auth_service, ctx.settings.CHALLENGE_SWEEP_INTERVAL_SECONDS)
    )

    logger.info("Application startup complete")
    yield

    logger.info("Shutting down, cancelling background tasks...")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        logger.info("challenge_cleanup_loop: stopped")

    logger.info("Shutdown complete")


def create_app(context: AuthContext | None = None) -> FastAPI:
    """Build the API. Without ``context`` the environment configuration is used
    and the bootstrap admin (if configured) is seeded into an in-memory store."""
    if context is None:
        settings = get_settings()
        repository = InMemoryAdminRepository()
        seed_admin(repository, settings)
        context = build_auth_context(settings, repository=repository)
    settings = context.settings
    _configure_logging(settings.LOG_LEVEL)

    is_production = settings.APP_ENV == "production"
    app = FastAPI(
        title="Admin Auth API",
        version=__version__,
        lifespan=lifespan,
        # Disable interactive API docs in production
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        openapi_url=None if is_production else "/openapi.json",
    )
    app.state.auth = context

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------
    @app.exception_handler(AuthError)
    async def _auth_error_handler(request: Request, exc: AuthError):
        return JSONResponse(
            status_code=_AUTH_ERROR_STATUS.get(exc.code, 400),
            content={"code": exc.code.value, "detail": exc.message},
        )

    @app.exception_handler(TokenVerificationError)
    async def _token_error_handler(request: Request, exc: TokenVerificationError):
        # Specific reason was logged by TokenService; callers only learn "invalid"
        return JSONResponse(
            status_code=401,
            content={"code": "INVALID_TOKEN", "detail": "Invalid token"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(Exception)
    async def _global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception on %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",")],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With"],
    )

    # -----------------------------------------------------------------------
    # Request ID correlation
    # -----------------------------------------------------------------------
    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        """Attach a unique X-Request-ID to every response and to every log record."""
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = rid
        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response
        finally:
            request_id_ctx.reset(token)

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    from adminauth.routes.auth import router as auth_router

    app.include_router(auth_router, prefix="/api/admin", tags=["Admin Auth"])

    @app.get("/api/health")
    async def health():
        ctx: AuthContext = app.state.auth
        return {"status": "ok", "keys_loaded": ctx.key_manager.is_loaded}

    return app


app = create_app()
