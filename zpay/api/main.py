"""
Main FastAPI application.

ZPay dashboard API with:
- CORS configuration (open for the public licensing routes)
- Error handling
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Sequence

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from zpay import __version__
from zpay.config import get_settings
from zpay.core.exceptions import ZPayError
from zpay.database.connection import close_db, init_db
from zpay.monitoring.logging import bind_request_context, clear_request_context, setup_logging
from zpay.monitoring.metrics import metrics

from .admin import admin_router
from .billing import billing_router
from .license import LICENSE_PREFIX, license_router
from .payments import payments_router
from .routes import account_router, auth_router, monitoring_router

# Setup logging first
setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()


class PublicPathCORSMiddleware:
    """
    CORS with a wildcard origin for public path prefixes.

    Requests under ``public_prefixes`` accept any origin; everything else is
    limited to ``allow_origins``.
    """

    def __init__(
        self,
        app: ASGIApp,
        allow_origins: Sequence[str],
        public_prefixes: Sequence[str],
    ) -> None:
        self.public_prefixes = tuple(public_prefixes)
        self.restricted = CORSMiddleware(
            app,
            allow_origins=list(allow_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self.public = CORSMiddleware(
            app,
            allow_origins=["*"],
            allow_methods=["POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"].startswith(self.public_prefixes):
            await self.public(scope, receive, send)
        else:
            await self.restricted(scope, receive, send)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """Create tables on startup and dispose of the engine on shutdown."""
    logger.info(
        "application_startup",
        env=settings.app_env,
        payment_api=settings.payment_api_base_url,
        stripe_configured=settings.stripe_secret_key is not None,
        sms_configured=settings.sms_configured,
        email_configured=settings.email_configured,
    )
    await init_db()
    try:
        yield
    finally:
        await close_db()
        logger.info("application_shutdown")


app = FastAPI(
    title="ZPay",
    description=(
        "Dashboard and admin API for the ZPay Zcash payment service: accounts, API keys, "
        "webhooks, transactions, licensing for self-hosted instances and Stripe billing."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    PublicPathCORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    public_prefixes=[LICENSE_PREFIX],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next: Any) -> Response:
    """
    Tag every log line of the request with its ID and record timing.

    A caller-supplied ``X-Request-ID`` is reused so that dashboard and
    self-hosted clients can correlate their own logs with ours.
    """
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    bind_request_context(request_id, request.method, request.url.path)
    started = time.perf_counter()
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        duration = time.perf_counter() - started
        metrics.record_http_request(request.method, status_code, duration)
        log = logger.warning if status_code >= 500 else logger.info
        log("request_finished", status_code=status_code, duration_ms=round(duration * 1000, 1))
        clear_request_context()


@app.exception_handler(ZPayError)
async def zpay_error_handler(request: Request, exc: ZPayError) -> JSONResponse:
    """Map service errors to their HTTP status and error body."""
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        "service_error",
        code=exc.code,
        error=exc.message,
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_SERVER_ERROR",
                "message": "An unexpected error occurred. Please try again later.",
                "type": "InternalServerError",
            }
        },
    )


# Include routers
app.include_router(auth_router)
app.include_router(account_router)
app.include_router(admin_router)
app.include_router(license_router)
app.include_router(billing_router)
app.include_router(payments_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": __version__,
        "status": "operational",
        "environment": settings.app_env,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


def main() -> None:
    """Entry point for the ``zpay-server`` command."""
    import uvicorn

    uvicorn.run(
        "zpay.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
