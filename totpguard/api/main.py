"""
TOTPGUARD REST API - Main Application.

FastAPI-based REST API for TOTP second-factor enrollment and verification.

Usage:
    # Development
    uvicorn totpguard.api.main:app --reload --port 8000

    # Production
    uvicorn totpguard.api.main:app --host 0.0.0.0 --port 8000 --workers 4
"""
import os
import time
import uuid
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..errors import ConfigurationError, MFAError
from .deps import get_db, get_field_cipher
from .routes import health_router, mfa_router

# Configure logging with request context support
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


# Custom filter to add request_id to all log records
class RequestIdFilter(logging.Filter):
    """Add request_id to log records."""
    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = request_id_var.get()
        return True


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format=LOG_FORMAT,
)
# Filters on the root logger do not see records from child loggers, so the
# filter goes on the handlers.
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)

# API metadata
API_TITLE = "TOTPGUARD API"
API_DESCRIPTION = """
**TOTP second factor service**

- **Enrollment** - Generate a TOTP secret and QR code, confirm with a first code
- **Verification** - RFC 6238 codes, 30-second steps, +/-1 step tolerance
- **Recovery codes** - One-time codes, stored as SHA-256 hashes only

## Authentication

All `/mfa` endpoints require Bearer token authentication:
`Authorization: Bearer <session token>`

## Errors

Every error response has the shape `{"error": "<message>"}`.
A wrong code is not an error: it returns `{"verified": false}`.
"""
API_VERSION = os.getenv("APP_VERSION", __version__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup and shutdown.
    """
    # Startup
    logger.info(f"Starting TOTPGUARD API v{API_VERSION}")

    # Refuse to start without encryption key material
    try:
        get_field_cipher()
    except ConfigurationError as e:
        logger.critical(f"Encryption is not configured: {e.detail}")
        raise

    # Initialize database schema
    try:
        get_db().init_schema()
        logger.info("Database schema initialized")
    except MFAError as e:
        logger.warning(f"Database initialization skipped: {e.detail}")

    yield

    # Shutdown
    logger.info("Shutting down TOTPGUARD API")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    allowed_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request tracking and security headers middleware
    @app.middleware("http")
    async def add_request_tracking_and_security(request: Request, call_next):
        # Generate or extract request ID for tracing
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])

        # Store in request state for access in route handlers
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        start_time = time.time()

        try:
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(f"Request failed: {e}", exc_info=True)
                raise

            process_time = (time.time() - start_time) * 1000

            # Request tracking headers
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time-Ms"] = f"{process_time:.2f}"

            # Log request completion (skip health checks to reduce noise)
            if not request.url.path.startswith("/health"):
                logger.info(
                    f"{request.method} {request.url.path} "
                    f"-> {response.status_code} ({process_time:.1f}ms)"
                )
        finally:
            request_id_var.reset(token)

        # Security headers
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        # CSP for API (restrictive)
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response

    # Exception handlers
    @app.exception_handler(MFAError)
    async def mfa_exception_handler(request: Request, exc: MFAError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc.detail}")
        else:
            logger.info(f"{type(exc).__name__}: {exc.detail}")

        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.public_message},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = " -> ".join(str(l) for l in error["loc"])
            errors.append(f"{loc}: {error['msg']}")

        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "; ".join(errors) or "Invalid request"},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal Server Error",
                "request_id": request_id,
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(mfa_router)

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "totpguard.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
