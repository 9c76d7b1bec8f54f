"""
FastAPI Application Entry Point.
Initializes the FastAPI app with session middleware, error handlers and routes.
"""
import logging
from contextlib import asynccontextmanager
from urllib.parse import urlencode

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from sso_exchange.config import settings
from sso_exchange.core.cache import get_cache
from sso_exchange.core.database import engine
from sso_exchange.core.exceptions import (
    SSOException,
    StoreError,
    ValidationError,
)
from sso_exchange.core.logging import configure_logging
from sso_exchange.core.sessions import SessionMiddleware
from sso_exchange.dependencies import get_code_store

configure_logging(settings)
logger = logging.getLogger(__name__)

# Endpoints called by other servers; everything else is a browser route
SERVER_TO_SERVER_PATHS = frozenset({"/sso/exchange", "/sso/logout-signal"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    await get_cache().connect()
    try:
        await get_code_store().purge_expired()
    except StoreError as e:
        logger.warning(f"Startup purge of expired codes failed: {e}")
    logger.info(
        f"SSO exchange started environment={settings.environment} "
        f"exchange_mode={settings.sso_exchange_mode} code_store={settings.code_store_backend}"
    )
    yield
    # Shutdown
    await get_cache().disconnect()
    await engine.dispose()


# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)


# Initialize FastAPI application
app = FastAPI(
    title="SSO Exchange",
    description="Cross-domain single sign-on between the central domain and tenant domains",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Add rate limiter state and error handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(SessionMiddleware)


def _central_login_redirect() -> RedirectResponse:
    query = urlencode({"error": "sso_failed"})
    return RedirectResponse(url=f"{settings.central_login_url}?{query}", status_code=303)


@app.exception_handler(SSOException)
async def sso_exception_handler(request: Request, exc: SSOException):
    """
    Map handoff failures to responses that never reveal the reason.

    Browser routes go back to the central login; server-to-server routes get
    a fixed JSON body per error class.
    """
    if isinstance(exc, StoreError):
        logger.error(f"SSO store failure path={request.url.path}: {exc}", exc_info=exc)
    else:
        logger.info(f"SSO request aborted path={request.url.path} reason={exc.reason}")

    if request.url.path not in SERVER_TO_SERVER_PATHS:
        return _central_login_redirect()

    if isinstance(exc, StoreError):
        return JSONResponse(status_code=503, content={"detail": "Service unavailable"})
    if isinstance(exc, ValidationError):
        return JSONResponse(status_code=400, content={"detail": "Bad request"})
    return JSONResponse(status_code=403, content={"detail": "Forbidden"})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed server-to-server requests look exactly like bad codes."""
    if request.url.path in SERVER_TO_SERVER_PATHS:
        return JSONResponse(status_code=403, content={"detail": "Forbidden"})
    return await request_validation_exception_handler(request, exc)


# Health Check Endpoints
@app.get("/health", tags=["Health"])
async def health_check():
    """Basic health check endpoint."""
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "environment": settings.environment,
        }
    )


@app.get("/health/ready", tags=["Health"])
async def readiness_check():
    """
    Readiness check endpoint.
    Verifies database and shared cache connectivity.
    """
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    from sso_exchange.core.database import AsyncSessionLocal

    checks = {
        "database": False,
        "cache": False,
    }

    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
            checks["database"] = True
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Readiness: database unreachable: {e}")

    try:
        checks["cache"] = await get_cache().ping()
    except StoreError as e:
        logger.warning(f"Readiness: cache unreachable: {e}")

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={
            "status": "ready" if all_healthy else "not ready",
            "checks": checks,
        }
    )


# Include API routers
from sso_exchange.api.routes import sso, session

app.include_router(sso.router, tags=["SSO"])
app.include_router(session.router, tags=["Session"])
