"""
Shipment orchestration API - FastAPI backend for ShipRocket fulfilment
"""
import asyncio
import os
import logging

import uvicorn
from fastapi import FastAPI, Request, HTTPException
from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from routes.api import register_routes
from app.database import engine, Base
from app.config import settings
from app.exceptions import ShippingError, UnknownOutcomeError
from app.services.token_cache import TokenCache
from app.services.tracking_poller import tracking_poll_worker

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Shipment Orchestration API",
    description="ShipRocket courier orchestration for storefront orders",
    version="1.0.0",
    docs_url="/docs" if settings.IS_DEVELOPMENT else None,  # Disable docs in production
    redoc_url="/redoc" if settings.IS_DEVELOPMENT else None,
)

# One token cache per process, shared by every request's gateway client
app.state.token_cache = TokenCache()

logger.info("Starting shipment orchestration API")
logger.info("Environment: %s (production=%s, cloud=%s)", settings.ENV, settings.IS_PRODUCTION, settings.IS_CLOUD)
logger.info("Host: %s:%s", settings.HOST, settings.PORT)

# Startup config validation (warn only)
if settings.IS_PRODUCTION and settings.JWT_SECRET.strip() in ("", "supersecret_fallback_key_change_in_production"):
    logger.warning("JWT_SECRET is default or empty in production. Set a strong JWT_SECRET in environment.")
if settings.IS_PRODUCTION and settings.ENCRYPTION_KEY == "your-32-character-encryption-key!!":
    logger.warning("ENCRYPTION_KEY is the development default in production. Stored ShipRocket secrets are not protected.")
if settings.IS_PRODUCTION and not (os.getenv("ALLOWED_ORIGINS", "") or "").strip():
    logger.warning("ALLOWED_ORIGINS is not set in production. Set your frontend origin(s) (comma-separated).")


def get_cors_headers(request: Request) -> dict:
    """CORS headers for error responses, which bypass the middleware."""
    origin = request.headers.get("origin", "")
    allowed_origins = settings.ALLOWED_ORIGINS

    if origin in allowed_origins:
        cors_origin = origin
    elif settings.IS_DEVELOPMENT and (origin.startswith("http://localhost") or origin.startswith("http://127.0.0.1")):
        cors_origin = origin
    elif allowed_origins:
        cors_origin = allowed_origins[0]
    else:
        cors_origin = "*"

    return {
        "Access-Control-Allow-Origin": cors_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "*",
    }


@app.exception_handler(ShippingError)
async def shipping_exception_handler(request: Request, exc: ShippingError):
    """Shipping taxonomy -> status code + {detail, ...extra}."""
    if isinstance(exc, UnknownOutcomeError):
        logger.warning("Unknown outcome on %s %s: %s", request.method, request.url.path, exc.message)
    elif exc.status_code >= 500:
        logger.warning("Shipping error on %s %s (%s): %s", request.method, request.url.path, type(exc).__name__, exc.message)
    else:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(),
        headers=get_cors_headers(request),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Validation error: %s", exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": jsonable_errors(exc),
            "message": "Validation error: Please check your request format"
        },
        headers=get_cors_headers(request)
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [{"loc": list(e.get("loc", ())), "msg": str(e.get("msg", "")), "type": e.get("type")} for e in exc.errors()]


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTPException and ensure CORS headers are sent"""
    headers = get_cors_headers(request)
    if exc.headers:
        headers.update(exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.IS_DEVELOPMENT else "An error occurred"
        },
        headers=get_cors_headers(request)
    )


cors_kwargs = {
    "allow_origins": settings.ALLOWED_ORIGINS,
    "allow_credentials": True,
    "allow_methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    "allow_headers": ["*"],
    "expose_headers": ["*"],
}
cors_regex = settings.CORS_ORIGIN_REGEX
if cors_regex:
    cors_kwargs["allow_origin_regex"] = cors_regex

app.add_middleware(CORSMiddleware, **cors_kwargs)
logger.info("CORS configured for %d origin(s)%s", len(settings.ALLOWED_ORIGINS), f" + regex {cors_regex}" if cors_regex else "")

register_routes(app, settings)


@app.get("/health")
@app.get("/api/health")
async def health():
    """Health check endpoint. Includes DB connectivity check."""
    db_status = "ok"
    try:
        from sqlalchemy import text
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check DB ping failed: %s", e)
        db_status = "error"
    return {
        "status": "healthy" if db_status == "ok" else "degraded",
        "service": "shipping",
        "db": db_status,
        "environment": settings.ENV,
        "production": settings.IS_PRODUCTION,
        "trackingPoller": settings.TRACKING_POLL_ENABLED,
    }


@app.on_event("startup")
async def startup_tracking_poll() -> None:
    """Start the periodic tracking poll when TRACKING_POLL_ENABLED is set."""
    if not settings.TRACKING_POLL_ENABLED:
        logger.info("Tracking poller disabled (TRACKING_POLL_ENABLED not set)")
        return
    asyncio.create_task(tracking_poll_worker(app.state.token_cache))


@app.get("/api")
async def root():
    """API root endpoint"""
    return {
        "message": "Shipment orchestration API",
        "version": "1.0.0",
        "environment": settings.ENV,
        "docs": "/docs" if settings.IS_DEVELOPMENT else "disabled in production"
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.IS_DEVELOPMENT,  # Auto-reload only in development
        log_level=settings.LOG_LEVEL.lower()
    )
