# app/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from app.routers import credentials, occupancy, evidence, health
from app.database import create_tables
from app.config import settings
from app.errors import CheckinError, IssuanceError, StorageFailure
from app.utils.logger import get_logger
import time

logger = get_logger(__name__)

app = FastAPI(
    title="Guest Check-in API",
    description="QR credential check-in / check-out with photo evidence.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (mobile app and host dashboard) ─────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to known origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    async def dispatch(self, request: Request, call_next):
        open_paths = {"/api/v1/health", "/docs", "/redoc", "/openapi.json"}
        if request.url.path in open_paths or not settings.API_KEY:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Domain Error Handler ─────────────────────────────────────────────────────
@app.exception_handler(CheckinError)
async def checkin_error_handler(request: Request, exc: CheckinError):
    """
    Validation / transition / rejection errors go back verbatim.
    Infrastructure failures were already logged where they happened; the caller
    only learns the kind.
    """
    if isinstance(exc, (IssuanceError, StorageFailure)):
        logger.error(f"{exc.kind.value} on {request.url.path}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.kind.value, "detail": "Service temporarily unavailable"},
        )
    logger.info(f"{request.method} {request.url.path} rejected: {exc.kind.value} ({exc.detail})")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ── Global Exception Handler ─────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(credentials.router, prefix="/api/v1", tags=["🔑 Credentials"])
app.include_router(occupancy.router,   prefix="/api/v1", tags=["🏠 Check-in / Check-out"])
app.include_router(evidence.router,    prefix="/api/v1", tags=["📷 Evidence"])
app.include_router(health.router,      prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 Check-in Backend starting up...")
    create_tables()
    logger.info("✅ Database tables ready")
    logger.info(f"🌐 Listening on http://{settings.BACKEND_IP}:{settings.BACKEND_PORT}")
    logger.info("📖 API docs at /docs")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 Check-in Backend shutting down...")
