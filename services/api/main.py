"""
ConstructionPro Document Service - Backend API
FastAPI over SQLite (SQLAlchemy Core): documents, revisions, annotations.

Run server:
uvicorn main:app --host 0.0.0.0 --port 8000
"""
import contextvars
import logging
import os
import time
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adapters.base import StorageAdapter
from adapters.sqlite import SqliteAdapter
from core.access import Caller
from core.auth import resolve_caller
from settings import get_settings

# ========== Request Context for Tracing ==========
request_id_var = contextvars.ContextVar('request_id', default=None)
request_start_time_var = contextvars.ContextVar('request_start_time', default=None)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = get_settings()


# ---- DI helpers (used by routers/*) ----
def get_storage_adapter(request: Request) -> StorageAdapter:
    return request.app.state.storage


def get_caller(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    storage=Depends(get_storage_adapter),
) -> Caller:
    return resolve_caller(storage, x_user_id, settings.admin_role)


def build_storage_adapter() -> SqliteAdapter:
    return SqliteAdapter.from_url(
        settings.db_url,
        restricted_category=settings.restricted_category,
        recent_revisions_limit=settings.recent_revisions_limit,
        caller_cache_ttl=settings.caller_cache_ttl,
    )


# ============================================================================
# FASTAPI APP
# ============================================================================

app = FastAPI(
    title="ConstructionPro Document Service",
    description="Documents, revisions and annotations with restricted-category visibility",
    version="1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)


# ========== Request Tracing Middleware ==========
@app.middleware("http")
async def request_tracing_middleware(request, call_next):
    """Add request_id and timing to all requests."""
    request_id = str(uuid.uuid4())[:8]
    request_id_var.set(request_id)
    request_start_time_var.set(time.time())

    response = await call_next(request)

    latency = time.time() - request_start_time_var.get()
    logger.info(
        f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} "
        f"({round(latency * 1000, 2)} ms)"
    )

    response.headers["X-Request-ID"] = request_id
    return response


# ========== Rate Limiting ==========

# Rate limit storage: {ip: {"METHOD:path": [timestamps]}}
rate_limit_storage = defaultdict(lambda: defaultdict(list))

RATE_LIMIT_EXEMPT = ["/health", "/healthz", "/readyz", "/docs", "/redoc", "/openapi.json"]


def check_rate_limit(ip: str, method: str, path: str) -> tuple[bool, int]:
    """
    Sliding one-minute window per client and endpoint.
    Returns: (is_allowed, retry_after_seconds)
    """
    limit = settings.rate_limit_read if method == "GET" else settings.rate_limit_write

    now = datetime.now()
    one_minute_ago = now - timedelta(minutes=1)

    key = f"{method}:{path}"
    rate_limit_storage[ip][key] = [
        ts for ts in rate_limit_storage[ip][key]
        if ts > one_minute_ago
    ]

    if len(rate_limit_storage[ip][key]) >= limit:
        # seconds until the oldest request leaves the window
        oldest = min(rate_limit_storage[ip][key])
        retry_after = int((oldest - one_minute_ago).total_seconds()) + 1
        return False, retry_after

    rate_limit_storage[ip][key].append(now)
    return True, 0


@app.middleware("http")
async def rate_limiting_middleware(request, call_next):
    """Rate limiting middleware - prevents abuse."""
    if request.url.path in RATE_LIMIT_EXEMPT:
        return await call_next(request)

    client_ip = request.client.host if request.client else "unknown"
    allowed, retry_after = check_rate_limit(client_ip, request.method, request.url.path)

    if not allowed:
        logger.warning(f"Rate limit exceeded for {client_ip} on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "detail": "Rate limit exceeded",
                "retry_after_seconds": retry_after
            },
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Remaining": "0",
            }
        )

    return await call_next(request)


ALLOWED_ORIGINS = settings.get_origins_list()

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


# ============================================================================
# ENDPOINTS
# ============================================================================
@app.get("/health")
async def health_check(storage=Depends(get_storage_adapter)):
    """Health check endpoint"""
    try:
        storage.ping()
        return {"status": "healthy", "backend": "sqlite", "version": "1.0"}
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "backend": "sqlite"}
        )


@app.get("/healthz")
async def healthz():
    """
    Liveness probe: is the process alive and responding?
    """
    return {
        "status": "ok",
        "timestamp": time.time(),
        "version": "1.0"
    }


@app.get("/readyz")
async def readyz(storage=Depends(get_storage_adapter)):
    """
    Readiness probe: can the database answer a query?
    Returns 200 if ready, 503 if not ready.
    """
    try:
        storage.ping()
        return {"status": "ready", "backend": "sqlite", "timestamp": time.time()}
    except Exception as e:
        logger.error(f"Readiness check failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "backend": "sqlite", "timestamp": time.time()}
        )


@app.get("/")
async def root():
    return {
        "service": "ConstructionPro Document Service",
        "docs": "/docs",
        "health": "/health",
    }


from routers import documents as documents_router
app.include_router(documents_router.router)

from routers import revisions as revisions_router
app.include_router(revisions_router.router)

from routers import annotations as annotations_router
app.include_router(annotations_router.router)


@app.on_event("startup")
async def startup_event():
    if not hasattr(app.state, "storage"):
        app.state.storage = build_storage_adapter()
    logger.info("ConstructionPro Document Service starting up...")
    logger.info(f"Database: {settings.db_url.split('://')[0]}")
    logger.info(f"Restricted category: {settings.restricted_category}")
    logger.info(f"Allowed origins: {ALLOWED_ORIGINS}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("ConstructionPro Document Service shutting down...")
    storage = getattr(app.state, "storage", None)
    if storage is not None:
        storage.engine.dispose()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run("main:app", host="0.0.0.0", port=port)
