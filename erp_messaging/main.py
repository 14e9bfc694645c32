"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from erp_messaging.core.config import settings
from erp_messaging.core.deps import CORRELATION_HEADER
from erp_messaging.core.errors import MessagingError
from erp_messaging.core.presence import PresenceRegistry
from erp_messaging.core.structured_logging import build_log_context, new_correlation_id
from erp_messaging.core.websocket import ConnectionManager
from erp_messaging.db.base import Base
from erp_messaging.db.session import engine

logger = logging.getLogger(__name__)

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from erp_messaging.core.rate_limit import SenderRateLimiter, limiter


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.ENV == "dev":
        import erp_messaging.db.models  # noqa: F401  (register tables)
        Base.metadata.create_all(bind=engine)
    yield


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="ERP Messaging API",
    description="Multi-tenant messaging with retention, legal holds and audited purges",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
)

# Realtime rooms, presence and the per-sender throttle live for the app's lifetime
app.state.connection_manager = ConnectionManager()
app.state.presence = PresenceRegistry(rooms=app.state.connection_manager)
app.state.sender_limiter = SenderRateLimiter(storage_uri=settings.RATE_LIMIT_STORAGE_URI)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Employee-Id", "Idempotency-Key", CORRELATION_HEADER],
    expose_headers=[CORRELATION_HEADER],
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request.state.correlation_id = request.headers.get(CORRELATION_HEADER) or new_correlation_id()
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = request.state.correlation_id
    return response


@app.exception_handler(MessagingError)
async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
    correlation_id = getattr(request.state, "correlation_id", None)
    context = build_log_context(
        empid=request.headers.get("X-Employee-Id"),
        correlation_id=correlation_id,
        route=request.url.path,
        method=request.method,
    )
    if exc.status_code >= 500:
        logger.error("Messaging request failed code=%s", exc.code, extra=context)
    else:
        logger.info("Messaging request rejected code=%s", exc.code, extra=context)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(correlation_id))


# ============================================================================
# Routers
# ============================================================================

from erp_messaging.routers import compliance, messaging

app.include_router(messaging.router)
app.include_router(compliance.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
