"""
SafeMessage API — Application entry point.

Bootstraps FastAPI, wires up middleware, registers route groups,
and manages the key-value store lifecycle.

Extension points:
  - Add new route groups with app.include_router() below
  - Add new middleware in the middleware block
  - Change startup behaviour in the lifespan context manager
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from safemessage.core.config import settings
from safemessage.core.errors import StoreUnavailable
from safemessage.core.kv import close_store, connect_store
from safemessage.core.rate_limit import limiter
from safemessage.routes.auth import router as auth_router
from safemessage.routes.health import API_VERSION
from safemessage.routes.health import router as health_router
from safemessage.routes.scan import router as scan_router
from safemessage.routes.usage import router as usage_router
from safemessage.routes.users import router as users_router

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store on startup, close it on shutdown."""
    logger.info("Starting SafeMessage API (env: %s)", settings.environment)
    await connect_store()
    yield
    logger.info("Shutting down SafeMessage API")
    await close_store()


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="SafeMessage API",
    description="Message scam scanning with metered free usage and tiered rate limits.",
    version=API_VERSION,
    lifespan=lifespan,
    # Disable docs in production to reduce attack surface
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# ─── Rate limiting ─────────────────────────────────────────────────────────────
# Per-IP slowapi limiter for the public endpoints. The scan endpoint uses the
# tiered gate instead (services/gate.py).
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ─── Errors ────────────────────────────────────────────────────────────────────
@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.error("Unhandled store failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage temporarily unavailable"},
        headers={"Retry-After": "5"},
    )


# ─── Middleware ─────────────────────────────────────────────────────────────────
# Cookies carry the anonymous id and the session token, so credentials
# must be allowed; restrict allow_origins to the real domains in production.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(auth_router)
app.include_router(usage_router)
app.include_router(users_router)
app.include_router(scan_router)


@app.get("/", tags=["root"])
async def root():
    """API root — basic metadata."""
    return {
        "name": "SafeMessage API",
        "version": API_VERSION,
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs",
    }
