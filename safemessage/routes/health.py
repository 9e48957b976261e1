"""
Health check endpoint.

Used by:
  - Docker HEALTHCHECK instruction
  - Load balancers / orchestrators
  - Front-end to check API connectivity

Returns status + store connectivity so callers can distinguish between
"API down" and "API up but the key-value store unreachable".
"""

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from safemessage.core.config import settings
from safemessage.core.errors import StoreUnavailable
from safemessage.core.kv import get_store

logger = logging.getLogger(__name__)
router = APIRouter()

API_VERSION = "0.1.0"


class HealthResponse(BaseModel):
    status: str  # Always "ok" if the API process is alive
    version: str
    store: str  # "connected" | "disconnected"
    backend: str  # "memory" | "redis"
    environment: str


@router.get("", response_model=HealthResponse, summary="API health check")
async def health_check() -> HealthResponse:
    """
    Liveness of the API and its store. Always HTTP 200 while the process
    is up, even when the store is unreachable.
    """
    store = get_store()
    store_status = "disconnected"
    try:
        if await store.ping():
            store_status = "connected"
    except StoreUnavailable as exc:
        logger.warning("Store ping failed: %s", exc)

    return HealthResponse(
        status="ok",
        version=API_VERSION,
        store=store_status,
        backend=store.backend,
        environment=settings.environment,
    )
