"""
🧭 StudioPass • API v1 Router Aggregator
========================================

Exports the **combined `router`** (ready to include) and a `build_v1_router()`
factory for custom mount points.

Quick usage
-----------
    from app.api.v1.routers import router as v1_router
    app.include_router(v1_router, prefix="/api/v1")

Security notes
--------------
- 🔐 This layer is a pure aggregator; **auth & rate limits live in child routers**.
- 🧊 Child routers set `no-store` on every credential-bearing response.
"""

from fastapi import APIRouter

from .media import router as media_router


def build_v1_router() -> APIRouter:
    """
    Compose the API v1 surface into a single `APIRouter`.

    Returns
    -------
    fastapi.APIRouter
        A router that includes the media access endpoints (no extra prefix).
    """
    r = APIRouter()
    r.include_router(media_router)
    return r


router = build_v1_router()

__all__ = ["router", "build_v1_router", "media_router"]
