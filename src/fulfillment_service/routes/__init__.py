"""API routers."""

from __future__ import annotations

from fastapi import APIRouter

from .fulfillment import router as fulfillment_router
from .inventory import router as inventory_router

api_router = APIRouter()

api_router.include_router(fulfillment_router)
api_router.include_router(inventory_router)


@api_router.get("/api/status", tags=["monitoring"], summary="API status endpoint")
async def status() -> dict[str, str]:
    return {"status": "ok"}


__all__ = ["api_router"]
