from fastapi import APIRouter

from taproom.api.v1.endpoints import (
    # Counting session flow
    counting,
    # Offline queue & connectivity
    connectivity,
)

api_router = APIRouter(prefix="/api/v1")

# ==================== Counting ====================
api_router.include_router(
    counting.router,
    prefix="/counting",
    tags=["Counting"]
)

# ==================== Connectivity & Offline Queue ====================
api_router.include_router(
    connectivity.router,
    prefix="/connectivity",
    tags=["Connectivity"]
)
