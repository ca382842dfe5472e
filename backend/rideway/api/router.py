from fastapi import APIRouter

from rideway.api.auth import router as auth_router
from rideway.api.health import router as health_router
from rideway.api.navigation import router as navigation_router
from rideway.api.presence import router as presence_router

api_router = APIRouter()

# Include sub-routers
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router)
api_router.include_router(navigation_router)
api_router.include_router(presence_router)
