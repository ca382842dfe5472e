from typing import Any

from fastapi import APIRouter, Request

from rideway.config import get_settings

router = APIRouter()
settings = get_settings()


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/health/ready")
async def readiness_check(request: Request) -> dict[str, Any]:
    registry = request.app.state.session_registry
    return {
        "status": "healthy",
        "checks": {
            "sessions": len(registry),
            "presence": "configured" if registry.channel_factory else "disabled",
            "cookie_mode": settings.get_cookie_mode(),
        },
    }
