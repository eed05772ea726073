from fastapi import APIRouter, Request

from app.config.settings import settings
from app.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("/")
async def health_check(request: Request):
    """Liveness probe for the API process."""
    return ResponseBuilder.success(
        request=request,
        data={
            "status": "healthy",
            "service": settings.NAME,
            "version": settings.VERSION,
            "pushConfigured": bool(
                settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY
            ),
        },
        message="Service is running",
    )
