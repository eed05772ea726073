from fastapi import APIRouter

from app.routers.health import health_router
from app.routers.cron import cron_router

main_router = APIRouter()

main_router.include_router(health_router, prefix="/health", tags=["Health Checks"])
main_router.include_router(cron_router, prefix="/cron", tags=["Cron"])
