from fastapi import APIRouter

from laborline.api.routes import health, inbox, labor_requests, monitoring, notifications

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(labor_requests.router, prefix="/labor-requests", tags=["public"])
api_router.include_router(notifications.router, prefix="/labor-requests/notifications", tags=["agency"])
api_router.include_router(inbox.router, prefix="/agencies", tags=["agency"])
api_router.include_router(monitoring.router, prefix="/monitoring", tags=["monitoring"])
