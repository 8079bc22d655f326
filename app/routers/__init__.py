"""API routers module"""

from app.routers.quota import router as quota_router
from app.routers.subscriptions import router as subscriptions_router
from app.routers.admin import router as admin_router

__all__ = [
    "quota_router",
    "subscriptions_router",
    "admin_router",
]
