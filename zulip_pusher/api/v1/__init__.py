from fastapi import APIRouter

from .subscriptions import router as subscriptions_router
from .system import router as system_router

# Served at the root: browsers and the app call these paths directly.
v1_router = APIRouter()
v1_router.include_router(system_router)
v1_router.include_router(subscriptions_router)

__all__ = ["v1_router"]
