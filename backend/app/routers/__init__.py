"""Follow Loop Engine - API Routers"""
from .auth import router as auth_router
from .follow_loop import router as follow_loop_router
from .admin import router as admin_router

__all__ = [
    "auth_router",
    "follow_loop_router",
    "admin_router",
]
