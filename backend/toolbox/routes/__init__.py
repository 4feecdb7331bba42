"""Toolbox Routes"""

from .credits import router as credits_router
from .admin import router as admin_router

__all__ = [
    "credits_router",
    "admin_router",
]
