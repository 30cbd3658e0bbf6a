"""MFS Quote Engine - API Routers"""
from .quotes import router as quotes_router
from .rates import router as rates_router
from .admin import router as admin_router

__all__ = [
    "quotes_router",
    "rates_router",
    "admin_router",
]
