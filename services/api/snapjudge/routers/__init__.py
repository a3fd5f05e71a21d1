"""
API Routers for Snap Judge.
"""
from .health import router as health_router
from .lobbies import router as lobbies_router

__all__ = ["health_router", "lobbies_router"]
