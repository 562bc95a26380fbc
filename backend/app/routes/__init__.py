"""API routes."""

from .auth import router as auth_router
from .chat import router as chat_router
from .lca import router as lca_router
from .memory import router as memory_router
from .projects import router as projects_router

__all__ = [
    "auth_router",
    "chat_router",
    "lca_router",
    "memory_router",
    "projects_router",
]
