from .auth import router as auth_router
from .posts import router as posts_router
from .media import router as media_router
from .health import router as health_router

__all__ = [
    "auth_router",
    "posts_router",
    "media_router",
    "health_router",
]
