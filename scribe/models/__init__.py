from .user import User, UserRole
from .post import Post, PostStatus
from .post_revision import PostRevision
from .media import Media

__all__ = [
    "User",
    "UserRole",
    "Post",
    "PostStatus",
    "PostRevision",
    "Media",
]
