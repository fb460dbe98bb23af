from .auth import UserCreate, UserLogin, UserResponse, AuthResponse
from .posts import PostCreate, PostUpdate, PostSchedule

__all__ = [
    "UserCreate", "UserLogin", "UserResponse", "AuthResponse",
    "PostCreate", "PostUpdate", "PostSchedule",
]
