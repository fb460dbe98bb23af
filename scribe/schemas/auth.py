from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Literal, Optional


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6)
    # ADMIN is never self-assignable
    role: Optional[Literal["AUTHOR", "PUBLIC"]] = None


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    role: str


class AuthResponse(BaseModel):
    token: str
    user: UserResponse
