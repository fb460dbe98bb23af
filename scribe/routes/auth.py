"""
Authentication routes for registration, login and the current user.
"""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import create_access_token, get_password_hash, get_required_user, verify_password
from ..config import get_settings
from ..database import get_db
from ..limiter import limiter
from ..logging_config import api_logger
from ..models.user import User, UserRole
from ..responses import ConflictError, Unauthorized
from ..schemas.auth import AuthResponse, UserCreate, UserLogin, UserResponse

settings = get_settings()

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _auth_response(user: User) -> AuthResponse:
    return AuthResponse(
        token=create_access_token(user.id, user.role),
        user=UserResponse.model_validate(user),
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("3/minute")
def register(request: Request, user_data: UserCreate, db: Session = Depends(get_db)):
    """Register a new user account and return a token."""
    existing = db.query(User).filter(
        or_(User.email == user_data.email, User.username == user_data.username)
    ).first()
    if existing:
        raise ConflictError("User already exists")

    user = User(
        username=user_data.username,
        email=user_data.email,
        hashed_password=get_password_hash(user_data.password),
        role=user_data.role or UserRole.PUBLIC.value,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    api_logger.info("User registered", user_id=user.id, role=user.role)
    return _auth_response(user)


@router.post("/login", response_model=AuthResponse)
@limiter.limit(settings.login_rate_limit)
def login(request: Request, credentials: UserLogin, db: Session = Depends(get_db)):
    """Login with email and password."""
    user = db.query(User).filter(User.email == credentials.email).first()
    if not user or not user.is_active or not verify_password(credentials.password, user.hashed_password):
        raise Unauthorized("Invalid credentials")

    return _auth_response(user)


@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_required_user)):
    """Get current authenticated user."""
    return current_user
