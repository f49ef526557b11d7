"""
Authentication and profile API endpoints.

This module provides REST API endpoints for:
- User registration (with default categories and tags)
- Login
- Reading and updating the current user's profile and preferences
- Password change
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

import schemas
import taxonomy
from database import atomic, get_db
from errors import ConflictError
from models import User
from auth.security import hash_password, verify_password, create_access_token
from auth.dependencies import get_current_user
from time_utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

NON_NULLABLE_PROFILE_FIELDS = ("name", "preferences")


# Request/Response schemas
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: schemas.User


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=100)


def issue_token(user: User) -> str:
    return create_access_token({"sub": str(user.id)})


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new user account.

    The user row and the default categories and tags are created in one
    transaction.

    Raises:
        ConflictError: email already registered
    """
    email = request.email.lower()
    logger.info(f"Registration attempt for email: {email}")

    existing_user = db.query(User).filter(User.email == email).first()
    if existing_user:
        logger.info(f"Registration failed: email already exists: {email}")
        raise ConflictError("Email already registered")

    new_user = User(
        name=request.name,
        email=email,
        password_hash=hash_password(request.password),
        last_active_at=utc_now(),
    )
    with atomic(db):
        db.add(new_user)
        db.flush()
        taxonomy.seed_defaults(db, new_user.id)

    db.refresh(new_user)
    logger.info(f"User registered successfully: {new_user.email} (ID: {new_user.id})")
    return {"access_token": issue_token(new_user), "user": new_user}


@router.post("/login", response_model=TokenResponse)
def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Login with email and password.

    Raises:
        HTTPException: 401 if credentials invalid, 403 if user inactive
    """
    email = request.email.lower()
    logger.info(f"Login attempt for email: {email}")

    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(request.password, user.password_hash):
        logger.info(f"Login failed for email: {email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not user.is_active:
        logger.info(f"Login failed: inactive user: {email}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    user.last_active_at = utc_now()
    db.commit()
    db.refresh(user)

    logger.info(f"User logged in: {user.email}")
    return {"access_token": issue_token(user), "user": user}


@router.get("/me", response_model=schemas.User)
def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/me", response_model=schemas.User)
def update_me(
    update: schemas.UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update name, avatar or preferences of the current user."""
    update_data = update.model_dump(exclude_unset=True)
    # avatar may be cleared; name and preferences may not
    for key in NON_NULLABLE_PROFILE_FIELDS:
        if key in update_data and update_data[key] is None:
            update_data.pop(key)
    for key, value in update_data.items():
        setattr(current_user, key, value)

    db.commit()
    db.refresh(current_user)

    logger.info(f"User {current_user.id} updated fields: {sorted(update_data)}")
    return current_user


@router.put("/password")
def change_password(
    request: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not verify_password(request.current_password, current_user.password_hash):
        logger.info(f"Password change rejected for user {current_user.id}: wrong current password")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Current password is incorrect",
        )

    current_user.password_hash = hash_password(request.new_password)
    db.commit()

    logger.info(f"Password changed for user {current_user.id}")
    return {"message": "Password updated"}
