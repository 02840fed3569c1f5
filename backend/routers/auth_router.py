"""
Authentication and Profile Router

Endpoints for:
- Account registration (creates the clinician profile in the same transaction)
- Login (bearer token)
- Current user and profile
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from datetime import timedelta

from database import get_db, User, Profile
from auth import (
    authenticate_user, create_access_token, get_current_active_user,
    get_password_hash, ACCESS_TOKEN_EXPIRE_MINUTES
)
from models import UserCreate, UserResponse, UserLogin, Token, ProfileResponse, ProfileUpdate
from structured_logging import get_logger, log_security_event

router = APIRouter(tags=["Authentication & Profiles"])
logger = get_logger(__name__)


# =============================================================================
# AUTHENTICATION ENDPOINTS
# =============================================================================

@router.post("/register", response_model=UserResponse)
def register_user(user: UserCreate, db: Session = Depends(get_db)):
    """Register a new clinician account and its profile."""
    db_user = db.query(User).filter(User.username == user.username).first()
    if db_user:
        raise HTTPException(
            status_code=400,
            detail="Username already registered"
        )

    db_user = db.query(User).filter(User.email == user.email).first()
    if db_user:
        raise HTTPException(
            status_code=400,
            detail="Email already registered"
        )

    db_user = User(
        username=user.username,
        email=user.email,
        hashed_password=get_password_hash(user.password),
        full_name=user.full_name,
    )
    db_user.profile = Profile(full_name=user.full_name, role="doctor")
    db.add(db_user)
    db.commit()
    db.refresh(db_user)

    logger.info("User registered", extra={"user_id": db_user.id})
    return db_user


@router.post("/login", response_model=Token)
def login_user(form_data: UserLogin, db: Session = Depends(get_db)):
    """Authenticate user and return access token."""
    user = authenticate_user(db, form_data.username, form_data.password)
    if not user:
        log_security_event("login_failed", "low", details=form_data.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user.username}, expires_delta=access_token_expires
    )
    return {"access_token": access_token, "token_type": "bearer"}


# =============================================================================
# USER PROFILE ENDPOINTS
# =============================================================================

@router.get("/me", response_model=UserResponse)
def read_users_me(current_user: User = Depends(get_current_active_user)):
    """Get current authenticated user."""
    return current_user


def _ensure_profile(db: Session, user: User) -> Profile:
    # Accounts created outside /register may not have one yet
    if user.profile is None:
        user.profile = Profile(full_name=user.full_name, role="doctor")
        db.commit()
        db.refresh(user)
    return user.profile


@router.get("/profile", response_model=ProfileResponse)
def get_profile(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Get the caller's clinician profile."""
    return _ensure_profile(db, current_user)


@router.put("/profile", response_model=ProfileResponse)
def update_profile(
    update: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Update the caller's display name. Role cannot be changed here."""
    profile = _ensure_profile(db, current_user)
    if update.full_name is not None:
        profile.full_name = update.full_name
        db.commit()
        db.refresh(profile)
    return profile
