"""Authentication dependencies and the /auth endpoints (register, login, email verification)."""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from . import schemas, storage
from .config import Settings, get_settings
from .db import get_db
from .models import User
from .notifications import send_verification_email
from .utils import (
    get_password_hash,
    verify_password,
    create_access_token,
    decode_token,
    generate_token,
    as_utc,
)

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

router = APIRouter(prefix="/auth", tags=["Authentication"])


# --- Dependencies ---

def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """Resolves the bearer token to a user. 401 on any problem."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )
    payload = decode_token(token, settings)
    if payload is None or not payload.get("sub"):
        raise credentials_exception

    user = storage.get_user(db, payload["sub"])
    if not user:
        logger.warning(f"Token for unknown user {payload['sub']}.")
        raise credentials_exception
    return user


def get_current_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access only")
    return user


def _start_email_verification(user: User, settings: Settings) -> str:
    token = generate_token()
    user.email_verification_token = token
    user.email_verification_expires = datetime.now(timezone.utc) + timedelta(
        hours=settings.email_verification_expire_hours
    )
    return token


# --- Endpoints ---

@router.post("/register", response_model=schemas.UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_in: schemas.UserCreate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Creates an account with the single free credit and sends the
    verification email. The configured ADMIN_EMAIL registers as admin.
    """
    email = user_in.email.strip().lower()
    logger.info(f"Registration attempt for email: {email}")
    if storage.get_user_by_email(db, email):
        logger.warning(f"Registration failed: email {email} already exists.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    is_admin = bool(settings.admin_email) and email == settings.admin_email.strip().lower()
    new_user = User(
        email=email,
        hashed_password=get_password_hash(user_in.password),
        first_name=user_in.first_name,
        last_name=user_in.last_name,
        is_admin=is_admin,
        credits=1,
    )
    token = _start_email_verification(new_user, settings)

    try:
        db.add(new_user)
        db.commit()
        db.refresh(new_user)
        logger.info(f"User created with ID: {new_user.id} (admin: {is_admin})")
    except Exception as e:
        db.rollback()
        logger.error(f"Database error during user creation for email {email}: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Could not save user.")

    if not await send_verification_email(settings, new_user.email, new_user.first_name, token):
        # The account exists either way; the user can ask for a new link.
        logger.warning(f"User {new_user.id} created, but the verification email was not sent.")

    return new_user


@router.post("/login", response_model=schemas.Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Email (as username) + password via form-data. Returns a bearer JWT."""
    email = form_data.username.strip().lower()
    user = storage.get_user_by_email(db, email)

    if not user or not verify_password(form_data.password, user.hashed_password):
        logger.warning(f"Login failed for user: {email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token({"sub": user.id, "name": user.first_name}, settings)
    logger.info(f"Login successful for user_id: {user.id}")
    return {"access_token": access_token, "token_type": "bearer", "user": user}


@router.get("/me", response_model=schemas.UserResponse)
def read_me(user: User = Depends(get_current_user)):
    return user


@router.get("/verify-email", response_model=schemas.UserResponse)
def verify_email(token: str, db: Session = Depends(get_db)):
    user = storage.get_user_by_verification_token(db, token) if token else None
    if not user:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid verification link")

    if not user.email_verification_expires or as_utc(user.email_verification_expires) < datetime.now(timezone.utc):
        logger.warning(f"Expired verification token for user {user.id}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Verification link expired. Request a new one.")

    user.email_verified = True
    user.email_verification_token = None
    user.email_verification_expires = None
    db.commit()
    db.refresh(user)
    logger.info(f"Email verified for user {user.id}")
    return user


@router.post("/resend-verification", status_code=status.HTTP_202_ACCEPTED)
async def resend_verification(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if user.email_verified:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already verified")

    token = _start_email_verification(user, settings)
    db.commit()

    sent = await send_verification_email(settings, user.email, user.first_name, token)
    return {"sent": sent}
