"""Utility functions: password hashing, JWT handling, opaque tokens and client IP detection."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Request
from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import Settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Checks a plain password against the stored hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hashes a plain password with bcrypt."""
    return pwd_context.hash(password)


# --- JWT ---

def create_access_token(data: Dict, settings: Settings) -> str:
    """
    Builds a signed JWT from `data` plus an expiration claim.

    Args:
        data: Payload to embed (e.g. {'sub': user_id}).
        settings: Supplies the secret, algorithm and lifetime.

    Returns:
        The encoded JWT string.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> Optional[Dict]:
    """
    Decodes and validates a JWT.

    Returns:
        The payload if the token is valid and not expired, otherwise None.
    """
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.warning(f"Token decoding failed: {e}")
        return None


# --- Opaque tokens ---

def generate_token() -> str:
    return secrets.token_urlsafe(32)


def as_utc(value: datetime) -> datetime:
    """Some drivers hand back naive datetimes; every timestamp we store is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# --- Client IP ---

def get_client_ip(request: Request, trust_proxy: bool = True) -> Optional[str]:
    """
    First hop of X-Forwarded-For when running behind a proxy, otherwise the
    socket peer address. None when neither is known.
    """
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    if request.client and request.client.host:
        return request.client.host
    return None
