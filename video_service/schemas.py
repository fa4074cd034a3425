"""Pydantic models (schemas) for request validation and responses."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictInt

from .models import VideoStatus, PaymentStatus


# --- Users ---

class UserCreate(BaseModel):
    """Data required to create an account."""
    email: EmailStr
    password: str = Field(..., min_length=6, description="At least 6 characters")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)


class UserResponse(BaseModel):
    """Public view of a user (never includes the password hash)."""
    id: str
    email: str
    first_name: str
    last_name: Optional[str] = None
    credits: int
    email_verified: bool
    is_admin: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class CreditsResponse(BaseModel):
    credits: int


class CreditsUpdate(BaseModel):
    # Strict: booleans, floats and numeric strings are rejected, not coerced.
    credits: StrictInt = Field(..., ge=0)


# --- Jobs ---

class JobCreate(BaseModel):
    # Checked by the job service after the credit gates, so it is optional here.
    image_path: Optional[str] = None


class JobResponse(BaseModel):
    id: str
    user_id: str
    source_image_path: str
    generated_video_url: Optional[str] = None
    status: VideoStatus
    external_request_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PublicJobResponse(BaseModel):
    id: str
    generated_video_url: Optional[str] = None
    status: VideoStatus
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- Payments ---

class PaymentRequestResponse(BaseModel):
    id: str
    user_id: str
    amount: str
    status: PaymentStatus
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentRequestWithUser(PaymentRequestResponse):
    user: Optional[UserResponse] = None


class PendingPaymentResponse(BaseModel):
    has_pending: bool
    pending: Optional[PaymentRequestResponse] = None


class PixInfo(BaseModel):
    pix_key: str
    amount: str
    description: str
    pix_code: str


# --- Uploads ---

class UploadResponse(BaseModel):
    object_path: str
    filename: str
    original_name: Optional[str] = None
    size: int
