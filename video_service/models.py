"""SQLAlchemy ORM models: users, generated videos, payment requests and free usage by IP."""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class VideoStatus(str, enum.Enum):
    """Lifecycle of a generation job. COMPLETED and FAILED are terminal."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (VideoStatus.COMPLETED, VideoStatus.FAILED)


ACTIVE_STATUSES = (VideoStatus.PENDING, VideoStatus.PROCESSING)


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"


class User(Base):
    """
    Registered user. `credits` is the number of videos the user may still
    generate; new accounts start with the single free credit.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)

    # Never negative: decremented only through a conditional UPDATE (credits > 0).
    credits = Column(Integer, nullable=False, default=1)

    email_verified = Column(Boolean, nullable=False, default=False)
    email_verification_token = Column(String(128), nullable=True, index=True)
    email_verification_expires = Column(DateTime(timezone=True), nullable=True)

    is_admin = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    videos = relationship("GeneratedVideo", back_populates="user")
    payment_requests = relationship("PaymentRequest", back_populates="user")


class GeneratedVideo(Base):
    """One video-generation attempt (a job)."""
    __tablename__ = "generated_videos"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    source_image_path = Column(Text, nullable=False)

    # Set if and only if status == COMPLETED.
    generated_video_url = Column(Text, nullable=True)

    status = Column(SQLEnum(VideoStatus), nullable=False, default=VideoStatus.PENDING, index=True)
    external_request_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="videos")


class PaymentRequest(Base):
    """A user's claim of having paid via PIX, waiting for manual approval."""
    __tablename__ = "payment_requests"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(String(20), nullable=False)
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)
    approval_token = Column(String(128), unique=True, index=True, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(String(255), nullable=True)

    user = relationship("User", back_populates="payment_requests")


class FreeVideoUsage(Base):
    """Marks an IP address as having consumed a free generation. Never mutated."""
    __tablename__ = "free_video_usage"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    ip_address = Column(String(64), nullable=False, index=True)
    used_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
