"""
Persistence access for the video service.

Functions here never commit: the caller (jobs.py / payments.py) owns the
transaction so that paired effects (credit + status) land in one commit.
Credit and status mutations are single conditional UPDATE statements.
"""

from datetime import timedelta
from typing import List, Optional

from sqlalchemy import update, func
from sqlalchemy.orm import Session, joinedload

from .models import (
    User,
    GeneratedVideo,
    PaymentRequest,
    FreeVideoUsage,
    VideoStatus,
    PaymentStatus,
    ACTIVE_STATUSES,
    utcnow,
)


# --- Users ---

def get_user(db: Session, user_id: str) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_user_for_update(db: Session, user_id: str) -> Optional[User]:
    """Loads the user holding a row lock until the end of the transaction."""
    return db.query(User).filter(User.id == user_id).with_for_update().first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


def get_user_by_verification_token(db: Session, token: str) -> Optional[User]:
    return db.query(User).filter(User.email_verification_token == token).first()


def list_users(db: Session) -> List[User]:
    return db.query(User).order_by(User.created_at.desc()).all()


def deduct_credit(db: Session, user_id: str) -> bool:
    """Decrements one credit only if the balance is positive. Returns False when nothing changed."""
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.credits > 0)
        .values(credits=User.credits - 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def add_credit(db: Session, user_id: str) -> bool:
    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(credits=User.credits + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def set_credits(db: Session, user_id: str, credits: int) -> bool:
    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(credits=credits, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# --- Generated videos ---

def get_video(db: Session, video_id: str) -> Optional[GeneratedVideo]:
    return db.query(GeneratedVideo).filter(GeneratedVideo.id == video_id).first()


def list_videos_by_user(db: Session, user_id: str) -> List[GeneratedVideo]:
    return (
        db.query(GeneratedVideo)
        .filter(GeneratedVideo.user_id == user_id)
        .order_by(GeneratedVideo.created_at.desc())
        .all()
    )


def count_billable_videos(db: Session, user_id: str) -> int:
    """Videos that kept their credit, i.e. everything except refunded failures."""
    return (
        db.query(func.count(GeneratedVideo.id))
        .filter(GeneratedVideo.user_id == user_id, GeneratedVideo.status != VideoStatus.FAILED)
        .scalar()
    )


def create_video(db: Session, user_id: str, source_image_path: str, ip_address: Optional[str]) -> GeneratedVideo:
    video = GeneratedVideo(
        user_id=user_id,
        source_image_path=source_image_path,
        status=VideoStatus.PENDING,
        ip_address=ip_address,
    )
    db.add(video)
    db.flush()
    return video


def update_active_video(db: Session, video_id: str, **values) -> bool:
    """
    Updates a video only while it is pending/processing.
    Terminal rows are left untouched and False is returned.
    """
    values["updated_at"] = utcnow()
    result = db.execute(
        update(GeneratedVideo)
        .where(GeneratedVideo.id == video_id, GeneratedVideo.status.in_(ACTIVE_STATUSES))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# --- Payment requests ---

def get_payment_request(db: Session, request_id: str) -> Optional[PaymentRequest]:
    return db.query(PaymentRequest).filter(PaymentRequest.id == request_id).first()


def get_payment_request_by_token(db: Session, token: str) -> Optional[PaymentRequest]:
    return (
        db.query(PaymentRequest)
        .options(joinedload(PaymentRequest.user))
        .filter(PaymentRequest.approval_token == token)
        .first()
    )


def get_pending_payment_for_user(db: Session, user_id: str) -> Optional[PaymentRequest]:
    return (
        db.query(PaymentRequest)
        .filter(PaymentRequest.user_id == user_id, PaymentRequest.status == PaymentStatus.PENDING)
        .first()
    )


def has_approved_payment(db: Session, user_id: str) -> bool:
    return (
        db.query(PaymentRequest.id)
        .filter(PaymentRequest.user_id == user_id, PaymentRequest.status == PaymentStatus.APPROVED)
        .first()
        is not None
    )


def list_pending_payment_requests(db: Session) -> List[PaymentRequest]:
    return (
        db.query(PaymentRequest)
        .options(joinedload(PaymentRequest.user))
        .filter(PaymentRequest.status == PaymentStatus.PENDING)
        .order_by(PaymentRequest.created_at.desc())
        .all()
    )


def create_payment_request(db: Session, user_id: str, amount: str, approval_token: str) -> PaymentRequest:
    payment = PaymentRequest(
        user_id=user_id,
        amount=amount,
        status=PaymentStatus.PENDING,
        approval_token=approval_token,
    )
    db.add(payment)
    db.flush()
    return payment


def mark_payment_approved(db: Session, request_id: str, approved_by: str) -> bool:
    """Flips a pending request to approved. False if it is missing or no longer pending."""
    result = db.execute(
        update(PaymentRequest)
        .where(PaymentRequest.id == request_id, PaymentRequest.status == PaymentStatus.PENDING)
        .values(status=PaymentStatus.APPROVED, approved_at=utcnow(), approved_by=approved_by)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# --- Free usage by IP ---

def find_recent_free_usage(db: Session, ip_address: str, days_back: int) -> Optional[FreeVideoUsage]:
    cutoff = utcnow() - timedelta(days=days_back)
    return (
        db.query(FreeVideoUsage)
        .filter(FreeVideoUsage.ip_address == ip_address, FreeVideoUsage.used_at >= cutoff)
        .first()
    )


def record_free_video_usage(db: Session, user_id: str, ip_address: str) -> FreeVideoUsage:
    usage = FreeVideoUsage(user_id=user_id, ip_address=ip_address)
    db.add(usage)
    db.flush()
    return usage
