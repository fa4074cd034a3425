"""
Credit gate: manual PIX payment requests, their approval, and admin credit overrides.

Approval flips the request status and grants the credit in one commit,
for both the admin UI path and the one-click email link.
"""

import logging
import secrets
from typing import List, Optional, Tuple

from prometheus_client import Counter
from sqlalchemy.orm import Session

from . import storage
from .config import Settings
from .errors import NotFoundError, DuplicatePendingRequestError, ValidationError
from .models import PaymentRequest, PaymentStatus, User
from .pix import build_pix_code

logger = logging.getLogger(__name__)

PAYMENTS_REQUESTED = Counter("payment_requests_total", "Payment requests registered by users")
PAYMENTS_APPROVED = Counter("payment_requests_approved_total", "Payment requests approved", ["via"])

EMAIL_LINK_APPROVER = "email-link"


def request_payment(db: Session, user: User, settings: Settings) -> PaymentRequest:
    """
    Registers an "I paid" claim. One pending claim per user; the user row is
    locked while checking so two concurrent clicks cannot both insert.
    """
    try:
        locked_user = storage.get_user_for_update(db, user.id)
        if not locked_user:
            raise NotFoundError("User not found.")

        if storage.get_pending_payment_for_user(db, user.id):
            logger.info(f"Payment request refused for user {user.id}: one is already pending.")
            raise DuplicatePendingRequestError()

        payment = storage.create_payment_request(
            db,
            user_id=user.id,
            amount=settings.payment_amount,
            approval_token=secrets.token_urlsafe(32),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payment)
    PAYMENTS_REQUESTED.inc()
    logger.info(f"Payment request {payment.id} created for user {user.id}.")
    return payment


def _approve(db: Session, payment: PaymentRequest, approved_by: str) -> bool:
    try:
        if not storage.mark_payment_approved(db, payment.id, approved_by):
            db.rollback()
            return False
        storage.add_credit(db, payment.user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(payment)
    return True


def approve_payment_by_id(db: Session, request_id: str, approver: User) -> PaymentRequest:
    """Admin path. A request that is missing or no longer pending is reported as not found."""
    payment = storage.get_payment_request(db, request_id)
    if not payment or payment.status != PaymentStatus.PENDING:
        raise NotFoundError("Payment request not found.")

    if not _approve(db, payment, approved_by=approver.email):
        raise NotFoundError("Payment request not found.")

    PAYMENTS_APPROVED.labels(via="admin").inc()
    logger.info(f"Payment request {payment.id} approved by {approver.email}; credit granted to {payment.user_id}.")
    return payment


def approve_payment_by_token(db: Session, token: str) -> Tuple[PaymentRequest, bool]:
    """
    Email-link path. Returns (request, already_approved). Clicking the link
    again is harmless: no second credit is granted.
    """
    payment = storage.get_payment_request_by_token(db, token)
    if not payment:
        raise NotFoundError("Invalid approval link.")

    if payment.status != PaymentStatus.PENDING:
        return payment, True

    if not _approve(db, payment, approved_by=EMAIL_LINK_APPROVER):
        # Approved by someone else between the read and the update.
        db.refresh(payment)
        return payment, True

    PAYMENTS_APPROVED.labels(via="email").inc()
    logger.info(f"Payment request {payment.id} approved via email link; credit granted to {payment.user_id}.")
    return payment, False


def set_credits(db: Session, user_id: str, credits) -> User:
    """Admin override: sets an absolute balance, bypassing every gate."""
    if isinstance(credits, bool) or not isinstance(credits, int) or credits < 0:
        raise ValidationError("Credits must be a non-negative integer.")

    try:
        if not storage.set_credits(db, user_id, credits):
            raise NotFoundError("User not found.")
        db.commit()
    except Exception:
        db.rollback()
        raise

    user = storage.get_user(db, user_id)
    logger.info(f"Credits for user {user_id} set to {credits}.")
    return user


def get_pending_for_user(db: Session, user_id: str) -> Optional[PaymentRequest]:
    return storage.get_pending_payment_for_user(db, user_id)


def list_pending_requests(db: Session) -> List[PaymentRequest]:
    return storage.list_pending_payment_requests(db)


def pix_info(settings: Settings) -> dict:
    return {
        "pix_key": settings.pix_key,
        "amount": settings.payment_amount,
        "description": "1 dancing video",
        "pix_code": build_pix_code(
            settings.pix_key,
            settings.pix_merchant_name,
            settings.pix_merchant_city,
            amount=settings.payment_amount,
        ),
    }
