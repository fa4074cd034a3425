"""
Video generation job lifecycle.

    pending --(submission accepted)------------------> processing
    pending --(submission rejected/throws)-----------> failed  [credit refunded]
    processing --(provider: succeeded + output)------> completed
    processing --(provider: failed/error)------------> failed
    processing --(provider: running/unrecognized)----> processing

create_job() answers the request; submit_job() runs afterwards as a
background task; get_job() reconciles against the provider on every read.
"""

import logging
from typing import List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool
from prometheus_client import Counter
from sqlalchemy.orm import Session, sessionmaker

from . import storage
from .config import Settings
from .errors import (
    NotFoundError,
    ForbiddenError,
    InsufficientCreditsError,
    IpAlreadyUsedFreeTierError,
    ValidationError,
    VideoNotAvailableError,
    ProviderError,
)
from .models import GeneratedVideo, User, VideoStatus

logger = logging.getLogger(__name__)

JOBS_CREATED = Counter("video_jobs_created_total", "Generation jobs accepted", ["free_credit"])
SUBMISSIONS_FAILED = Counter("video_submissions_failed_total", "Provider submissions that failed and were refunded")
JOBS_RECONCILED = Counter("video_jobs_reconciled_total", "Status changes applied from provider polls", ["status"])


def is_free_credit(db: Session, user: User) -> bool:
    """The user's only credit is the one granted at sign-up."""
    if user.credits != 1:
        return False
    if storage.count_billable_videos(db, user.id) > 0:
        return False
    return not storage.has_approved_payment(db, user.id)


def create_job(
    db: Session,
    user_id: str,
    image_path: Optional[str],
    client_ip: Optional[str],
    settings: Settings,
) -> Tuple[GeneratedVideo, bool]:
    """
    Runs the gating checks in order and, if they pass, deducts one credit and
    inserts a pending job in a single transaction.
    Returns the job and whether it consumed the free credit.
    """
    user = storage.get_user(db, user_id)
    if not user:
        raise NotFoundError("User not found.")

    if user.credits <= 0:
        logger.info(f"Job denied for user {user_id}: no credits.")
        raise InsufficientCreditsError()

    free_credit = is_free_credit(db, user)
    if free_credit and client_ip:
        usage = storage.find_recent_free_usage(db, client_ip, settings.free_video_ip_window_days)
        if usage:
            logger.warning(f"Job denied for user {user_id}: IP {client_ip} already used a free video (user {usage.user_id}).")
            raise IpAlreadyUsedFreeTierError()

    if not image_path or not image_path.strip():
        raise ValidationError("Image path is required.")

    try:
        if not storage.deduct_credit(db, user_id):
            # Another request spent the last credit between the read and the update.
            raise InsufficientCreditsError()
        video = storage.create_video(db, user_id, image_path.strip(), client_ip)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(video)
    JOBS_CREATED.labels(free_credit=str(free_credit).lower()).inc()
    logger.info(f"Job {video.id} created for user {user_id} (free credit: {free_credit}).")
    return video, free_credit


async def submit_job(
    session_factory: sessionmaker,
    provider,
    video_id: str,
    user_id: str,
    image_path: str,
    free_credit_ip: Optional[str] = None,
):
    """
    Background continuation of create_job. Sends the job to the provider and
    stores the request id. Any failure refunds the credit and fails the job
    in the same commit. A job that is no longer active is not submitted.
    Database work runs in the threadpool. Never raises.
    """
    db = session_factory()
    try:
        try:
            if not await run_in_threadpool(_mark_processing, db, video_id):
                logger.warning(f"Job {video_id} is no longer active; not submitting it.")
                return

            request_id = await provider.submit(image_path)

            await run_in_threadpool(_record_submission, db, video_id, user_id, request_id, free_credit_ip)
            logger.info(f"Job {video_id} submitted to provider as {request_id}.")
        except Exception as exc:
            await run_in_threadpool(db.rollback)
            message = str(exc) if isinstance(exc, ProviderError) and str(exc) else "Could not start video generation."
            logger.error(f"Submission failed for job {video_id}: {exc}", exc_info=not isinstance(exc, ProviderError))
            await run_in_threadpool(fail_and_refund, db, video_id, user_id, message)
    finally:
        await run_in_threadpool(db.close)


def _mark_processing(db: Session, video_id: str) -> bool:
    changed = storage.update_active_video(db, video_id, status=VideoStatus.PROCESSING)
    db.commit()
    return changed


def _record_submission(db: Session, video_id: str, user_id: str, request_id: str, free_credit_ip: Optional[str]):
    storage.update_active_video(
        db, video_id, external_request_id=request_id, status=VideoStatus.PROCESSING
    )
    if free_credit_ip:
        storage.record_free_video_usage(db, user_id, free_credit_ip)
    db.commit()


def fail_and_refund(db: Session, video_id: str, user_id: str, error_message: str) -> bool:
    """
    Marks an active job failed and gives the credit back, both or neither.
    Returns False (and changes nothing) if the job already reached a terminal state.
    """
    try:
        if not storage.update_active_video(
            db, video_id, status=VideoStatus.FAILED, error_message=error_message, generated_video_url=None
        ):
            db.rollback()
            logger.warning(f"Job {video_id} was already terminal; no refund issued.")
            return False
        storage.add_credit(db, user_id)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.critical(f"Could not fail/refund job {video_id} for user {user_id}: {exc}", exc_info=True)
        return False

    SUBMISSIONS_FAILED.inc()
    logger.info(f"Job {video_id} failed; credit refunded to user {user_id}.")
    return True


def _check_access(video: Optional[GeneratedVideo], requester: User) -> GeneratedVideo:
    if not video:
        raise NotFoundError("Video not found.")
    if video.user_id != requester.id and not requester.is_admin:
        raise ForbiddenError()
    return video


async def get_job(db: Session, video_id: str, requester: User, provider) -> GeneratedVideo:
    """
    Returns the job to its owner or an admin. Active jobs with a provider id
    are refreshed from the provider first; provider errors are logged and
    the stored state is returned.
    """
    video = _check_access(storage.get_video(db, video_id), requester)

    if video.status.is_terminal or not video.external_request_id:
        return video

    try:
        result = await provider.check_status(video.external_request_id)
    except ProviderError as exc:
        logger.warning(f"Status check failed for job {video.id}: {exc}")
        return video

    if result.status is None or result.status == video.status:
        return video

    values = {"status": result.status, "generated_video_url": None, "error_message": None}
    if result.status == VideoStatus.COMPLETED:
        values["generated_video_url"] = result.video_url
    elif result.status == VideoStatus.FAILED:
        values["error_message"] = result.error

    try:
        changed = storage.update_active_video(db, video.id, **values)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if changed:
        JOBS_RECONCILED.labels(status=result.status.value).inc()
        logger.info(f"Job {video.id} moved to {result.status.value}.")
    db.refresh(video)
    return video


def list_jobs(db: Session, user_id: str) -> List[GeneratedVideo]:
    return storage.list_videos_by_user(db, user_id)


def get_public_job(db: Session, video_id: str) -> GeneratedVideo:
    video = storage.get_video(db, video_id)
    if not video:
        raise NotFoundError("Video not found.")
    if video.status != VideoStatus.COMPLETED:
        raise VideoNotAvailableError()
    return video
