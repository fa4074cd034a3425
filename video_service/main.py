"""FastAPI service: dancing-video jobs, credit gate with manual PIX approval, and sharing."""

import html
import logging
import os
import time
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, status, Request, BackgroundTasks
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, JSONResponse, HTMLResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from sqlalchemy.orm import Session

from . import jobs, payments, schemas, storage
from .auth import router as auth_router, get_current_user, get_current_admin
from .config import Settings, get_settings
from .db import engine, Base, get_db, get_session_factory
from .errors import VideoServiceError
from .models import User
from .notifications import send_payment_notification
from .uploads import router as uploads_router
from .utils import get_client_ip
from .wavespeed import get_video_provider, close_video_provider

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Video Service - Jogadinha",
    description="Turns a photo into a dancing video, with credits, manual PIX approval and public sharing.",
    version="1.0.0"
)

origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(uploads_router)


@app.on_event("startup")
def startup_event():
    """Creates tables if they do not exist."""
    if engine is None:
        logger.critical("No database engine available. The service will answer 503.")
        return
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables verified/created.")
    except Exception as e:
        logger.error(f"Error initializing database: {e}", exc_info=True)


@app.on_event("shutdown")
async def shutdown_event():
    await close_video_provider()
    logger.info("Video provider HTTP client closed.")


# --- Prometheus metrics ---
REQUEST_COUNT = Counter("video_requests_total", "Total requests", ["method", "endpoint", "status_code"])
REQUEST_LATENCY = Histogram("video_request_latency_seconds", "Request latency", ["endpoint"])


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start_time = time.time()
    response = None
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as exc:
        logger.error(f"Unhandled exception during request processing: {exc}", exc_info=True)
        response = JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
    finally:
        latency = time.time() - start_time
        # Route template keeps ids out of the label values.
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        final_status_code = getattr(response, 'status_code', status_code)
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)
        REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status_code=final_status_code).inc()
    return response


# --- Exception handlers ---

@app.exception_handler(VideoServiceError)
async def video_service_error_handler(request: Request, exc: VideoServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid data."
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"{location}: {errors[0].get('msg')}" if location else errors[0].get("msg", message)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": message, "code": "validation_error"})


# --- Health & metrics ---

@app.get("/metrics", tags=["Monitoring"])
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", tags=["Monitoring"])
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check failed - database error: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Database connection error")
    return {"status": "ok", "service": "video_service", "database": "ok"}


# --- Jobs ---

@app.post("/jobs", response_model=schemas.JobResponse, status_code=status.HTTP_201_CREATED, tags=["Jobs"])
def create_job(
    request: Request,
    background_tasks: BackgroundTasks,
    job_in: Optional[schemas.JobCreate] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    provider=Depends(get_video_provider),
    session_factory=Depends(get_session_factory),
):
    """
    Spends one credit and queues the photo for generation. Answers right
    away with the pending job; submission to the provider happens after
    the response. Poll GET /jobs/{id} for progress.
    """
    client_ip = get_client_ip(request, settings.trust_proxy)
    image_path = job_in.image_path if job_in else None

    video, free_credit = jobs.create_job(db, user.id, image_path, client_ip, settings)

    background_tasks.add_task(
        jobs.submit_job,
        session_factory,
        provider,
        video.id,
        user.id,
        video.source_image_path,
        client_ip if free_credit else None,
    )
    return video


@app.get("/jobs", response_model=List[schemas.JobResponse], tags=["Jobs"])
def list_my_jobs(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return jobs.list_jobs(db, user.id)


@app.get("/jobs/public/{job_id}", response_model=schemas.PublicJobResponse, tags=["Jobs"])
def get_public_job(job_id: str, db: Session = Depends(get_db)):
    """Shareable view of a finished video. No authentication."""
    return jobs.get_public_job(db, job_id)


@app.get("/jobs/{job_id}", response_model=schemas.JobResponse, tags=["Jobs"])
async def get_job(
    job_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    provider=Depends(get_video_provider),
):
    return await jobs.get_job(db, job_id, user, provider)


# --- Credits & payments ---

@app.get("/user/credits", response_model=schemas.CreditsResponse, tags=["Payments"])
def get_my_credits(user: User = Depends(get_current_user)):
    return {"credits": user.credits}


@app.get("/pix-info", response_model=schemas.PixInfo, tags=["Payments"])
def get_pix_info(user: User = Depends(get_current_user), settings: Settings = Depends(get_settings)):
    return payments.pix_info(settings)


@app.post("/payment-requests", response_model=schemas.PaymentRequestResponse, status_code=status.HTTP_201_CREATED, tags=["Payments"])
def create_payment_request(
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """The user says "I paid". An admin is notified by email with a one-click approval link."""
    payment = payments.request_payment(db, user, settings)

    full_name = " ".join(part for part in (user.first_name, user.last_name) if part)
    background_tasks.add_task(
        send_payment_notification,
        settings,
        full_name,
        user.email,
        payment.amount,
        payment.approval_token,
    )
    return payment


@app.get("/payment-requests/pending", response_model=schemas.PendingPaymentResponse, tags=["Payments"])
def get_my_pending_payment(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    pending = payments.get_pending_for_user(db, user.id)
    return {"has_pending": pending is not None, "pending": pending}


@app.post("/payment-requests/{request_id}/approve", response_model=schemas.PaymentRequestResponse, tags=["Admin"])
def approve_payment_request(
    request_id: str,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return payments.approve_payment_by_id(db, request_id, admin)


# --- Admin ---

def _approval_page(title: str, message: str, color: str, status_code: int = 200) -> HTMLResponse:
    page = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body style="font-family: -apple-system, sans-serif; background: #0a0a0a; color: white; text-align: center; padding: 48px;">
  <h1 style="color: {color};">{html.escape(title)}</h1>
  <p>{html.escape(message)}</p>
</body>
</html>"""
    return HTMLResponse(content=page, status_code=status_code)


@app.get("/admin/quick-approve/{token}", response_class=HTMLResponse, tags=["Admin"])
def quick_approve(token: str, db: Session = Depends(get_db)):
    """One-click approval from the admin email. The token is the credential; clicking twice is safe."""
    try:
        payment, already_approved = payments.approve_payment_by_token(db, token)
    except VideoServiceError:
        return _approval_page("Invalid link", "This approval link is not valid.", "#E30613", status_code=404)

    owner = storage.get_user(db, payment.user_id)
    who = owner.email if owner else payment.user_id
    if already_approved:
        return _approval_page("Already approved", f"The payment from {who} was already approved.", "#eab308")
    return _approval_page("Payment approved", f"1 credit was added for {who}.", "#22c55e")


@app.get("/admin/payment-requests", response_model=List[schemas.PaymentRequestWithUser], tags=["Admin"])
def list_pending_payment_requests(admin: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return payments.list_pending_requests(db)


@app.get("/admin/users", response_model=List[schemas.UserResponse], tags=["Admin"])
def list_users(admin: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return storage.list_users(db)


@app.post("/admin/users/{user_id}/credits", response_model=schemas.UserResponse, tags=["Admin"])
def set_user_credits(
    user_id: str,
    update_in: schemas.CreditsUpdate,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    logger.info(f"Admin {admin.email} setting credits of {user_id} to {update_in.credits}")
    return payments.set_credits(db, user_id, update_in.credits)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("video_service.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
