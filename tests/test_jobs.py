# tests/test_jobs.py
import asyncio
from datetime import timedelta

from conftest import register_and_login, user_id_of, credits_of, create_job, count_rows
from video_service import jobs, storage
from video_service.errors import ProviderError
from video_service.models import User, GeneratedVideo, FreeVideoUsage, VideoStatus, utcnow
from video_service.wavespeed import StatusResult


# --- Creation & gating ---

def test_create_job_spends_free_credit(client, user_headers, provider, session_factory):
    """A new user creates a job: pending in the response, submitted right after."""
    response = create_job(client, user_headers, ip="10.0.0.1")
    assert response.status_code == 201, response.text
    job = response.json()
    assert job["status"] == "pending"
    assert job["generated_video_url"] is None
    assert job["source_image_path"] == "/uploads/photo.jpg"

    assert credits_of(client, user_headers) == 0
    assert provider.submitted == ["/uploads/photo.jpg"]

    r_get = client.get(f"/jobs/{job['id']}", headers=user_headers)
    assert r_get.status_code == 200
    assert r_get.json()["status"] == "processing"
    assert r_get.json()["external_request_id"] == "req-1"

    assert count_rows(session_factory, FreeVideoUsage, ip_address="10.0.0.1") == 1


def test_zero_credits_is_payment_required(client, user_headers, session_factory):
    assert create_job(client, user_headers).status_code == 201
    user_id = user_id_of(client, user_headers)
    jobs_before = count_rows(session_factory, GeneratedVideo, user_id=user_id)

    response = create_job(client, user_headers, ip="10.0.0.99")
    assert response.status_code == 402
    assert response.json()["code"] == "insufficient_credits"

    assert credits_of(client, user_headers) == 0
    assert count_rows(session_factory, GeneratedVideo, user_id=user_id) == jobs_before


def test_credit_check_runs_before_input_validation(client, user_headers):
    assert create_job(client, user_headers).status_code == 201

    response = client.post("/jobs", json={}, headers=user_headers)
    assert response.status_code == 402
    assert response.json()["code"] == "insufficient_credits"


def test_missing_image_path_is_validation_error(client, user_headers, session_factory):
    for body in ({}, {"image_path": ""}, {"image_path": "   "}):
        response = client.post("/jobs", json=body, headers=user_headers)
        assert response.status_code == 400, body
        assert response.json()["code"] == "validation_error"

    # No body at all goes through the same gate.
    response = client.post("/jobs", headers=user_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"

    assert credits_of(client, user_headers) == 1
    assert count_rows(session_factory, GeneratedVideo, user_id=user_id_of(client, user_headers)) == 0


def test_create_job_requires_authentication(client):
    response = client.post("/jobs", json={"image_path": "/uploads/photo.jpg"})
    assert response.status_code == 401


# --- Submission failure & refund ---

def test_submission_failure_refunds_credit(client, user_headers, provider, session_factory):
    """The provider throws: job ends failed, the credit comes back, the IP is not marked."""
    provider.submit_error = ProviderError("WaveSpeed API error: 500")

    response = create_job(client, user_headers, ip="10.0.0.2")
    assert response.status_code == 201

    job = client.get(f"/jobs/{response.json()['id']}", headers=user_headers).json()
    assert job["status"] == "failed"
    assert job["error_message"] == "WaveSpeed API error: 500"
    assert job["generated_video_url"] is None
    assert job["external_request_id"] is None

    assert credits_of(client, user_headers) == 1
    assert count_rows(session_factory, FreeVideoUsage, ip_address="10.0.0.2") == 0


def test_unexpected_submission_error_uses_generic_message(client, user_headers, provider):
    provider.submit_error = RuntimeError("connection pool exploded")

    job_id = create_job(client, user_headers).json()["id"]

    job = client.get(f"/jobs/{job_id}", headers=user_headers).json()
    assert job["status"] == "failed"
    assert job["error_message"] == "Could not start video generation."
    assert credits_of(client, user_headers) == 1


def test_retry_after_refund_is_still_free(client, user_headers, provider, session_factory):
    """A refunded failure does not burn the free credit nor the IP."""
    provider.submit_error = ProviderError("rejected")
    create_job(client, user_headers, ip="10.0.0.3")

    provider.submit_error = None
    response = create_job(client, user_headers, ip="10.0.0.3")
    assert response.status_code == 201
    assert credits_of(client, user_headers) == 0
    assert count_rows(session_factory, FreeVideoUsage, ip_address="10.0.0.3") == 1


# --- Free tier abuse by IP ---

def test_second_account_on_same_ip_is_denied_free_video(client, user_headers, session_factory):
    assert create_job(client, user_headers, ip="10.0.0.4").status_code == 201

    other_headers = register_and_login(client)
    response = create_job(client, other_headers, ip="10.0.0.4")
    assert response.status_code == 403
    assert response.json()["code"] == "ip_already_used_free_tier"

    # Denied without touching anything.
    assert credits_of(client, other_headers) == 1
    assert count_rows(session_factory, GeneratedVideo, user_id=user_id_of(client, other_headers)) == 0

    # Another network is fine.
    assert create_job(client, other_headers, ip="10.0.0.5").status_code == 201


def test_forwarded_for_uses_first_hop(client, user_headers, session_factory):
    response = client.post(
        "/jobs",
        json={"image_path": "/uploads/photo.jpg"},
        headers={**user_headers, "X-Forwarded-For": "203.0.113.7, 10.1.1.1"},
    )
    assert response.status_code == 201
    assert count_rows(session_factory, FreeVideoUsage, ip_address="203.0.113.7") == 1


def test_paid_credit_ignores_ip_gate(client, user_headers, admin_headers):
    """After a purchase the IP history no longer matters."""
    assert create_job(client, user_headers, ip="10.0.0.6").status_code == 201

    payment = client.post("/payment-requests", headers=user_headers).json()
    r_approve = client.post(f"/payment-requests/{payment['id']}/approve", headers=admin_headers)
    assert r_approve.status_code == 200
    assert credits_of(client, user_headers) == 1

    assert create_job(client, user_headers, ip="10.0.0.6").status_code == 201
    assert credits_of(client, user_headers) == 0


def test_admin_granted_credit_to_new_user_is_not_free(client, user_headers, admin_headers):
    """Credits above one are never the free credit."""
    assert create_job(client, user_headers, ip="10.0.0.7").status_code == 201

    other_headers = register_and_login(client)
    other_id = user_id_of(client, other_headers)
    client.post(f"/admin/users/{other_id}/credits", json={"credits": 2}, headers=admin_headers)

    assert create_job(client, other_headers, ip="10.0.0.7").status_code == 201


def _age_free_usage(session_factory, ip, days):
    with session_factory() as db:
        usage = db.query(FreeVideoUsage).filter_by(ip_address=ip).one()
        usage.used_at = utcnow() - timedelta(days=days)
        db.commit()


def test_free_usage_outside_window_is_forgotten(client, user_headers, settings, session_factory):
    assert create_job(client, user_headers, ip="10.0.0.8").status_code == 201
    _age_free_usage(session_factory, "10.0.0.8", settings.free_video_ip_window_days + 1)

    other_headers = register_and_login(client)
    assert create_job(client, other_headers, ip="10.0.0.8").status_code == 201


def test_free_usage_just_inside_window_still_blocks(client, user_headers, settings, session_factory):
    assert create_job(client, user_headers, ip="10.0.0.9").status_code == 201
    _age_free_usage(session_factory, "10.0.0.9", settings.free_video_ip_window_days - 1)

    other_headers = register_and_login(client)
    response = create_job(client, other_headers, ip="10.0.0.9")
    assert response.status_code == 403
    assert response.json()["code"] == "ip_already_used_free_tier"


# --- Reconciliation ---

def test_poll_completes_job(client, user_headers, provider):
    job_id = create_job(client, user_headers).json()["id"]
    provider.statuses["req-1"] = StatusResult(
        status=VideoStatus.COMPLETED, video_url="https://cdn.example.com/out.mp4"
    )

    job = client.get(f"/jobs/{job_id}", headers=user_headers).json()
    assert job["status"] == "completed"
    assert job["generated_video_url"] == "https://cdn.example.com/out.mp4"
    assert job["error_message"] is None

    # Terminal: the provider is not asked again.
    calls = provider.status_calls
    again = client.get(f"/jobs/{job_id}", headers=user_headers).json()
    assert again == job
    assert provider.status_calls == calls


def test_poll_failure_does_not_refund(client, user_headers, provider):
    job_id = create_job(client, user_headers).json()["id"]
    provider.statuses["req-1"] = StatusResult(status=VideoStatus.FAILED, error="No person detected")

    job = client.get(f"/jobs/{job_id}", headers=user_headers).json()
    assert job["status"] == "failed"
    assert job["error_message"] == "No person detected"
    assert job["generated_video_url"] is None
    assert credits_of(client, user_headers) == 0


def test_unrecognized_provider_status_keeps_state(client, user_headers, provider):
    job_id = create_job(client, user_headers).json()["id"]
    provider.statuses["req-1"] = StatusResult(status=None)

    job = client.get(f"/jobs/{job_id}", headers=user_headers).json()
    assert job["status"] == "processing"


def test_status_check_error_returns_last_known_state(client, user_headers, provider):
    job_id = create_job(client, user_headers).json()["id"]
    provider.statuses["req-1"] = ProviderError("timeout")

    response = client.get(f"/jobs/{job_id}", headers=user_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "processing"


def test_reconciliation_is_idempotent(client, user_headers):
    job_id = create_job(client, user_headers).json()["id"]

    first = client.get(f"/jobs/{job_id}", headers=user_headers).json()
    second = client.get(f"/jobs/{job_id}", headers=user_headers).json()
    assert first == second


# --- Access control ---

def test_job_visible_to_owner_and_admin_only(client, user_headers, admin_headers):
    job_id = create_job(client, user_headers).json()["id"]

    stranger_headers = register_and_login(client)
    r_stranger = client.get(f"/jobs/{job_id}", headers=stranger_headers)
    assert r_stranger.status_code == 403
    assert r_stranger.json()["code"] == "forbidden"

    assert client.get(f"/jobs/{job_id}", headers=admin_headers).status_code == 200


def test_unknown_job_is_not_found(client, user_headers):
    response = client.get("/jobs/does-not-exist", headers=user_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_list_jobs_returns_only_own(client, user_headers):
    create_job(client, user_headers)
    other_headers = register_and_login(client)

    assert len(client.get("/jobs", headers=user_headers).json()) == 1
    assert client.get("/jobs", headers=other_headers).json() == []


# --- Public sharing ---

def test_public_view_only_when_completed(client, user_headers, provider):
    job_id = create_job(client, user_headers).json()["id"]

    r_early = client.get(f"/jobs/public/{job_id}")
    assert r_early.status_code == 403
    assert r_early.json()["code"] == "not_available"

    provider.statuses["req-1"] = StatusResult(
        status=VideoStatus.COMPLETED, video_url="https://cdn.example.com/share.mp4"
    )
    client.get(f"/jobs/{job_id}", headers=user_headers)

    r_public = client.get(f"/jobs/public/{job_id}")
    assert r_public.status_code == 200
    public = r_public.json()
    assert set(public) == {"id", "generated_video_url", "status", "created_at"}
    assert public["generated_video_url"] == "https://cdn.example.com/share.mp4"


def test_public_view_unknown_job(client):
    response = client.get("/jobs/public/nope")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


# --- Service level ---

def _make_user(session_factory, credits=1, email="svc@example.com"):
    with session_factory() as db:
        user = User(email=email, hashed_password="x", first_name="Svc", credits=credits)
        db.add(user)
        db.commit()
        return user.id


def test_deduct_credit_never_goes_negative(session_factory):
    user_id = _make_user(session_factory, credits=0)
    with session_factory() as db:
        assert storage.deduct_credit(db, user_id) is False
        db.commit()
        assert storage.get_user(db, user_id).credits == 0


def test_fail_and_refund_skips_terminal_jobs(session_factory):
    user_id = _make_user(session_factory, credits=0)
    with session_factory() as db:
        video = storage.create_video(db, user_id, "/uploads/a.jpg", None)
        video.status = VideoStatus.COMPLETED
        video.generated_video_url = "https://cdn.example.com/a.mp4"
        db.commit()
        video_id = video.id

    with session_factory() as db:
        assert jobs.fail_and_refund(db, video_id, user_id, "late failure") is False

    with session_factory() as db:
        assert storage.get_user(db, user_id).credits == 0
        video = storage.get_video(db, video_id)
        assert video.status == VideoStatus.COMPLETED
        assert video.generated_video_url == "https://cdn.example.com/a.mp4"


def test_submit_job_refunds_exactly_once(session_factory, settings, provider):
    """Two continuations racing on the same failed submission give one credit back."""
    user_id = _make_user(session_factory, credits=1)
    with session_factory() as db:
        video, free_credit = jobs.create_job(db, user_id, "/uploads/b.jpg", "10.9.9.9", settings)
        video_id = video.id
    assert free_credit is True

    provider.submit_error = ProviderError("down")
    asyncio.run(jobs.submit_job(session_factory, provider, video_id, user_id, "/uploads/b.jpg", "10.9.9.9"))
    asyncio.run(jobs.submit_job(session_factory, provider, video_id, user_id, "/uploads/b.jpg", "10.9.9.9"))

    with session_factory() as db:
        assert storage.get_user(db, user_id).credits == 1
        assert storage.get_video(db, video_id).status == VideoStatus.FAILED
    assert count_rows(session_factory, FreeVideoUsage, ip_address="10.9.9.9") == 0


def test_submit_job_skips_jobs_no_longer_active(session_factory, settings, provider):
    user_id = _make_user(session_factory, credits=1)
    with session_factory() as db:
        video, _ = jobs.create_job(db, user_id, "/uploads/c.jpg", None, settings)
        video_id = video.id
    with session_factory() as db:
        assert jobs.fail_and_refund(db, video_id, user_id, "cancelled") is True

    asyncio.run(jobs.submit_job(session_factory, provider, video_id, user_id, "/uploads/c.jpg"))

    assert provider.submitted == []
    with session_factory() as db:
        video = storage.get_video(db, video_id)
        assert video.status == VideoStatus.FAILED
        assert video.external_request_id is None
        assert storage.get_user(db, user_id).credits == 1
