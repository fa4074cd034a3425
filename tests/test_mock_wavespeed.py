# tests/test_mock_wavespeed.py
from fastapi.testclient import TestClient

from mock_wavespeed.main import app

client = TestClient(app)
AUTH = {"Authorization": "Bearer any-key"}
SUBMIT_URL = "/api/v3/kwaivgi/kling-v2.6-pro/motion-control"


def _submit(image):
    return client.post(
        SUBMIT_URL,
        json={"image": image, "video": "http://app/reference-video"},
        headers=AUTH,
    )


def _poll(request_id):
    return client.get(f"/api/v3/predictions/{request_id}/result", headers=AUTH).json()["data"]


def test_mock_completes_after_a_few_polls():
    body = _submit("http://app/uploads/ok.png").json()
    assert body["code"] == 200
    request_id = body["data"]["id"]

    assert _poll(request_id)["status"] == "processing"
    assert _poll(request_id)["status"] == "processing"
    done = _poll(request_id)
    assert done["status"] == "completed"
    assert done["outputs"][0].endswith(f"{request_id}.mp4")


def test_mock_failure_and_rejection():
    request_id = _submit("http://app/uploads/fail.png").json()["data"]["id"]
    for _ in range(3):
        data = _poll(request_id)
    assert data["status"] == "failed"
    assert data["error"]

    rejected = _submit("http://app/uploads/reject.png").json()
    assert rejected["code"] == 400
    assert "id" not in rejected["data"]


def test_mock_requires_key():
    response = client.post(SUBMIT_URL, json={"image": "x", "video": "http://app/v"})
    assert response.status_code == 401


def test_mock_unknown_prediction():
    assert client.get("/api/v3/predictions/nope/result", headers=AUTH).status_code == 404


def test_mock_logs_accepted_submissions(caplog):
    with caplog.at_level("INFO", logger="mock_wavespeed.main"):
        request_id = _submit("http://app/uploads/logged.png").json()["data"]["id"]
    assert any(request_id in record.getMessage() for record in caplog.records)
