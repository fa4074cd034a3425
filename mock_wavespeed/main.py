# mock_wavespeed/main.py
import logging
import uuid
from typing import Dict, Optional

from fastapi import FastAPI, Header, HTTPException, status

from . import schemas

logger = logging.getLogger(__name__)

app = FastAPI(title="Mock WaveSpeed")

# request_id -> {"image", "polls", "outcome"}
PREDICTIONS: Dict[str, dict] = {}

# Polls a job spends in "processing" before it settles.
POLLS_UNTIL_DONE = 2


def _check_auth(authorization: Optional[str]):
    if not authorization or not authorization.startswith("Bearer ") or not authorization[7:].strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")


@app.post("/api/v3/kwaivgi/kling-v2.6-pro/motion-control")
def submit_motion_control(payload: schemas.MotionControlRequest, authorization: Optional[str] = Header(None)):
    """
    Simulates a generation submission.
    Images whose URL contains "reject" are refused; "fail" jobs fail while processing;
    "empty" jobs complete without outputs.
    """
    _check_auth(authorization)

    # Rule 1: refused inputs
    if "reject" in payload.image:
        return {"code": 400, "message": "Image rejected by content filter", "data": {}}

    # Rule 2: the motion reference must be reachable over http(s)
    if not payload.video.startswith(("http://", "https://")):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Reference video must be a URL")

    outcome = "completed"
    if "fail" in payload.image:
        outcome = "failed"
    elif "empty" in payload.image:
        outcome = "empty"

    request_id = uuid.uuid4().hex
    PREDICTIONS[request_id] = {"image": payload.image, "polls": 0, "outcome": outcome}
    logger.info(f"Mock WaveSpeed: accepted {request_id} for {payload.image}")

    return {
        "code": 200,
        "message": "success",
        "data": {"id": request_id, "status": "created", "outputs": []},
    }


@app.get("/api/v3/predictions/{request_id}/result")
def get_result(request_id: str, authorization: Optional[str] = Header(None)):
    _check_auth(authorization)

    prediction = PREDICTIONS.get(request_id)
    if prediction is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Prediction not found")

    prediction["polls"] += 1
    data = {"id": request_id, "status": "processing", "outputs": [], "error": ""}

    if prediction["polls"] > POLLS_UNTIL_DONE:
        if prediction["outcome"] == "failed":
            data["status"] = "failed"
            data["error"] = "Could not detect a person in the image"
        elif prediction["outcome"] == "empty":
            data["status"] = "completed"
        else:
            data["status"] = "completed"
            data["outputs"] = [f"https://cdn.mock-wavespeed.local/outputs/{request_id}.mp4"]

    return {"code": 200, "message": "success", "data": data}


@app.get("/health")
def health_check():
    return {"status": "ok", "service": "mock_wavespeed"}
