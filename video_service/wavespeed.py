"""Client for the WaveSpeed video-generation API (image + motion reference -> dancing video)."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .config import Settings, get_settings
from .errors import ProviderError
from .models import VideoStatus

logger = logging.getLogger(__name__)

MOTION_CONTROL_MODEL = "kwaivgi/kling-v2.6-pro/motion-control"

# Every provider status we know about. Anything else maps to None: keep the local state.
PROVIDER_STATUS_MAP = {
    "completed": VideoStatus.COMPLETED,
    "succeeded": VideoStatus.COMPLETED,
    "failed": VideoStatus.FAILED,
    "error": VideoStatus.FAILED,
    "processing": VideoStatus.PROCESSING,
    "running": VideoStatus.PROCESSING,
    "created": VideoStatus.PROCESSING,
}


@dataclass
class StatusResult:
    """Provider view of a job, already translated to local terms. status is None when unrecognized."""
    status: Optional[VideoStatus]
    video_url: Optional[str] = None
    error: Optional[str] = None


def map_provider_result(data: dict) -> StatusResult:
    raw_status = (data.get("status") or "").lower()
    status = PROVIDER_STATUS_MAP.get(raw_status)

    if status is None:
        logger.warning(f"Unrecognized provider status '{raw_status}'. Leaving job unchanged.")
        return StatusResult(status=None)

    if status == VideoStatus.COMPLETED:
        outputs = data.get("outputs") or []
        if outputs:
            return StatusResult(status=VideoStatus.COMPLETED, video_url=outputs[0])
        return StatusResult(status=VideoStatus.FAILED, error="No video URL in response")

    if status == VideoStatus.FAILED:
        return StatusResult(status=VideoStatus.FAILED, error=data.get("error") or "Generation failed")

    return StatusResult(status=status)


class WavespeedClient:
    """
    Thin async wrapper over the provider's REST API.
    submit() and check_status() raise ProviderError on any transport or API failure.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.base_url = settings.wavespeed_api_url
        self._client = client or httpx.AsyncClient(timeout=settings.wavespeed_timeout)

    def _headers(self) -> dict:
        if not self.settings.wavespeed_api_key:
            raise ProviderError("WAVESPEED_API_KEY is not configured")
        return {"Authorization": f"Bearer {self.settings.wavespeed_api_key}"}

    def image_url(self, image_path: str) -> str:
        """Absolute URL the provider downloads the uploaded photo from."""
        if image_path.startswith("http://") or image_path.startswith("https://"):
            return image_path
        normalized = image_path if image_path.startswith("/") else f"/{image_path}"
        return f"{self.settings.app_url}{normalized}"

    async def submit(self, image_path: str) -> str:
        """Starts a generation. Returns the provider request id."""
        payload = {
            "image": self.image_url(image_path),
            "video": self.settings.reference_video_public_url,
            "character_orientation": "image",
            "keep_original_sound": True,
        }
        logger.info(f"Submitting video generation for image {payload['image']}")

        try:
            response = await self._client.post(
                f"{self.base_url}/{MOTION_CONTROL_MODEL}",
                json=payload,
                headers=self._headers(),
            )
        except httpx.RequestError as exc:
            logger.error(f"Could not reach WaveSpeed: {exc}")
            raise ProviderError(f"WaveSpeed unreachable: {exc}") from exc

        if response.status_code >= 400:
            logger.error(f"WaveSpeed API error {response.status_code}: {response.text}")
            raise ProviderError(f"WaveSpeed API error: {response.status_code}")

        try:
            result = response.json()
        except ValueError as exc:
            raise ProviderError("WaveSpeed returned a non-JSON response") from exc

        data = result.get("data") or {}
        if result.get("code") != 200 or not data.get("id"):
            logger.error(f"WaveSpeed rejected the submission: {result}")
            raise ProviderError(data.get("error") or result.get("message") or "No request ID returned from WaveSpeed")

        logger.info(f"WaveSpeed accepted request {data['id']}")
        return data["id"]

    async def check_status(self, request_id: str) -> StatusResult:
        try:
            response = await self._client.get(
                f"{self.base_url}/predictions/{request_id}/result",
                headers=self._headers(),
            )
            response.raise_for_status()
            result = response.json()
        except (httpx.RequestError, httpx.HTTPStatusError, ValueError) as exc:
            raise ProviderError(f"WaveSpeed status check failed: {exc}") from exc

        data = result.get("data") or {}
        logger.info(f"Status for {request_id}: {data.get('status')} ({len(data.get('outputs') or [])} outputs)")
        return map_provider_result(data)

    async def aclose(self):
        await self._client.aclose()


_client: Optional[WavespeedClient] = None


def get_video_provider() -> WavespeedClient:
    """FastAPI dependency: one shared client (and connection pool) per process."""
    global _client
    if _client is None:
        _client = WavespeedClient(get_settings())
    return _client


async def close_video_provider():
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
