"""Configuration for the video service, read once from the environment (.env supported)."""

import os
import logging
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load environment variables from .env
load_dotenv()


class Settings:
    """
    Values the service needs at runtime.
    Built once by get_settings() and handed to the components that use them.
    """

    def __init__(self):
        self.app_url: str = os.getenv("APP_URL", "http://localhost:8000").rstrip("/")

        # --- Admin ---
        self.admin_email: Optional[str] = os.getenv("ADMIN_EMAIL")

        # --- Security ---
        self.jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", "")
        self.jwt_algorithm: str = "HS256"
        self.access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))
        self.email_verification_expire_hours: int = int(os.getenv("EMAIL_VERIFICATION_EXPIRE_HOURS", 24))

        # --- Credits / abuse prevention ---
        self.free_video_ip_window_days: int = int(os.getenv("FREE_VIDEO_IP_WINDOW_DAYS", 30))
        self.trust_proxy: bool = os.getenv("TRUST_PROXY", "true").lower() in ("1", "true", "yes")

        # --- WaveSpeed ---
        self.wavespeed_api_url: str = os.getenv("WAVESPEED_API_URL", "https://api.wavespeed.ai/api/v3").rstrip("/")
        self.wavespeed_api_key: Optional[str] = os.getenv("WAVESPEED_API_KEY")
        self.wavespeed_timeout: float = float(os.getenv("WAVESPEED_TIMEOUT", 60))
        self.reference_video_url: Optional[str] = os.getenv("REFERENCE_VIDEO_URL")

        # --- Uploads ---
        self.upload_dir: str = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
        self.reference_video_path: str = os.getenv(
            "REFERENCE_VIDEO_PATH", os.path.join(self.upload_dir, "reference-dance.mp4")
        )
        self.max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))

        # --- Email (Resend) ---
        self.resend_api_key: Optional[str] = os.getenv("RESEND_API_KEY")
        self.resend_api_url: str = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
        self.email_from: str = os.getenv("EMAIL_FROM", "Jogadinha do Paqueta <onboarding@resend.dev>")

        # --- PIX ---
        self.pix_key: str = os.getenv("PIX_KEY", "")
        self.pix_merchant_name: str = os.getenv("PIX_MERCHANT_NAME", "JOGADINHA")
        self.pix_merchant_city: str = os.getenv("PIX_MERCHANT_CITY", "SAO PAULO")
        self.payment_amount: str = os.getenv("PAYMENT_AMOUNT", "5.00")

        self._check()

    def _check(self):
        if not self.jwt_secret_key:
            logger.warning("JWT_SECRET_KEY is not set. Using an insecure default key for development.")
            self.jwt_secret_key = "insecure-development-key-change-me"
        if not self.admin_email:
            logger.warning("ADMIN_EMAIL is not set. No user will be promoted to admin and payment notifications are disabled.")
        if not self.wavespeed_api_key:
            logger.error("WAVESPEED_API_KEY is not set. Video submissions will fail.")
        if not self.pix_key:
            logger.warning("PIX_KEY is not set. /pix-info will return an empty key.")

    @property
    def reference_video_public_url(self) -> str:
        """URL the provider downloads the motion reference from."""
        if self.reference_video_url:
            return self.reference_video_url
        return f"{self.app_url}/reference-video"


@lru_cache()
def get_settings() -> Settings:
    """FastAPI dependency: returns the process-wide Settings instance."""
    return Settings()
