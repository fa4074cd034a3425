"""Domain errors raised by the job and payment services and rendered by the API layer."""

from fastapi import status


class VideoServiceError(Exception):
    """Base error. `code` is the machine-readable signal, `detail` the message shown to the user."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"
    detail = "Request could not be processed."

    def __init__(self, detail: str = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class ValidationError(VideoServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    detail = "Invalid data."


class NotFoundError(VideoServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    detail = "Not found."


class ForbiddenError(VideoServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    detail = "Access denied."


class InsufficientCreditsError(VideoServiceError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "insufficient_credits"
    detail = "Insufficient credits. Buy a credit to generate another video."


class IpAlreadyUsedFreeTierError(VideoServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ip_already_used_free_tier"
    detail = "This device already used its free video. Buy a credit to generate another one."


class VideoNotAvailableError(VideoServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_available"
    detail = "Video is not available yet."


class DuplicatePendingRequestError(VideoServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "duplicate_pending_request"
    detail = "You already have a payment waiting for approval."


class ProviderError(Exception):
    """The video-generation provider rejected a call or could not be reached."""
