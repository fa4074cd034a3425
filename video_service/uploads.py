"""Local-disk object store for uploaded photos, plus the reference dance video."""

import logging
import os
import uuid

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse

from . import schemas
from .auth import get_current_user
from .config import Settings, get_settings
from .models import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Uploads"])

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}

CHUNK_SIZE = 1024 * 1024


class UploadTooLarge(Exception):
    pass


def put_image(upload: UploadFile, settings: Settings) -> dict:
    """
    Writes the upload under UPLOAD_DIR with a random name and returns where
    it lives. Raises UploadTooLarge past MAX_UPLOAD_BYTES (nothing is kept).
    """
    os.makedirs(settings.upload_dir, exist_ok=True)

    ext = os.path.splitext(upload.filename or "")[1].lower()
    if ext not in CONTENT_TYPES:
        ext = ALLOWED_IMAGE_TYPES[upload.content_type]
    filename = f"{uuid.uuid4()}{ext}"
    path = os.path.join(settings.upload_dir, filename)

    size = 0
    try:
        with open(path, "wb") as out:
            while True:
                chunk = upload.file.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > settings.max_upload_bytes:
                    raise UploadTooLarge()
                out.write(chunk)
    except Exception:
        if os.path.exists(path):
            os.remove(path)
        raise

    return {
        "object_path": f"/uploads/{filename}",
        "filename": filename,
        "original_name": upload.filename,
        "size": size,
    }


def resolve_upload(filename: str, settings: Settings) -> str:
    """Absolute path of a stored upload. Anything that is not a plain file name is rejected."""
    if not filename or filename != os.path.basename(filename) or filename.startswith("."):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "File not found")
    path = os.path.join(settings.upload_dir, filename)
    if not os.path.isfile(path):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "File not found")
    return path


@router.post("/uploads/image", response_model=schemas.UploadResponse, status_code=status.HTTP_201_CREATED)
def upload_image(
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    """Stores a JPG/PNG/WebP photo (max 10 MB by default) for a later POST /jobs."""
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Unsupported file type. Use JPG, PNG or WebP.")

    try:
        stored = put_image(file, settings)
    except UploadTooLarge:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Image is too large.")
    except OSError as e:
        logger.error(f"Upload error for user {user.id}: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Upload failed.")

    logger.info(f"User {user.id} uploaded {stored['filename']} ({stored['size']} bytes)")
    return stored


@router.get("/uploads/{filename}")
def get_upload(filename: str, settings: Settings = Depends(get_settings)):
    path = resolve_upload(filename, settings)
    ext = os.path.splitext(filename)[1].lower()
    return FileResponse(path, media_type=CONTENT_TYPES.get(ext, "application/octet-stream"))


@router.get("/reference-video")
def get_reference_video(settings: Settings = Depends(get_settings)):
    """Motion reference the provider animates the photo with."""
    if not os.path.isfile(settings.reference_video_path):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Reference video not found")
    return FileResponse(
        settings.reference_video_path,
        media_type="video/mp4",
        headers={"Cache-Control": "public, max-age=86400"},
    )
