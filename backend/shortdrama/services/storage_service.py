import logging
import os
import time
import uuid
from typing import Iterable, List, Optional

from fastapi import HTTPException, UploadFile

from shortdrama.core.config import settings
from shortdrama.core.errors import InvalidRequest
from shortdrama.models.all_models import IMAGE_ANGLES

logger = logging.getLogger("storage_service")

PUBLIC_PREFIX = "/uploads"


def require_angle(angle: str) -> str:
    normalized = (angle or "").strip().lower()
    if normalized not in IMAGE_ANGLES:
        raise InvalidRequest(f"Invalid angle '{angle}'. Expected one of: {', '.join(IMAGE_ANGLES)}")
    return normalized


def angle_summary(images: Iterable) -> dict:
    uploaded = {img.angle for img in images}
    return {
        "uploaded_count": len(uploaded),
        "missing_angles": [angle for angle in IMAGE_ANGLES if angle not in uploaded],
    }


def save_angle_image(file: UploadFile, owner_kind: str, owner_id: int, angle: str, upload_dir: Optional[str] = None) -> str:
    """Stream an uploaded image to ``<upload_dir>/<owner_kind>/<owner_id>/`` and return its public path."""
    upload_dir = upload_dir or settings.UPLOAD_DIR
    max_upload_bytes = max(int(settings.MAX_IMAGE_UPLOAD_MB or 10), 1) * 1024 * 1024

    target_dir = os.path.join(upload_dir, owner_kind, str(owner_id))
    os.makedirs(target_dir, exist_ok=True)

    ext = (os.path.splitext(file.filename or "")[1] or ".png").lower()
    filename = f"{angle}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"
    file_path = os.path.join(target_dir, filename)

    bytes_written = 0
    try:
        with open(file_path, "wb") as buffer:
            while True:
                chunk = file.file.read(1024 * 1024)
                if not chunk:
                    break
                bytes_written += len(chunk)
                if bytes_written > max_upload_bytes:
                    raise HTTPException(status_code=413, detail=f"File too large (max {settings.MAX_IMAGE_UPLOAD_MB}MB)")
                buffer.write(chunk)
    except HTTPException:
        if os.path.exists(file_path):
            os.remove(file_path)
        raise

    if bytes_written <= 0:
        os.remove(file_path)
        raise HTTPException(status_code=400, detail="Empty file")

    logger.info(f"[storage] Saved {owner_kind}/{owner_id} angle={angle} ({bytes_written} bytes)")
    return f"{PUBLIC_PREFIX}/{owner_kind}/{owner_id}/{filename}"


def local_path_for(public_path: str, upload_dir: Optional[str] = None) -> Optional[str]:
    if not public_path or not public_path.startswith(f"{PUBLIC_PREFIX}/"):
        return None
    relative = public_path[len(PUBLIC_PREFIX) + 1:]
    return os.path.join(upload_dir or settings.UPLOAD_DIR, relative)


def remove_uploaded_files(public_paths: List[Optional[str]], upload_dir: Optional[str] = None) -> int:
    """Best-effort removal of files under the upload dir. Remote URLs are ignored."""
    removed = 0
    for public_path in public_paths:
        path = local_path_for(public_path or "", upload_dir)
        if not path or not os.path.isfile(path):
            continue
        try:
            os.remove(path)
            removed += 1
        except OSError as e:
            logger.warning(f"[storage] Could not remove {path}: {e}")
    return removed
