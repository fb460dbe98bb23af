"""
Media routes for image uploads.
"""
import uuid
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import get_required_user
from ..config import get_settings
from ..database import get_db, isoformat
from ..dependencies import get_upload_dir
from ..logging_config import api_logger
from ..models.media import Media
from ..models.user import User
from ..responses import InternalError, ValidationError

settings = get_settings()

router = APIRouter(prefix="/api/media", tags=["media"])

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
ALLOWED_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
CHUNK_SIZE = 64 * 1024


def media_to_dict(media: Media) -> dict:
    """Convert a Media model to a dictionary response."""
    return {
        "id": media.id,
        "name": media.name,
        "filename": media.filename,
        "url": media.url,
        "mimetype": media.mime_type,
        "size": media.size,
        "created_at": isoformat(media.created_at),
    }


def _save_upload(image: UploadFile, destination: Path, max_bytes: int) -> int:
    """Stream the upload to disk, aborting once it exceeds ``max_bytes``."""
    written = 0
    with destination.open("wb") as out:
        while True:
            chunk = image.file.read(CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                raise ValidationError.for_field(
                    "image", f"File exceeds the {max_bytes // (1024 * 1024)}MB limit"
                )
            out.write(chunk)
    return written


@router.post("/upload", status_code=status.HTTP_201_CREATED)
def upload_media(
    image: Optional[UploadFile] = File(None),
    upload_dir: Path = Depends(get_upload_dir),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Upload an image (multipart field `image`)."""
    if image is None or not image.filename:
        raise ValidationError.for_field("image", "No file uploaded")

    extension = Path(image.filename).suffix.lower()
    mime_type = (image.content_type or "").lower()
    if extension not in ALLOWED_EXTENSIONS or mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError.for_field("image", "Only images are allowed (jpeg, jpg, png, gif, webp)")

    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{uuid.uuid4()}{extension}"
    destination = upload_dir / filename

    # The file on disk and its Media row are kept or discarded together
    try:
        size = _save_upload(image, destination, settings.max_upload_bytes)
        media = Media(
            user_id=current_user.id,
            name=image.filename,
            filename=filename,
            url=f"{settings.base_url.rstrip('/')}/uploads/{filename}",
            size=size,
            mime_type=mime_type,
        )
        db.add(media)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        destination.unlink(missing_ok=True)
        api_logger.error("Failed to record upload", error=e, filename=filename)
        raise InternalError("Could not save upload") from e
    except Exception:
        destination.unlink(missing_ok=True)
        raise

    db.refresh(media)

    api_logger.info("Media uploaded", media_id=media.id, user_id=current_user.id, size=size)
    return {"message": "File uploaded successfully", **media_to_dict(media)}


@router.get("", response_model=List[dict])
def get_media(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Get all uploads for the current user."""
    media_items = (
        db.query(Media)
        .filter(Media.user_id == current_user.id)
        .order_by(Media.created_at.desc(), Media.id.desc())
        .all()
    )
    return [media_to_dict(m) for m in media_items]
