import base64, io, logging
from typing import Optional
from PIL import Image, UnidentifiedImageError
from .errors import InvalidImageError
from .models import RawImage

logger = logging.getLogger(__name__)

_FORMAT_MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}

def load_image(data: bytes, declared_mime: Optional[str] = None) -> RawImage:
    """Identify an uploaded image and pin its MIME type to what the bytes actually are."""
    if not data:
        raise InvalidImageError("empty upload")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            fmt = img.format
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        logger.error(f"Rejected upload that is not a readable image: {e}")
        raise InvalidImageError("not a readable image") from e

    mime_type = _FORMAT_MIME_TYPES.get(fmt or "")
    if not mime_type:
        raise InvalidImageError(f"unsupported image format: {fmt}")
    if declared_mime and declared_mime != mime_type:
        logger.info(f"Declared type {declared_mime} does not match detected {mime_type}, using detected")
    return RawImage(data=data, mime_type=mime_type)

def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")

def to_data_url(image: RawImage) -> str:
    return f"data:{image.mime_type};base64,{to_base64(image.data)}"
