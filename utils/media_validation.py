"""Validation helpers for inbound receipt images."""

import base64
import binascii
import io

from PIL import Image, UnidentifiedImageError

MIME_BY_FORMAT = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}
DEFAULT_IMAGE_MIME = "image/jpeg"


def decode_image_payload(data: str) -> bytes:
    """Decode a base64 image (optionally a data URL) and validate the result."""
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Invalid base64 image data provided.") from exc
    return ensure_image_bytes(raw)


def ensure_image_bytes(raw: bytes) -> bytes:
    """Return `raw` unchanged if Pillow recognizes it as an image."""
    if not raw:
        raise ValueError("Image payload is empty.")
    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValueError("Decoded bytes are not a supported image format.") from exc
    return raw


def detect_image_mime(raw: bytes) -> str:
    """Return the MIME type of image bytes, falling back to JPEG."""
    try:
        with Image.open(io.BytesIO(raw)) as img:
            return MIME_BY_FORMAT.get(img.format or "", DEFAULT_IMAGE_MIME)
    except (UnidentifiedImageError, OSError):
        return DEFAULT_IMAGE_MIME


def to_image_data_url(raw: bytes) -> str:
    """Convert raw image bytes into a data URL suitable for vision input."""
    encoded = base64.b64encode(raw).decode("utf-8")
    return f"data:{detect_image_mime(raw)};base64,{encoded}"
