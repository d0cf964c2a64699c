"""Decode and validate base64 image data URLs submitted by the browser.

The browser sends the (already resized) photo as a data URL:

    data:image/jpeg;base64,/9j/4AAQSkZJRgABAQ...

The payload is checked for size before decoding, then opened with Pillow so
that only real images reach the upstream provider.
"""

import base64
import binascii
import io
from dataclasses import dataclass, field
from typing import Optional

from PIL import Image, UnidentifiedImageError

from photomesh.errors import ImageTooLargeError, ValidationError

_DATA_URL_PREFIX = "data:image/"

# Pillow format name -> provider file type
_FILE_TYPES = {
    "JPEG": "jpg",
    "PNG": "png",
    "WEBP": "webp",
}


@dataclass(frozen=True)
class ImagePayload:
    """A validated image ready to hand to the provider client."""
    data_url: str = field(repr=False)
    base64_data: str = field(repr=False)
    file_type: str
    width: int
    height: int
    size_bytes: int

    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.base64_data)

    @property
    def mime_type(self) -> str:
        return "image/jpeg" if self.file_type == "jpg" else f"image/{self.file_type}"

    @property
    def filename(self) -> str:
        return f"input.{self.file_type}"


def estimated_size(base64_data: str) -> int:
    """Decoded size of a base64 string without decoding it."""
    return (len(base64_data) * 3) // 4


def parse_data_url(image: Optional[str], max_bytes: int) -> ImagePayload:
    """Validate a data URL and return an ImagePayload.

    Raises:
        ValidationError: missing, malformed or non-image payload
        ImageTooLargeError: decoded size exceeds max_bytes
    """
    if not image or not isinstance(image, str):
        raise ValidationError("Missing or invalid image")

    if not image.startswith(_DATA_URL_PREFIX) or "," not in image:
        raise ValidationError(
            "Image must be a base64 data URL (data:image/...;base64,...)"
        )

    header, base64_data = image.split(",", 1)
    if ";base64" not in header:
        raise ValidationError("Image data URL must be base64 encoded")
    if not base64_data:
        raise ValidationError("Image data URL contains no data")

    size = estimated_size(base64_data)
    if size > max_bytes:
        raise ImageTooLargeError(size, max_bytes)

    try:
        raw = base64.b64decode(base64_data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Image data is not valid base64")

    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.verify()
            fmt = img.format
            width, height = img.size
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValidationError("Image data could not be decoded")

    file_type = _FILE_TYPES.get(fmt or "")
    if file_type is None:
        raise ValidationError(
            f"Unsupported image format '{fmt}'. Use JPG, PNG or WebP"
        )

    return ImagePayload(
        data_url=image,
        base64_data=base64_data,
        file_type=file_type,
        width=width,
        height=height,
        size_bytes=len(raw),
    )
