"""Image preprocessing utilities.

Phone cameras produce images far larger than a vision model needs.
The functions in this module apply EXIF orientation and shrink the
longest edge before the image is sent out. Pillow is used as the
imaging backend. Formats Pillow cannot decode (HEIC/HEIF without a
plugin) are passed through untouched with their original MIME type.
"""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)


def prepare_for_model(image_data: bytes, mime_type: str, max_edge: int = 2048) -> Tuple[bytes, str]:
    """Return ``(bytes, mime_type)`` suitable for the vision model.

    Images whose longest edge exceeds ``max_edge`` are rotated upright,
    resized proportionally and re-encoded as JPEG. Anything else,
    including data Pillow cannot open, is returned unchanged.
    """
    try:
        with Image.open(BytesIO(image_data)) as img:
            width, height = img.size
            if max(width, height) <= max_edge:
                return image_data, mime_type
            img = ImageOps.exif_transpose(img)
            img = img.convert("RGB")
            scale = max_edge / float(max(img.size))
            img = img.resize((int(img.width * scale), int(img.height * scale)))
            buf = BytesIO()
            img.save(buf, format="JPEG", quality=90)
            return buf.getvalue(), "image/jpeg"
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.debug("[image] passing %s through unchanged: %s", mime_type, exc)
        return image_data, mime_type
