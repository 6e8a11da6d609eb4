"""
Photo normalization with Pillow.
"""

from __future__ import annotations

import logging

from PIL import Image, UnidentifiedImageError

from cookie_counter.errors import DependencyError

logger = logging.getLogger(__name__)

DEFAULT_MAX_WIDTH = 800
DEFAULT_QUALITY = 80


def normalize_image(
    src_path: str,
    dest_path: str,
    max_width: int = DEFAULT_MAX_WIDTH,
    quality: int = DEFAULT_QUALITY,
) -> tuple[int, int]:
    """
    Re-encodes an image as JPEG, shrinking it to at most ``max_width`` pixels
    wide while keeping its aspect ratio. Smaller images are not enlarged.

    Args:
        src_path (str): Path of the uploaded image.
        dest_path (str): Where to write the JPEG.
        max_width (int): Width limit in pixels.
        quality (int): JPEG quality, 1-95.

    Returns:
        tuple[int, int]: The (width, height) of the written image.

    Raises:
        DependencyError: If the file cannot be decoded or written.
    """
    try:
        with Image.open(src_path) as img:
            img.load()
            if img.width > max_width:
                height = max(1, round(img.height * max_width / img.width))
                img = img.resize((max_width, height), Image.LANCZOS)
            if img.mode != "RGB":
                img = img.convert("RGB")
            img.save(dest_path, format="JPEG", quality=quality)
            size = img.size
    except (OSError, UnidentifiedImageError, ValueError) as exc:
        logger.exception("Image normalization failed for %s", src_path)
        raise DependencyError(f"Could not process image: {exc}") from exc
    return size
