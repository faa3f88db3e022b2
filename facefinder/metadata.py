"""Image metadata (date taken, title) read with Pillow."""

from __future__ import annotations

import logging
from pathlib import Path

from PIL import Image, UnidentifiedImageError

LOGGER = logging.getLogger("facefinder.metadata")

# EXIF tag ids
TAG_DATETIME = 0x0132
TAG_IMAGE_DESCRIPTION = 0x010E
TAG_XP_TITLE = 0x9C9B
TAG_EXIF_IFD = 0x8769
TAG_DATETIME_ORIGINAL = 0x9003


def _decode_xp(value) -> str:
    # XP* tags are UTF-16LE byte sequences
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-16-le", errors="ignore").rstrip("\x00")
    if isinstance(value, (list, tuple)):
        return bytes(value).decode("utf-16-le", errors="ignore").rstrip("\x00")
    return str(value)


def read_metadata(path: Path) -> str:
    """Return "<date taken> <title>" for an image, or "" when unavailable."""
    try:
        with Image.open(path) as image:
            exif = image.getexif()
    except (OSError, UnidentifiedImageError) as exc:
        LOGGER.debug("No metadata for %s: %s", path, exc)
        return ""

    date_taken = exif.get_ifd(TAG_EXIF_IFD).get(TAG_DATETIME_ORIGINAL) or exif.get(TAG_DATETIME) or ""
    title = exif.get(TAG_IMAGE_DESCRIPTION) or ""
    if not title and TAG_XP_TITLE in exif:
        title = _decode_xp(exif[TAG_XP_TITLE])
    return f"{str(date_taken).strip()} {str(title).strip()}".strip()
