"""Per-image enrichment: thumbnail, caption and OCR requested concurrently."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from facefinder.config import ThumbnailConfig
from facefinder.errors import FilesystemError, ServiceError
from facefinder.io_utils import ensure_dir, write_image_bytes
from facefinder.types import ImageRecord, RunOptions

LOGGER = logging.getLogger("facefinder.enrichment")


def thumbnail_path(source: Path, config: ThumbnailConfig) -> Path:
    """<source dir>/<folder_name>/<stem><suffix><ext>"""
    source = Path(source)
    return source.parent / config.folder_name / f"{source.stem}{config.suffix}{source.suffix}"


class Enricher:
    """Runs the enabled enrichment calls for one image and joins them.

    Each call fails independently: a ServiceError (or a thumbnail write
    failure) leaves its field empty and never aborts the image.
    """

    def __init__(self, vision_service, thumbnails: Optional[ThumbnailConfig] = None) -> None:
        self.vision_service = vision_service
        self.thumbnails = thumbnails or ThumbnailConfig()

    async def enrich(self, record: ImageRecord, image: bytes, options: RunOptions) -> ImageRecord:
        tasks: List = []
        if options.thumbnail:
            tasks.append(self._thumbnail(record, image))
        else:
            record.thumbnail = str(record.file_path)
        if options.caption:
            tasks.append(self._caption(record, image))
        if options.ocr:
            tasks.append(self._ocr(record, image))
        if tasks:
            await asyncio.gather(*tasks)
        return record

    async def _thumbnail(self, record: ImageRecord, image: bytes) -> None:
        dest = thumbnail_path(record.file_path, self.thumbnails)
        try:
            payload = await self.vision_service.thumbnail(
                self.thumbnails.width, self.thumbnails.height, image
            )
            await asyncio.to_thread(ensure_dir, dest.parent)
            await asyncio.to_thread(write_image_bytes, dest, payload)
        except (ServiceError, FilesystemError, OSError) as exc:
            LOGGER.warning("Thumbnail failed for %s: %s", record.file_name, exc)
            return
        record.thumbnail = str(dest)

    async def _caption(self, record: ImageRecord, image: bytes) -> None:
        try:
            captions = await self.vision_service.caption(image)
        except ServiceError as exc:
            LOGGER.warning("Caption failed for %s: %s", record.file_name, exc)
            return
        record.caption = captions[0] if captions else ""

    async def _ocr(self, record: ImageRecord, image: bytes) -> None:
        try:
            regions = await self.vision_service.recognize_text(image)
        except ServiceError as exc:
            LOGGER.warning("OCR failed for %s: %s", record.file_name, exc)
            return
        # Only the first line of the first region is kept
        if regions and regions[0]:
            record.ocr_text = " ".join(regions[0][0])
