"""Azure Computer Vision REST (v3.2) client: thumbnails, captions and OCR."""

from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from facefinder.config import ServiceConfig
from facefinder.services.http import ServiceClient, create_http_client, parsing

LOGGER = logging.getLogger("facefinder.services.vision")

API_ROOT = "/vision/v3.2"

# regions -> lines -> words
OcrRegions = List[List[List[str]]]


class VisionServiceClient(ServiceClient):
    service_name = "vision"

    def __init__(self, http: httpx.AsyncClient, smart_cropping: bool = True) -> None:
        super().__init__(http)
        self.smart_cropping = smart_cropping

    @classmethod
    def from_config(
        cls,
        config: ServiceConfig,
        smart_cropping: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "VisionServiceClient":
        config.require_key(cls.service_name)
        return cls(create_http_client(config, transport=transport), smart_cropping=smart_cropping)

    async def thumbnail(self, width: int, height: int, image: bytes) -> bytes:
        response = await self.request(
            "thumbnail",
            "POST",
            f"{API_ROOT}/generateThumbnail",
            params={
                "width": width,
                "height": height,
                "smartCropping": "true" if self.smart_cropping else "false",
            },
            content=image,
        )
        return response.content

    async def caption(self, image: bytes) -> List[str]:
        """Return candidate captions, best first."""
        body = await self.request_json(
            "describe", "POST", f"{API_ROOT}/describe", params={"maxCandidates": 1}, content=image
        )
        with parsing("describe"):
            captions = ((body or {}).get("description") or {}).get("captions") or []
            ranked = sorted(captions, key=lambda c: float(c.get("confidence") or 0.0), reverse=True)
            return [str(c["text"]) for c in ranked if c.get("text")]

    async def recognize_text(self, image: bytes) -> OcrRegions:
        body = await self.request_json(
            "ocr",
            "POST",
            f"{API_ROOT}/ocr",
            params={"language": "unk", "detectOrientation": "true"},
            content=image,
        )
        with parsing("ocr"):
            return [
                [[str(word["text"]) for word in line.get("words", [])] for line in region.get("lines", [])]
                for region in (body or {}).get("regions", [])
            ]
