"""Remote service clients (Azure Face and Computer Vision)."""

from facefinder.services.face_client import FaceServiceClient, Person, PersonGroup
from facefinder.services.vision_client import VisionServiceClient

__all__ = ["FaceServiceClient", "Person", "PersonGroup", "VisionServiceClient"]
