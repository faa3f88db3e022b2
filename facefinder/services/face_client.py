"""Azure Face REST (v1.0) client: detection, person groups and verification."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from facefinder.config import ServiceConfig
from facefinder.errors import NotFoundError
from facefinder.services.http import ServiceClient, create_http_client, parsing
from facefinder.types import DetectedFace, Gender, TrainingStatus, VerifyResult

LOGGER = logging.getLogger("facefinder.services.face")

API_ROOT = "/face/v1.0"


@dataclass
class PersonGroup:
    group_id: str
    name: str
    user_data: Optional[str] = None


@dataclass
class Person:
    person_id: str
    name: str
    persisted_face_ids: List[str] = field(default_factory=list)


def _group_path(group_id: str) -> str:
    return f"{API_ROOT}/persongroups/{group_id}"


def _person_path(group_id: str, person_id: str) -> str:
    return f"{_group_path(group_id)}/persons/{person_id}"


def _parse_group(raw: dict) -> PersonGroup:
    return PersonGroup(
        group_id=raw["personGroupId"],
        name=raw.get("name") or raw["personGroupId"],
        user_data=raw.get("userData"),
    )


def _parse_person(raw: dict) -> Person:
    return Person(
        person_id=raw["personId"],
        name=raw.get("name") or "",
        persisted_face_ids=list(raw.get("persistedFaceIds") or []),
    )


def _parse_face(raw: dict) -> DetectedFace:
    attrs = raw.get("faceAttributes") or {}
    age = attrs.get("age")
    return DetectedFace(
        face_id=raw.get("faceId") or "",
        age=None if age is None else float(age),
        gender=Gender.parse(attrs.get("gender")),
    )


class FaceServiceClient(ServiceClient):
    """Detection gateway and person-group service backed by the Face API."""

    service_name = "face"

    @classmethod
    def from_config(
        cls, config: ServiceConfig, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "FaceServiceClient":
        config.require_key(cls.service_name)
        return cls(create_http_client(config, transport=transport))

    async def detect(self, image: bytes) -> List[DetectedFace]:
        """Detect faces and request age and gender attributes."""
        body = await self.request_json(
            "detect",
            "POST",
            f"{API_ROOT}/detect",
            params={
                "returnFaceId": "true",
                "returnFaceLandmarks": "false",
                "returnFaceAttributes": "age,gender",
            },
            content=image,
        )
        with parsing("detect"):
            return [_parse_face(item) for item in body or []]

    async def list_groups(self) -> List[PersonGroup]:
        body = await self.request_json("persongroup.list", "GET", f"{API_ROOT}/persongroups")
        with parsing("persongroup.list"):
            return [_parse_group(item) for item in body or []]

    async def get_group(self, group_id: str) -> Optional[PersonGroup]:
        try:
            body = await self.request_json("persongroup.get", "GET", _group_path(group_id))
        except NotFoundError:
            return None
        with parsing("persongroup.get"):
            return _parse_group(body)

    async def create_group(self, group_id: str, name: str) -> None:
        await self.request(
            "persongroup.create", "PUT", _group_path(group_id), json={"name": name}
        )

    async def delete_group(self, group_id: str) -> None:
        await self.request("persongroup.delete", "DELETE", _group_path(group_id))

    async def list_persons(self, group_id: str) -> List[Person]:
        body = await self.request_json(
            "persongroup.person.list", "GET", f"{_group_path(group_id)}/persons"
        )
        with parsing("persongroup.person.list"):
            return [_parse_person(item) for item in body or []]

    async def create_person(self, group_id: str, name: str) -> Person:
        body = await self.request_json(
            "persongroup.person.create",
            "POST",
            f"{_group_path(group_id)}/persons",
            json={"name": name},
        )
        with parsing("persongroup.person.create"):
            return Person(person_id=body["personId"], name=name)

    async def add_face(self, group_id: str, person_id: str, image: bytes, user_data: str) -> str:
        body = await self.request_json(
            "persongroup.person.addface",
            "POST",
            f"{_person_path(group_id, person_id)}/persistedfaces",
            params={"userData": user_data},
            content=image,
        )
        with parsing("persongroup.person.addface"):
            return body["persistedFaceId"]

    async def get_face_user_data(self, group_id: str, person_id: str, face_id: str) -> Optional[str]:
        body = await self.request_json(
            "persongroup.person.getface",
            "GET",
            f"{_person_path(group_id, person_id)}/persistedfaces/{face_id}",
        )
        with parsing("persongroup.person.getface"):
            return (body or {}).get("userData")

    async def delete_face(self, group_id: str, person_id: str, face_id: str) -> None:
        await self.request(
            "persongroup.person.deleteface",
            "DELETE",
            f"{_person_path(group_id, person_id)}/persistedfaces/{face_id}",
        )

    async def train(self, group_id: str) -> None:
        await self.request("persongroup.train", "POST", f"{_group_path(group_id)}/train")

    async def get_training_status(self, group_id: str) -> TrainingStatus:
        try:
            body = await self.request_json(
                "persongroup.training", "GET", f"{_group_path(group_id)}/training"
            )
        except NotFoundError as exc:
            # PersonGroupNotTrained is reported as a 404
            if exc.code == "PersonGroupNotTrained":
                return TrainingStatus.NOT_STARTED
            raise
        with parsing("persongroup.training"):
            return TrainingStatus.parse((body or {}).get("status"))

    async def verify(self, face_id: str, person_id: str, group_id: str) -> VerifyResult:
        body = await self.request_json(
            "verify",
            "POST",
            f"{API_ROOT}/verify",
            json={"faceId": face_id, "personId": person_id, "personGroupId": group_id},
        )
        with parsing("verify"):
            return VerifyResult(
                is_match=bool(body["isIdentical"]),
                confidence=float(body.get("confidence") or 0.0),
            )
