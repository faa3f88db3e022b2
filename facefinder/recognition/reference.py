"""Reference person life cycle: locate or create, attach faces, train, verify.

A reference subject is stored remotely as a person group containing a single
person. The group identifier is derived from the subject name, so the remote
service is the only durable record of which faces belong to whom: each
persisted face is tagged with the path of the image it came from.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import time
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple

from facefinder.errors import ServiceError, TrainingTimeoutError
from facefinder.io_utils import read_image_bytes
from facefinder.types import (
    PersistedFaceReference,
    ReferenceSubject,
    TrainingStatus,
    VerifyResult,
    source_key,
)

LOGGER = logging.getLogger("facefinder.recognition.reference")

MAX_GROUP_ID_LEN = 64
_INVALID_ID_CHARS = re.compile(r"[^a-z0-9_-]")


def canonical_name(name: str) -> str:
    """Remove all whitespace and casefold."""
    return "".join(name.split()).casefold()


def subject_identifier(name: str, prefix: str = "ff-") -> str:
    """Derive the deterministic person group id for a subject name."""
    canonical = canonical_name(name)
    safe = _INVALID_ID_CHARS.sub("", canonical)
    if not safe:
        # Names without any usable ASCII characters still need a stable id
        safe = hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:16]
    return f"{prefix}{safe}"[:MAX_GROUP_ID_LEN]


class ReferencePersonManager:
    """Owns the single active reference subject.

    ``face_service`` is any object exposing the person-group operations of
    :class:`facefinder.services.face_client.FaceServiceClient`.
    """

    def __init__(
        self,
        face_service,
        poll_interval_s: float = 1.0,
        training_timeout_s: Optional[float] = 300.0,
        group_prefix: str = "ff-",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.face_service = face_service
        self.poll_interval_s = poll_interval_s
        self.training_timeout_s = training_timeout_s
        self.group_prefix = group_prefix
        self._sleep = sleep
        self._clock = clock
        self.active: Optional[ReferenceSubject] = None

    @property
    def is_trained(self) -> bool:
        return self.active is not None and self.active.trained

    def identifier_for(self, name: str) -> str:
        return subject_identifier(name, self.group_prefix)

    async def list_subjects(self) -> List[str]:
        """Display names of every subject created by this tool."""
        groups = await self.face_service.list_groups()
        return sorted(g.name for g in groups if g.group_id.startswith(self.group_prefix))

    async def locate_or_create(self, name: str) -> Optional[ReferenceSubject]:
        """Load the named subject from the service, creating it when absent.

        Returns None (and changes nothing) for a blank name. Any ServiceError
        propagates and leaves no active subject.
        """
        if not name or not name.strip():
            LOGGER.debug("locate_or_create called with blank name; ignoring")
            return None

        display = " ".join(name.split())
        identifier = self.identifier_for(name)
        self.active = None

        group = await self.face_service.get_group(identifier)
        subject = None
        if group is not None:
            subject = await self._load(identifier, group.name or display)
            if subject is None:
                LOGGER.warning(
                    "Subject %s is in an inconsistent state; deleting and recreating it", identifier
                )
                await self.face_service.delete_group(identifier)
        if subject is None:
            subject = await self._create(identifier, display, canonical_name(name))

        self.active = subject
        return subject

    async def _create(self, identifier: str, display: str, person_name: str) -> ReferenceSubject:
        await self.face_service.create_group(identifier, display)
        person = await self.face_service.create_person(identifier, person_name)
        LOGGER.info("Created subject %s (%s)", display, identifier)
        return ReferenceSubject(identifier=identifier, name=display, person_id=person.person_id)

    async def _load(self, identifier: str, display: str) -> Optional[ReferenceSubject]:
        """Rebuild a subject from the service; None marks an invalid remote state."""
        persons = await self.face_service.list_persons(identifier)
        if len(persons) != 1:
            LOGGER.warning("Subject %s holds %d persons, expected 1", identifier, len(persons))
            return None
        person = persons[0]
        if not person.persisted_face_ids:
            LOGGER.warning("Subject %s has no persisted faces", identifier)
            return None

        faces, pruned = await self._resolve_faces(identifier, person.person_id, person.persisted_face_ids)
        subject = ReferenceSubject(
            identifier=identifier, name=display, person_id=person.person_id, faces=faces
        )
        if not faces:
            LOGGER.info("Subject %s lost all of its faces; it must be retrained", identifier)
        elif pruned:
            subject.trained = await self._train(subject)
        else:
            status = await self.face_service.get_training_status(identifier)
            if status is TrainingStatus.SUCCEEDED:
                subject.trained = True
            elif not status.finished and status is not TrainingStatus.NOT_STARTED:
                subject.trained = await self._wait_for_training(identifier)
        LOGGER.info(
            "Located subject %s (%s): %d faces, trained=%s",
            display,
            identifier,
            len(subject.faces),
            subject.trained,
        )
        return subject

    async def _resolve_faces(
        self, identifier: str, person_id: str, face_ids: Iterable[str]
    ) -> Tuple[List[PersistedFaceReference], int]:
        """Map persisted faces back to their source files, dropping stale ones."""
        faces: List[PersistedFaceReference] = []
        pruned = 0
        for face_id in face_ids:
            tag = await self.face_service.get_face_user_data(identifier, person_id, face_id)
            if not tag:
                faces.append(PersistedFaceReference(face_id=face_id))
                continue
            path = Path(tag)
            if path.exists():
                faces.append(PersistedFaceReference(face_id=face_id, source_path=path))
                continue
            LOGGER.warning("Source image %s no longer exists; deleting face %s", path, face_id)
            await self.face_service.delete_face(identifier, person_id, face_id)
            pruned += 1
        return faces, pruned

    async def attach_faces(
        self, subject: Optional[ReferenceSubject], image_paths: Iterable[Path]
    ) -> bool:
        """Add each new image as a persisted face, then retrain if anything was added.

        Paths already attached to the subject are skipped. Returns whether the
        subject is trained afterwards. If the service rejects an image, the
        faces added before it are trained and a ServiceError naming the
        rejected file is raised.
        """
        if subject is None:
            LOGGER.debug("attach_faces called without a subject; ignoring")
            return False
        known = subject.source_paths
        added = 0
        for raw_path in image_paths:
            key = source_key(raw_path)
            if key in known:
                LOGGER.debug("Face from %s already attached to %s", key, subject.identifier)
                continue
            image = await asyncio.to_thread(read_image_bytes, Path(key))
            try:
                face_id = await self.face_service.add_face(
                    subject.identifier, subject.person_id, image, key
                )
            except ServiceError as exc:
                LOGGER.error("Could not attach %s to %s: %s", Path(key).name, subject.identifier, exc)
                if added:
                    subject.trained = await self._train(subject)
                raise ServiceError(
                    exc.operation,
                    f"{Path(key).name}: {exc.message}",
                    status_code=exc.status_code,
                    code=exc.code,
                ) from exc
            subject.faces.append(PersistedFaceReference(face_id=face_id, source_path=Path(key)))
            known.add(key)
            added += 1
            LOGGER.info("Attached %s to %s as face %s", Path(key).name, subject.identifier, face_id)

        if added:
            subject.trained = await self._train(subject)
        return subject.trained

    async def _train(self, subject: ReferenceSubject) -> bool:
        if not subject.faces:
            return False
        await self.face_service.train(subject.identifier)
        return await self._wait_for_training(subject.identifier)

    async def _wait_for_training(self, identifier: str) -> bool:
        deadline = None
        if self.training_timeout_s is not None:
            deadline = self._clock() + self.training_timeout_s
        polls = 0
        while True:
            status = await self.face_service.get_training_status(identifier)
            polls += 1
            LOGGER.debug("Training %s: %s (poll %d)", identifier, status.value, polls)
            if status.finished:
                break
            if deadline is not None and self._clock() >= deadline:
                raise TrainingTimeoutError(
                    "persongroup.training",
                    f"Training of {identifier} still {status.value} after {self.training_timeout_s:g}s",
                )
            await self._sleep(self.poll_interval_s)
        LOGGER.info("Training %s finished: %s", identifier, status.value)
        return status is TrainingStatus.SUCCEEDED

    async def verify(
        self, face_id: str, subject: Optional[ReferenceSubject] = None
    ) -> VerifyResult:
        """Check a detected face against the subject; fails closed."""
        subject = subject if subject is not None else self.active
        if not face_id or subject is None or not subject.trained:
            return VerifyResult(is_match=False)
        return await self.face_service.verify(face_id, subject.person_id, subject.identifier)

    async def delete_subject(self, identifier: str) -> None:
        """Delete the subject and all of its persisted faces."""
        if not identifier:
            return
        await self.face_service.delete_group(identifier)
        LOGGER.info("Deleted subject %s", identifier)
        if self.active is not None and self.active.identifier == identifier:
            self.active = None
