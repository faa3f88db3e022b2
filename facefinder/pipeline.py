"""Batch pipeline: detect, filter, verify and enrich images one file at a time."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional, Sequence

from facefinder.errors import FaceFinderError, FilesystemError, ServiceError
from facefinder.filtering import filter_faces
from facefinder.io_utils import read_image_bytes
from facefinder.metadata import read_metadata
from facefinder.types import (
    DetectedFace,
    ImageRecord,
    RunCounters,
    RunOptions,
    SearchCriteria,
    VerifyResult,
)

LOGGER = logging.getLogger("facefinder.pipeline")


class CancellationToken:
    """Cooperative cancellation flag, safe to set from another thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ResultSink:
    """Receives live updates from a run. The default implementation ignores them."""

    def on_counters(self, counters: RunCounters) -> None:
        pass

    def on_record(self, record: ImageRecord) -> None:
        pass

    def on_error(self, message: str, file_name: str) -> None:
        pass


@dataclass
class RunError:
    file_name: str
    message: str
    exception: FaceFinderError


@dataclass
class RunResult:
    records: List[ImageRecord] = field(default_factory=list)
    counters: RunCounters = field(default_factory=RunCounters)
    error: Optional[RunError] = None
    cancelled: bool = False


class FaceFinderPipeline:
    """Drives a file list through detection, filtering, verification and enrichment.

    Files are processed strictly in order, one at a time. A detection,
    verification or file read failure stops the whole run; records produced
    before the failure are kept and the error is reported to the sink.
    """

    def __init__(
        self,
        detector,
        enricher=None,
        person_manager=None,
        sink: Optional[ResultSink] = None,
        metadata_reader: Callable[[Path], str] = read_metadata,
    ) -> None:
        self.detector = detector
        self.enricher = enricher
        self.person_manager = person_manager
        self.sink = sink or ResultSink()
        self.metadata_reader = metadata_reader
        self.counters = RunCounters()
        self.error: Optional[RunError] = None
        self.cancelled = False

    async def run(
        self,
        files: Sequence[Path],
        criteria: SearchCriteria,
        options: RunOptions,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[ImageRecord]:
        """Yield qualifying ImageRecords in file order."""
        self.counters = RunCounters()
        self.error = None
        self.cancelled = False
        if not files:
            LOGGER.debug("No files to process")
            return

        LOGGER.info("Starting run over %d files", len(files))
        produced = 0
        for path in files:
            path = Path(path)
            if cancel is not None and cancel.cancelled:
                LOGGER.info("Run cancelled after %d files", self.counters.processed)
                self.cancelled = True
                return

            self._bump("processed")
            try:
                record = await self._process(path, criteria, options)
            except (ServiceError, FilesystemError) as exc:
                LOGGER.error("Run stopped at %s: %s", path.name, exc)
                self.error = RunError(file_name=path.name, message=str(exc), exception=exc)
                self.sink.on_error(str(exc), path.name)
                return
            if record is None:
                continue

            produced += 1
            if options.match_person:
                self.counters.matched = produced
                self.sink.on_counters(self.counters)
            self.sink.on_record(record)
            yield record

        LOGGER.info("Run finished: %s", self.counters.to_dict())

    async def collect(
        self,
        files: Sequence[Path],
        criteria: SearchCriteria,
        options: RunOptions,
        cancel: Optional[CancellationToken] = None,
    ) -> RunResult:
        """Run to completion and return the records with the final state."""
        records = [record async for record in self.run(files, criteria, options, cancel)]
        return RunResult(
            records=records, counters=self.counters, error=self.error, cancelled=self.cancelled
        )

    def _bump(self, counter: str) -> None:
        setattr(self.counters, counter, getattr(self.counters, counter) + 1)
        self.sink.on_counters(self.counters)

    async def _process(
        self, path: Path, criteria: SearchCriteria, options: RunOptions
    ) -> Optional[ImageRecord]:
        image = await asyncio.to_thread(read_image_bytes, path)
        faces = await self.detector.detect(image)
        if not faces:
            LOGGER.debug("%s: no faces", path.name)
            return None

        self._bump("searched")
        result = filter_faces(faces, criteria)
        if not result.accepted:
            LOGGER.debug("%s: %d faces, none match criteria", path.name, len(faces))
            return None

        record = ImageRecord.from_path(path, attributes=result.summary)
        if options.metadata:
            record.metadata = await asyncio.to_thread(self.metadata_reader, path)
        self._bump("qualifying")

        if options.match_person and self.person_manager is not None and self.person_manager.is_trained:
            verdict = await self._verify(result.matched_faces)
            record.confidence = verdict.confidence
            if not verdict.is_match:
                LOGGER.debug("%s: no face matches %s", path.name, self.person_manager.active.name)
                return None

        if self.enricher is not None:
            await self.enricher.enrich(record, image, options)
        else:
            record.thumbnail = str(path)
        return record

    async def _verify(self, faces: Sequence[DetectedFace]) -> VerifyResult:
        """First matching face wins; otherwise report the best confidence seen."""
        best = 0.0
        for face in faces:
            verdict = await self.person_manager.verify(face.face_id)
            if verdict.is_match:
                return verdict
            best = max(best, verdict.confidence)
        return VerifyResult(is_match=False, confidence=best)
