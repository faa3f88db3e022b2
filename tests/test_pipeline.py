from __future__ import annotations

import asyncio
from pathlib import Path

import httpx

from facefinder.config import ServiceConfig, ThumbnailConfig
from facefinder.enrichment import Enricher
from facefinder.errors import ServiceError
from facefinder.pipeline import CancellationToken, FaceFinderPipeline, ResultSink
from facefinder.services.vision_client import VisionServiceClient
from facefinder.types import (
    DetectedFace,
    Gender,
    ImageRecord,
    ReferenceSubject,
    RunOptions,
    SearchCriteria,
    VerifyResult,
)

NO_ENRICHMENT = RunOptions(thumbnail=False)


class _StubDetector:
    """Returns canned faces keyed by the image payload (the file name)."""

    def __init__(self, faces_by_name, on_detect=None):
        self.faces_by_name = faces_by_name
        self.on_detect = on_detect
        self.seen = []

    async def detect(self, image: bytes):
        name = image.decode("utf-8")
        self.seen.append(name)
        if self.on_detect is not None:
            self.on_detect(name)
        result = self.faces_by_name.get(name, [])
        if isinstance(result, Exception):
            raise result
        return result


class _RecordingSink(ResultSink):
    def __init__(self):
        self.records = []
        self.errors = []
        self.snapshots = []

    def on_counters(self, counters):
        self.snapshots.append(counters.to_dict())

    def on_record(self, record):
        self.records.append(record)

    def on_error(self, message, file_name):
        self.errors.append((message, file_name))


class _StubPersonManager:
    def __init__(self, matching, trained=True, failing=()):
        self.matching = set(matching)
        self.failing = set(failing)
        self.active = ReferenceSubject(
            identifier="ff-janedoe", name="Jane Doe", person_id="p1", trained=trained
        )
        self.verified = []

    @property
    def is_trained(self):
        return self.active.trained

    async def verify(self, face_id, subject=None):
        self.verified.append(face_id)
        if face_id in self.failing:
            raise ServiceError("verify", "service unavailable", status_code=503)
        if face_id in self.matching:
            return VerifyResult(is_match=True, confidence=0.88)
        return VerifyResult(is_match=False, confidence=0.2)


class _StubVision:
    def __init__(self, fail_caption=False):
        self.fail_caption = fail_caption

    async def thumbnail(self, width, height, image):
        return b"thumb:" + image

    async def caption(self, image):
        if self.fail_caption:
            raise ServiceError("describe", "service unavailable", status_code=503)
        return ["a person smiling"]

    async def recognize_text(self, image):
        return []


def _files(tmp_path, names):
    paths = []
    for name in names:
        path = tmp_path / name
        path.write_bytes(name.encode("utf-8"))
        paths.append(path)
    return paths


def _face(face_id, age, gender):
    return DetectedFace(face_id=face_id, age=age, gender=gender)


def test_scenario_filters_by_age_and_gender(tmp_path):
    files = _files(tmp_path, ["a.jpg", "b.jpg", "c.jpg"])
    detector = _StubDetector(
        {
            "a.jpg": [_face("fa", 25, Gender.MALE)],
            "c.jpg": [_face("fc", 70, Gender.FEMALE)],
        }
    )
    pipeline = FaceFinderPipeline(detector)
    criteria = SearchCriteria(age_range=(18, 40), male_only=True)

    result = asyncio.run(pipeline.collect(files, criteria, NO_ENRICHMENT))

    assert result.counters.to_dict() == {"processed": 3, "searched": 2, "qualifying": 1, "matched": 0}
    assert [r.file_name for r in result.records] == ["a.jpg"]
    record = result.records[0]
    assert record.file_path == files[0]
    assert record.attributes == "male 25"
    assert record.thumbnail == str(files[0])
    assert result.error is None
    assert not result.cancelled


def test_detection_failure_stops_the_run(tmp_path):
    files = _files(tmp_path, ["a.jpg", "b.jpg", "c.jpg"])
    detector = _StubDetector(
        {
            "a.jpg": [_face("fa", 30, Gender.FEMALE)],
            "b.jpg": ServiceError("detect", "quota exceeded", status_code=429),
            "c.jpg": [_face("fc", 30, Gender.FEMALE)],
        }
    )
    sink = _RecordingSink()
    pipeline = FaceFinderPipeline(detector, sink=sink)

    result = asyncio.run(pipeline.collect(files, SearchCriteria(), NO_ENRICHMENT))

    assert [r.file_name for r in result.records] == ["a.jpg"]
    assert result.counters.processed == 2
    assert detector.seen == ["a.jpg", "b.jpg"]
    assert result.error.file_name == "b.jpg"
    assert "quota exceeded" in result.error.message
    assert sink.errors == [("detect: quota exceeded", "b.jpg")]


def test_unreadable_file_stops_the_run(tmp_path):
    files = _files(tmp_path, ["a.jpg"]) + [tmp_path / "missing.jpg"]
    detector = _StubDetector({"a.jpg": [_face("fa", 30, Gender.FEMALE)]})
    pipeline = FaceFinderPipeline(detector)

    result = asyncio.run(pipeline.collect(files, SearchCriteria(), NO_ENRICHMENT))

    assert len(result.records) == 1
    assert result.error.file_name == "missing.jpg"
    assert result.counters.processed == 2


def test_cancellation_keeps_results_up_to_current_file(tmp_path):
    names = ["1.jpg", "2.jpg", "3.jpg", "4.jpg"]
    files = _files(tmp_path, names)
    token = CancellationToken()

    def _cancel_on_second(name):
        if name == "2.jpg":
            token.cancel()

    detector = _StubDetector(
        {name: [_face(f"f{name}", 30, Gender.MALE)] for name in names},
        on_detect=_cancel_on_second,
    )
    pipeline = FaceFinderPipeline(detector)

    result = asyncio.run(pipeline.collect(files, SearchCriteria(), NO_ENRICHMENT, token))

    assert [r.file_name for r in result.records] == ["1.jpg", "2.jpg"]
    assert result.counters.processed == 2
    assert result.counters.searched == 2
    assert result.cancelled
    assert detector.seen == ["1.jpg", "2.jpg"]


def test_person_match_drops_non_matching_images(tmp_path):
    files = _files(tmp_path, ["a.jpg", "b.jpg", "c.jpg"])
    detector = _StubDetector(
        {
            "a.jpg": [_face("stranger", 30, Gender.MALE), _face("jane", 31, Gender.FEMALE)],
            "b.jpg": [_face("stranger-2", 40, Gender.MALE)],
            "c.jpg": [_face("jane-again", 33, Gender.FEMALE)],
        }
    )
    manager = _StubPersonManager(matching={"jane", "jane-again"})
    pipeline = FaceFinderPipeline(detector, person_manager=manager)
    options = RunOptions(thumbnail=False, match_person=True)

    result = asyncio.run(pipeline.collect(files, SearchCriteria(), options))

    assert [r.file_name for r in result.records] == ["a.jpg", "c.jpg"]
    assert result.counters.qualifying == 3
    assert result.counters.matched == 2
    assert result.records[0].confidence == 0.88
    assert manager.verified == ["stranger", "jane", "stranger-2", "jane-again"]


def test_verification_failure_stops_the_run(tmp_path):
    files = _files(tmp_path, ["a.jpg", "b.jpg", "c.jpg"])
    detector = _StubDetector(
        {
            "a.jpg": [_face("jane", 30, Gender.FEMALE)],
            "b.jpg": [_face("broken", 30, Gender.FEMALE)],
            "c.jpg": [_face("jane-again", 30, Gender.FEMALE)],
        }
    )
    manager = _StubPersonManager(matching={"jane", "jane-again"}, failing={"broken"})
    sink = _RecordingSink()
    pipeline = FaceFinderPipeline(detector, person_manager=manager, sink=sink)
    options = RunOptions(thumbnail=False, match_person=True)

    result = asyncio.run(pipeline.collect(files, SearchCriteria(), options))

    assert [r.file_name for r in result.records] == ["a.jpg"]
    assert result.error.file_name == "b.jpg"
    assert "service unavailable" in result.error.message
    assert result.counters.processed == 2
    assert result.counters.matched == 1
    assert detector.seen == ["a.jpg", "b.jpg"]
    assert sink.errors == [("verify: service unavailable", "b.jpg")]


def test_untrained_subject_does_not_gate_results(tmp_path):
    files = _files(tmp_path, ["a.jpg"])
    detector = _StubDetector({"a.jpg": [_face("x", 30, Gender.MALE)]})
    manager = _StubPersonManager(matching=set(), trained=False)
    pipeline = FaceFinderPipeline(detector, person_manager=manager)

    result = asyncio.run(
        pipeline.collect(files, SearchCriteria(), RunOptions(thumbnail=False, match_person=True))
    )

    assert [r.file_name for r in result.records] == ["a.jpg"]
    assert manager.verified == []
    assert result.counters.matched == 1


def test_caption_failure_does_not_abort_image(tmp_path):
    files = _files(tmp_path, ["a.jpg"])
    detector = _StubDetector({"a.jpg": [_face("x", 30, Gender.MALE)]})
    enricher = Enricher(_StubVision(fail_caption=True), ThumbnailConfig())
    pipeline = FaceFinderPipeline(detector, enricher=enricher)

    result = asyncio.run(
        pipeline.collect(files, SearchCriteria(), RunOptions(thumbnail=True, caption=True))
    )

    assert result.error is None
    record = result.records[0]
    assert record.caption == ""
    assert Path(record.thumbnail) == tmp_path / "FaceThumbnails" / "a_thumb.jpg"
    assert Path(record.thumbnail).read_bytes() == b"thumb:a.jpg"


def test_malformed_caption_response_only_empties_the_caption(tmp_path):
    files = _files(tmp_path, ["a.jpg", "b.jpg"])
    detector = _StubDetector(
        {
            "a.jpg": [_face("x", 30, Gender.MALE)],
            "b.jpg": [_face("y", 30, Gender.MALE)],
        }
    )

    def handler(request):
        return httpx.Response(
            200, json={"description": {"captions": [{"text": "x", "confidence": "high"}]}}
        )

    vision = VisionServiceClient.from_config(
        ServiceConfig(endpoint="https://vision.example.test", key="secret"),
        transport=httpx.MockTransport(handler),
    )
    pipeline = FaceFinderPipeline(detector, enricher=Enricher(vision))

    async def _scenario():
        async with vision:
            return await pipeline.collect(
                files, SearchCriteria(), RunOptions(thumbnail=False, caption=True)
            )

    result = asyncio.run(_scenario())

    assert result.error is None
    assert [r.file_name for r in result.records] == ["a.jpg", "b.jpg"]
    assert all(r.caption == "" for r in result.records)
    assert result.records[0].thumbnail == str(files[0])


def test_counters_reset_between_runs(tmp_path):
    files = _files(tmp_path, ["a.jpg", "b.jpg"])
    detector = _StubDetector({"a.jpg": [_face("x", 30, Gender.MALE)]})
    pipeline = FaceFinderPipeline(detector)

    first = asyncio.run(pipeline.collect(files, SearchCriteria(), NO_ENRICHMENT))
    second = asyncio.run(pipeline.collect(files[1:], SearchCriteria(), NO_ENRICHMENT))

    assert first.counters.processed == 2
    assert second.counters.to_dict() == {"processed": 1, "searched": 0, "qualifying": 0, "matched": 0}
    assert second.records == []


def test_counters_never_decrease_during_a_run(tmp_path):
    files = _files(tmp_path, ["a.jpg", "b.jpg", "c.jpg"])
    detector = _StubDetector(
        {
            "a.jpg": [_face("x", 30, Gender.MALE)],
            "c.jpg": [_face("y", 30, Gender.FEMALE)],
        }
    )
    sink = _RecordingSink()
    pipeline = FaceFinderPipeline(detector, sink=sink)

    asyncio.run(pipeline.collect(files, SearchCriteria(), NO_ENRICHMENT))

    for before, after in zip(sink.snapshots, sink.snapshots[1:]):
        assert all(after[key] >= before[key] for key in before)
    assert [r.file_name for r in sink.records] == ["a.jpg", "c.jpg"]


def test_records_are_yielded_lazily(tmp_path):
    files = _files(tmp_path, ["a.jpg", "b.jpg"])
    detector = _StubDetector(
        {
            "a.jpg": [_face("x", 30, Gender.MALE)],
            "b.jpg": [_face("y", 30, Gender.MALE)],
        }
    )
    pipeline = FaceFinderPipeline(detector)

    async def _first_only():
        async for record in pipeline.run(files, SearchCriteria(), NO_ENRICHMENT):
            return record

    record = asyncio.run(_first_only())

    assert isinstance(record, ImageRecord)
    assert record.file_name == "a.jpg"
    assert detector.seen == ["a.jpg"]


def test_empty_file_list_is_a_no_op():
    pipeline = FaceFinderPipeline(_StubDetector({}))

    result = asyncio.run(pipeline.collect([], SearchCriteria(), NO_ENRICHMENT))

    assert result.records == []
    assert result.counters.processed == 0
