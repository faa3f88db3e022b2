"""Common dataclasses and enums used across the facefinder package."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "Gender":
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class TrainingStatus(str, Enum):
    """Remote training state of a person group."""

    NOT_STARTED = "notstarted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "TrainingStatus":
        if not raw:
            return cls.NOT_STARTED
        value = str(raw).strip().lower()
        # the Face API reports the idle state as "nonstarted"
        if value == "nonstarted":
            return cls.NOT_STARTED
        return cls(value)

    @property
    def finished(self) -> bool:
        return self in (TrainingStatus.SUCCEEDED, TrainingStatus.FAILED)


@dataclass(frozen=True)
class DetectedFace:
    """A face returned by the detection service for one image."""

    face_id: str
    age: Optional[float] = None
    gender: Gender = Gender.UNKNOWN

    def describe(self) -> str:
        age = "?" if self.age is None else f"{self.age:g}"
        return f"{self.gender.value} {age}"


@dataclass
class ImageRecord:
    """A qualifying image and the information collected about it."""

    file_path: Path
    file_name: str
    attributes: str = ""
    metadata: str = ""
    caption: str = ""
    ocr_text: str = ""
    thumbnail: str = ""
    confidence: Optional[float] = None

    @classmethod
    def from_path(cls, path: Path, attributes: str = "") -> "ImageRecord":
        path = Path(path)
        return cls(file_path=path, file_name=path.name, attributes=attributes)

    def to_dict(self) -> Dict:
        return {
            "file_path": str(self.file_path),
            "file_name": self.file_name,
            "attributes": self.attributes,
            "metadata": self.metadata,
            "caption": self.caption,
            "ocr_text": self.ocr_text,
            "thumbnail": self.thumbnail,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class PersistedFaceReference:
    """A persisted face on the remote subject and the file it was made from."""

    face_id: str
    # None when the face carries no source tag
    source_path: Optional[Path] = None


@dataclass
class ReferenceSubject:
    """The person a run searches for.

    Remotely this is a person group holding exactly one person entity; the
    persisted faces belong to that entity.
    """

    identifier: str
    name: str
    person_id: str
    faces: List[PersistedFaceReference] = field(default_factory=list)
    trained: bool = False

    @property
    def source_paths(self) -> Set[str]:
        return {str(ref.source_path) for ref in self.faces if ref.source_path is not None}


def source_key(path: Path) -> str:
    """Canonical string form of a source image path used for face tags."""
    return str(Path(path).resolve())


@dataclass(frozen=True)
class VerifyResult:
    is_match: bool
    confidence: float = 0.0


@dataclass
class SearchCriteria:
    """Demographic criteria; each one is enabled independently."""

    age_range: Optional[Tuple[float, float]] = None
    male_only: bool = False
    female_only: bool = False


@dataclass
class RunOptions:
    thumbnail: bool = True
    caption: bool = False
    ocr: bool = False
    metadata: bool = False
    match_person: bool = False


@dataclass
class RunCounters:
    """Live counters for one run. All start at zero and only grow."""

    processed: int = 0
    searched: int = 0
    qualifying: int = 0
    matched: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "searched": self.searched,
            "qualifying": self.qualifying,
            "matched": self.matched,
        }


@dataclass
class CatalogScan:
    """Result of scanning one directory for image files."""

    directory: Path
    files: List[Path] = field(default_factory=list)
    total_files: int = 0

    @property
    def image_count(self) -> int:
        return len(self.files)
