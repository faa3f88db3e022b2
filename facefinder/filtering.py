"""Demographic filtering of detected faces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence

from facefinder.types import DetectedFace, Gender, SearchCriteria


@dataclass
class FilterResult:
    accepted: bool
    matched_faces: List[DetectedFace] = field(default_factory=list)
    summary: str = ""


def face_matches(face: DetectedFace, criteria: SearchCriteria) -> bool:
    """True when the face satisfies every enabled criterion."""
    if criteria.age_range is not None:
        min_age, max_age = criteria.age_range
        if face.age is None or face.age < min_age or face.age > max_age:
            return False
    if criteria.male_only and face.gender is not Gender.MALE:
        return False
    if criteria.female_only and face.gender is not Gender.FEMALE:
        return False
    return True


def filter_faces(faces: Sequence[DetectedFace], criteria: SearchCriteria) -> FilterResult:
    """Keep faces matching the criteria; the image qualifies if any face does."""
    matched = [face for face in faces if face_matches(face, criteria)]
    summary = " ".join(face.describe() for face in matched)
    return FilterResult(accepted=bool(matched), matched_faces=matched, summary=summary)
