"""Value types exchanged between the diarization stages and their callers."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import numpy as np


def _iso(ts: datetime) -> str:
    return ts.isoformat(timespec="seconds")


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class TranscriptSegment:
    """Time-stamped text produced by an external speech-to-text system."""

    text: str
    start_time: float
    end_time: float
    confidence: float = 1.0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TranscriptSegment:
        start = data.get("start_time", data.get("start"))
        end = data.get("end_time", data.get("end"))
        return cls(
            text=str(data.get("text", "")),
            start_time=float(start),
            end_time=float(end),
            confidence=float(data.get("confidence", 1.0)),
        )


@dataclass(frozen=True, eq=False)
class AudioFeatures:
    """Frame-level features for one recording; frames share ``hop_length``.

    ``spectrogram`` is a log-mel matrix ``(n_mels, frames)``, ``mfcc`` is
    ``(n_mfcc, frames)``, ``energy`` is the RMS per frame and ``pitch`` the
    YIN fundamental frequency per frame (``None`` when pitch is disabled).
    """

    duration: float
    sample_rate: int
    hop_length: int
    spectrogram: np.ndarray
    mfcc: np.ndarray
    energy: np.ndarray
    pitch: np.ndarray | None = None
    source: Path | None = None

    @property
    def frame_count(self) -> int:
        return int(self.energy.shape[0])

    @property
    def frame_sec(self) -> float:
        return self.hop_length / float(self.sample_rate)

    def frame_slice(self, start_time: float, end_time: float) -> slice:
        first = max(0, int(np.floor(start_time / self.frame_sec)))
        last = min(self.frame_count, int(np.ceil(end_time / self.frame_sec)))
        return slice(first, max(first, last))


@dataclass(frozen=True)
class VoiceSegment:
    start_time: float
    duration: float

    def __post_init__(self) -> None:
        if self.duration <= 0:
            raise ValueError(f"voice segment duration must be > 0 (got {self.duration})")

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


@dataclass(frozen=True, eq=False)
class SpeakerEmbedding:
    """Embedding vector sampled from the voice segment starting at ``timestamp``."""

    vector: np.ndarray
    timestamp: float
    duration: float = 0.0

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    @property
    def end_time(self) -> float:
        return self.timestamp + self.duration

    def to_dict(self) -> dict[str, Any]:
        return {
            "vector": np.asarray(self.vector, dtype=np.float32).tolist(),
            "timestamp": float(self.timestamp),
            "duration": float(self.duration),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SpeakerEmbedding:
        return cls(
            vector=np.asarray(data.get("vector", []), dtype=np.float32),
            timestamp=float(data.get("timestamp", 0.0)),
            duration=float(data.get("duration", 0.0)),
        )


def centroid_of(embeddings: Sequence[SpeakerEmbedding]) -> SpeakerEmbedding:
    """Element-wise mean of the member vectors (float64 accumulation)."""

    if not embeddings:
        raise ValueError("cannot compute the centroid of an empty embedding set")
    matrix = np.vstack([np.asarray(e.vector, dtype=np.float64) for e in embeddings])
    return SpeakerEmbedding(vector=matrix.mean(axis=0).astype(np.float32), timestamp=0.0)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    if a.shape != b.shape:
        return 0.0
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom <= 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


@dataclass(frozen=True, eq=False)
class SpeakerCluster:
    id: str
    embeddings: tuple[SpeakerEmbedding, ...]
    centroid: SpeakerEmbedding
    confidence: float


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


class AgeRange(str, Enum):
    CHILD = "child"
    TEENAGER = "teenager"
    YOUNG_ADULT = "young_adult"
    MIDDLE_AGED = "middle_aged"
    SENIOR = "senior"
    UNKNOWN = "unknown"


class EmotionalTone(str, Enum):
    NEUTRAL = "neutral"
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    EXCITED = "excited"
    CALM = "calm"
    STRESSED = "stressed"


@dataclass(frozen=True)
class SpeakerCharacteristics:
    """Auxiliary per-speaker estimates; never used for clustering decisions."""

    estimated_gender: Gender = Gender.UNKNOWN
    estimated_age: AgeRange = AgeRange.UNKNOWN
    pitch_range: tuple[float, float] | None = None
    speaking_rate: float | None = None  # words per minute
    emotional_tone: EmotionalTone | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "estimated_gender": self.estimated_gender.value,
            "estimated_age": self.estimated_age.value,
            "pitch_range": list(self.pitch_range) if self.pitch_range else None,
            "speaking_rate": self.speaking_rate,
            "emotional_tone": self.emotional_tone.value if self.emotional_tone else None,
        }


@dataclass(frozen=True)
class Speaker:
    id: str
    name: str | None
    total_speaking_time: float
    segment_count: int
    average_confidence: float
    characteristics: SpeakerCharacteristics | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "total_speaking_time": round(float(self.total_speaking_time), 3),
            "segment_count": int(self.segment_count),
            "average_confidence": float(self.average_confidence),
            "characteristics": self.characteristics.to_dict() if self.characteristics else None,
        }


@dataclass(frozen=True)
class SpeakerSegment:
    speaker_id: str
    start_time: float
    end_time: float
    text: str | None = None
    confidence: float = 0.0
    audio_level: float = 0.0

    def __post_init__(self) -> None:
        if self.end_time <= self.start_time:
            raise ValueError(
                f"speaker segment must end after it starts ({self.start_time}..{self.end_time})"
            )

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> dict[str, Any]:
        return {
            "speaker_id": self.speaker_id,
            "start_time": float(self.start_time),
            "end_time": float(self.end_time),
            "text": self.text,
            "confidence": float(self.confidence),
            "audio_level": float(self.audio_level),
        }


def duration_weighted_confidence(segments: Iterable[SpeakerSegment]) -> float:
    total = 0.0
    weighted = 0.0
    for seg in segments:
        total += seg.duration
        weighted += seg.confidence * seg.duration
    if total <= 0.0:
        return 0.0
    return weighted / total


@dataclass(frozen=True)
class DiarizationResult:
    audio_file: Path
    total_duration: float
    speaker_count: int
    speakers: tuple[Speaker, ...]
    segments: tuple[SpeakerSegment, ...]
    confidence: float
    processing_time: float

    def __post_init__(self) -> None:
        if self.speaker_count != len(self.speakers):
            raise ValueError("speaker_count must equal the number of speakers")

    @classmethod
    def empty(
        cls, audio_file: Path, total_duration: float, processing_time: float = 0.0
    ) -> DiarizationResult:
        return cls(
            audio_file=Path(audio_file),
            total_duration=total_duration,
            speaker_count=0,
            speakers=(),
            segments=(),
            confidence=0.0,
            processing_time=processing_time,
        )

    def segments_for(self, speaker_id: str) -> list[SpeakerSegment]:
        return [seg for seg in self.segments if seg.speaker_id == speaker_id]

    def to_dict(self) -> dict[str, Any]:
        return {
            "audio_file": str(self.audio_file),
            "total_duration": float(self.total_duration),
            "speaker_count": int(self.speaker_count),
            "speakers": [s.to_dict() for s in self.speakers],
            "segments": [s.to_dict() for s in self.segments],
            "confidence": float(self.confidence),
            "processing_time": float(self.processing_time),
        }


@dataclass(frozen=True, eq=False)
class EmbeddingStatistics:
    mean: np.ndarray
    standard_deviation: np.ndarray
    min_values: np.ndarray
    max_values: np.ndarray

    @classmethod
    def from_vectors(cls, matrix: np.ndarray) -> EmbeddingStatistics:
        arr = np.asarray(matrix, dtype=np.float64)
        if arr.ndim != 2 or arr.shape[0] == 0:
            raise ValueError("statistics need a non-empty (count, dim) matrix")
        return cls(
            mean=arr.mean(axis=0).astype(np.float32),
            standard_deviation=arr.std(axis=0).astype(np.float32),
            min_values=arr.min(axis=0).astype(np.float32),
            max_values=arr.max(axis=0).astype(np.float32),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mean": self.mean.tolist(),
            "standard_deviation": self.standard_deviation.tolist(),
            "min_values": self.min_values.tolist(),
            "max_values": self.max_values.tolist(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EmbeddingStatistics:
        return cls(
            **{
                key: np.asarray(data.get(key, []), dtype=np.float32)
                for key in ("mean", "standard_deviation", "min_values", "max_values")
            }
        )


@dataclass(frozen=True, eq=False)
class SpeakerProfile:
    """Durable identity anchor for a named speaker.

    The core only builds and updates these values; storing them is the
    caller's business.
    """

    name: str
    representative_embedding: SpeakerEmbedding
    embedding_statistics: EmbeddingStatistics
    sample_count: int
    total_duration: float
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=utc_now)
    last_updated: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "representative_embedding": self.representative_embedding.to_dict(),
            "embedding_statistics": self.embedding_statistics.to_dict(),
            "sample_count": int(self.sample_count),
            "total_duration": float(self.total_duration),
            "created_at": _iso(self.created_at),
            "last_updated": _iso(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SpeakerProfile:
        return cls(
            id=uuid.UUID(str(data["id"])),
            name=str(data["name"]),
            representative_embedding=SpeakerEmbedding.from_dict(data["representative_embedding"]),
            embedding_statistics=EmbeddingStatistics.from_dict(data["embedding_statistics"]),
            sample_count=int(data.get("sample_count", 0)),
            total_duration=float(data.get("total_duration", 0.0)),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_updated=datetime.fromisoformat(data["last_updated"]),
        )


@dataclass(frozen=True)
class IdentifiedSpeaker:
    speaker_id: str
    profile: SpeakerProfile
    confidence: float
    segments: tuple[SpeakerSegment, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "speaker_id": self.speaker_id,
            "profile_id": str(self.profile.id),
            "profile_name": self.profile.name,
            "confidence": float(self.confidence),
            "segment_count": len(self.segments),
        }


@dataclass(frozen=True)
class SpeakerIdentificationResult:
    audio_file: Path
    diarization_result: DiarizationResult
    identified_speakers: tuple[IdentifiedSpeaker, ...]
    unidentified_speakers: tuple[Speaker, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "audio_file": str(self.audio_file),
            "identified_speakers": [s.to_dict() for s in self.identified_speakers],
            "unidentified_speakers": [s.to_dict() for s in self.unidentified_speakers],
            "diarization": self.diarization_result.to_dict(),
        }


__all__ = [
    "AgeRange",
    "AudioFeatures",
    "DiarizationResult",
    "EmbeddingStatistics",
    "EmotionalTone",
    "Gender",
    "IdentifiedSpeaker",
    "Speaker",
    "SpeakerCharacteristics",
    "SpeakerCluster",
    "SpeakerEmbedding",
    "SpeakerIdentificationResult",
    "SpeakerProfile",
    "SpeakerSegment",
    "TranscriptSegment",
    "VoiceSegment",
    "centroid_of",
    "cosine_similarity",
    "duration_weighted_confidence",
    "utc_now",
]
