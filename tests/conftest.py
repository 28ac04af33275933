"""Shared fixtures: synthetic recordings and a deterministic embedding extractor."""

from __future__ import annotations

import threading
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from speakerline.diarization.config import DiarizationConfig
from speakerline.diarization.embeddings import SpeakerEmbeddingExtractor
from speakerline.diarization.models import SpeakerEmbedding
from speakerline.errors import EmbeddingExtractionFailed, stage_error
from speakerline.logging_utils import StageMonitor

SR = 16000
DIM = 8


def unit(index: int, dim: int = DIM) -> np.ndarray:
    vec = np.zeros(dim, dtype=np.float32)
    vec[index] = 1.0
    return vec


def write_tone_wav(
    path: Path,
    spans: list[tuple[float, float, float]],
    total_sec: float,
    sr: int = SR,
    amplitude: float = 0.5,
) -> Path:
    """Write silence with sine tones at ``(start, duration, frequency)`` spans."""

    y = np.zeros(int(round(total_sec * sr)), dtype=np.float32)
    for start, duration, freq in spans:
        first = int(round(start * sr))
        last = min(y.shape[0], int(round((start + duration) * sr)))
        t = np.arange(last - first, dtype=np.float32) / sr
        y[first:last] = amplitude * np.sin(2.0 * np.pi * freq * t)
    sf.write(path, y, sr, subtype="PCM_16")
    return path


class FakeEmbeddingExtractor(SpeakerEmbeddingExtractor):
    """Returns the vector registered for the nearest start time; never random."""

    def __init__(
        self,
        vectors: dict[float, np.ndarray] | None = None,
        *,
        default: np.ndarray | None = None,
        fail_at: set[float] | None = None,
        dimension: int = DIM,
        tolerance: float = 0.5,
    ) -> None:
        self.vectors = dict(vectors or {})
        self.default = default if default is not None else unit(0, dimension)
        self.fail_at = set(fail_at or ())
        self.dimension = dimension
        self.tolerance = tolerance
        self.calls: list[tuple[str, float, float]] = []
        self._lock = threading.Lock()

    def _near(self, keys, start_time: float) -> float | None:
        for key in keys:
            if abs(key - start_time) <= self.tolerance:
                return key
        return None

    def extract_embedding(self, audio_file, start_time, duration):
        with self._lock:
            self.calls.append((Path(audio_file).name, float(start_time), float(duration)))
        if self._near(self.fail_at, start_time) is not None:
            raise stage_error(
                EmbeddingExtractionFailed,
                "window rejected by fake model",
                audio_file=audio_file,
            )
        key = self._near(self.vectors, start_time)
        vector = self.vectors[key] if key is not None else self.default
        return SpeakerEmbedding(
            vector=np.asarray(vector, dtype=np.float32).copy(),
            timestamp=float(start_time),
            duration=float(duration),
        )


@pytest.fixture
def config() -> DiarizationConfig:
    return DiarizationConfig(embedding_dim=DIM)


@pytest.fixture
def monitor() -> StageMonitor:
    return StageMonitor()


@pytest.fixture
def two_speaker_wav(tmp_path: Path) -> Path:
    """60 s recording with voice at (0, 10), (15, 8) and (30, 12)."""

    spans = [(0.0, 10.0, 220.0), (15.0, 8.0, 880.0), (30.0, 12.0, 220.0)]
    return write_tone_wav(tmp_path / "meeting.wav", spans, total_sec=60.0)


@pytest.fixture
def silent_wav(tmp_path: Path) -> Path:
    return write_tone_wav(tmp_path / "silence.wav", [], total_sec=5.0)


@pytest.fixture
def two_speaker_extractor() -> FakeEmbeddingExtractor:
    return FakeEmbeddingExtractor({0.0: unit(0), 15.0: unit(1), 30.0: unit(0)})
