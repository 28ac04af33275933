"""Energy based voice activity detection over precomputed frame features."""

from __future__ import annotations

import math
from collections.abc import Iterator

import numpy as np
from scipy.signal import medfilt

from .config import DiarizationConfig
from .logger import logger
from .models import AudioFeatures, VoiceSegment

# Peak RMS below this is treated as digital silence.
SILENCE_RMS = 1e-4
# Median window (frames) that removes isolated one or two frame blips.
SMOOTH_FRAMES = 5


def merge_regions(spans: list[tuple[float, float]], gap: float) -> list[tuple[float, float]]:
    if not spans:
        return []
    spans = sorted(spans, key=lambda x: x[0])
    out = [list(spans[0])]
    for s, e in spans[1:]:
        if s - out[-1][1] <= gap:
            out[-1][1] = max(out[-1][1], e)
        else:
            out.append([s, e])
    return [(s, e) for s, e in out]


def split_long_regions(
    regions: list[tuple[float, float]], max_len: float
) -> list[tuple[float, float]]:
    """Split regions longer than ``max_len`` into equal, non-overlapping chunks."""

    if max_len <= 0.0:
        return regions
    out: list[tuple[float, float]] = []
    for start, end in regions:
        length = end - start
        if length <= max_len:
            out.append((start, end))
            continue
        pieces = int(math.ceil(length / max_len))
        step = length / pieces
        for idx in range(pieces):
            chunk_start = start + idx * step
            chunk_end = end if idx == pieces - 1 else start + (idx + 1) * step
            out.append((chunk_start, chunk_end))
    return out


def speech_probability(energy: np.ndarray, floor_db: float) -> np.ndarray:
    """Map frame RMS to [0, 1]: 0 at ``floor_db`` below the peak, 1 at the peak."""

    energy = np.asarray(energy, dtype=np.float64)
    peak = float(np.max(energy)) if energy.size else 0.0
    if peak < SILENCE_RMS:
        return np.zeros_like(energy)
    rel_db = 20.0 * np.log10(energy / peak + 1e-12)
    return np.clip((rel_db - floor_db) / -floor_db, 0.0, 1.0)


class VoiceActivityDetector:
    """Threshold the relative frame energy into ordered, non-overlapping voice segments."""

    def __init__(self, config: DiarizationConfig | None = None) -> None:
        self.config = config or DiarizationConfig()

    def iter_voice_segments(
        self,
        features: AudioFeatures,
        min_duration: float = 1.0,
        threshold: float = 0.5,
    ) -> Iterator[VoiceSegment]:
        cfg = self.config
        prob = speech_probability(features.energy, cfg.vad_floor_db)
        if prob.size == 0 or not np.any(prob > 0.0):
            return
        if prob.size >= SMOOTH_FRAMES:
            prob = medfilt(prob, kernel_size=SMOOTH_FRAMES)
        speech = prob >= threshold

        frame_sec = features.frame_sec
        regions: list[tuple[float, float]] = []
        start: int | None = None
        for idx, is_speech in enumerate(speech):
            if is_speech and start is None:
                start = idx
            elif not is_speech and start is not None:
                regions.append((start * frame_sec, idx * frame_sec))
                start = None
        if start is not None:
            regions.append((start * frame_sec, len(speech) * frame_sec))

        # Runs shorter than min_duration are dropped before gap bridging.
        dropped = 0
        kept: list[tuple[float, float]] = []
        for s, e in regions:
            e = min(e, features.duration)
            if e - s <= 0.0 or e - s < min_duration:
                dropped += 1
                continue
            kept.append((s, e))
        if dropped:
            logger.debug("[vad] dropped %d region(s) shorter than %.2fs", dropped, min_duration)
        kept = merge_regions(kept, gap=cfg.vad_min_silence_sec)

        for s, e in split_long_regions(kept, cfg.max_segment_sec):
            yield VoiceSegment(start_time=s, duration=e - s)

    def detect_voice_activity(
        self,
        features: AudioFeatures,
        min_duration: float = 1.0,
        threshold: float = 0.5,
    ) -> list[VoiceSegment]:
        segments = list(self.iter_voice_segments(features, min_duration, threshold))
        logger.info(
            "[vad] %d voice segment(s), %.2fs of speech",
            len(segments),
            sum(seg.duration for seg in segments),
        )
        return segments


__all__ = [
    "VoiceActivityDetector",
    "merge_regions",
    "speech_probability",
    "split_long_regions",
]
